"""CLI entry point for prompt organizer."""

import asyncio
import signal
from pathlib import Path

import click
from rich.console import Console
from rich.progress import Progress

from .config import DEFAULT_DB
from .db import Database
from .errors import OrganizerError
from .estimator import EstimateScheduler
from .generator import DEFAULT_ORGANIZATION_PROMPT
from .llm import CancellationToken, LLMClient
from .models import GenerationStatus, OrganizerSettings, UserAction
from .organizer import PromptOrganizer
from .parser import collect_prompts, parse_directory
from .pending import PendingTemplates
from .reports import (
    print_candidate,
    print_error,
    print_estimate,
    print_library_summary,
    print_pending,
    print_prompts,
    print_result,
    print_review_list,
    print_settings,
    print_templates,
)
from .review import ReviewSession
from .selector import count_selected
from .stats import get_library_stats
from .storage import PendingTemplatesStore, SettingsStore

console = Console()

STATUS_LABELS = {
    GenerationStatus.SENDING: "Sending request...",
    GenerationStatus.THINKING: "Thinking...",
    GenerationStatus.GENERATING: "Generating templates...",
    GenerationStatus.COMPLETE: "Done",
}

REVIEW_ACTIONS = {
    "s": UserAction.SAVE,
    "p": UserAction.SAVE_AND_PIN,
    "d": UserAction.DISCARD,
}


def build_organizer(db: Database, with_success_message: bool = False) -> PromptOrganizer:
    pending = PendingTemplates(PendingTemplatesStore(db), db)
    return PromptOrganizer(db, db, LLMClient(), pending, with_success_message=with_success_message)


@click.group()
@click.option(
    "--db",
    type=click.Path(),
    default=str(DEFAULT_DB),
    help="Path to SQLite database",
)
@click.pass_context
def cli(ctx, db):
    """Turn your prompt history into reusable templates."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = Path(db)


def _database_exists(db_path: Path) -> bool:
    if not db_path.exists():
        console.print(f"[red]Database not found at {db_path}[/red]")
        console.print("Run 'prompt-organizer ingest <directory>' or 'prompt-organizer record' first.")
        return False
    return True


@cli.command()
@click.argument("directory", type=click.Path(exists=True))
@click.option("--clear", is_flag=True, help="Clear the prompt library before ingesting")
@click.pass_context
def ingest(ctx, directory, clear):
    """Ingest user prompts from gptel org-mode files."""
    db_path = ctx.obj["db_path"]
    db_path.parent.mkdir(parents=True, exist_ok=True)

    directory = Path(directory)
    console.print(f"[cyan]Parsing files from {directory}...[/cyan]")
    prompts = collect_prompts(parse_directory(directory))
    console.print(f"Found [green]{len(prompts)}[/green] distinct prompts")

    if not prompts:
        console.print("[yellow]No gptel conversations found in directory.[/yellow]")
        return

    with Database(db_path) as db:
        db.init_schema()
        if clear:
            db.clear_all()
            console.print("[yellow]Cleared existing prompts[/yellow]")

        with Progress() as progress:
            task = progress.add_task("Storing prompts...", total=len(prompts))
            for prompt in prompts:
                db.record_execution(
                    prompt.content,
                    name=prompt.name,
                    executed_at=prompt.last_executed_at,
                    count=prompt.execution_count,
                )
                progress.advance(task)

        console.print(f"[green]Done![/green] {len(db.get_all_prompts())} prompts in library")


@cli.command()
@click.argument("content")
@click.option("--name", help="Display name for a new prompt")
@click.pass_context
def record(ctx, content, name):
    """Record one execution of a prompt."""
    db_path = ctx.obj["db_path"]
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with Database(db_path) as db:
        db.init_schema()
        prompt_id = db.record_execution(content, name=name)
        prompt = db.get_prompt(prompt_id)
        console.print(f"[green]Recorded[/green] {prompt.name} ({prompt.execution_count}x)")


@cli.command()
@click.option("--limit", default=20, help="Number of prompts to show")
@click.pass_context
def prompts(ctx, limit):
    """List prompts in the library, most recent first."""
    db_path = ctx.obj["db_path"]
    if not _database_exists(db_path):
        return

    with Database(db_path) as db:
        print_prompts(db.get_all_prompts(), limit)


@cli.command()
@click.pass_context
def stats(ctx):
    """Show statistics about your prompt library."""
    db_path = ctx.obj["db_path"]
    if not _database_exists(db_path):
        return

    with Database(db_path) as db:
        print_library_summary(get_library_stats(db.get_all_prompts()))


@cli.command()
@click.option("--period-days", type=click.IntRange(min=1), help="Only use prompts run within this many days")
@click.option("--min-executions", type=click.IntRange(min=0), help="Minimum execution count")
@click.option("--max-prompts", type=click.IntRange(min=1), help="Maximum prompts sent to the model")
@click.option("--prompt-file", type=click.Path(exists=True, dir_okay=False), help="File with a custom organization prompt")
@click.option("--reset", is_flag=True, help="Restore default settings")
@click.option("--estimate", "with_estimate", is_flag=True, help="Re-estimate cost after changing settings")
@click.pass_context
def settings(ctx, period_days, min_executions, max_prompts, prompt_file, reset, with_estimate):
    """Show or change organizer settings."""
    db_path = ctx.obj["db_path"]
    if not _database_exists(db_path):
        return

    with Database(db_path) as db:
        db.init_schema()
        store = SettingsStore(db)
        current = OrganizerSettings(organization_prompt=DEFAULT_ORGANIZATION_PROMPT) if reset else store.load()

        updated = OrganizerSettings(
            filter_period_days=period_days or current.filter_period_days,
            filter_min_execution_count=current.filter_min_execution_count if min_executions is None else min_executions,
            filter_max_prompts=max_prompts or current.filter_max_prompts,
            organization_prompt=Path(prompt_file).read_text(encoding="utf-8") if prompt_file else current.organization_prompt,
        )
        changed = reset or updated != store.get()

        if changed and with_estimate:
            asyncio.run(_save_and_estimate(db, store, updated))
        elif changed:
            store.set(updated)

        print_settings(updated, count_selected(db.get_all_prompts(), updated))


async def _save_and_estimate(db: Database, store: SettingsStore, updated: OrganizerSettings):
    organizer = build_organizer(db)
    scheduler = EstimateScheduler(organizer.estimate_execution, print_estimate, on_error=print_error)

    def on_change(value: OrganizerSettings | None):
        if value is not None:
            scheduler.schedule(value)

    unwatch = store.watch(on_change)
    try:
        store.set(updated)
        await scheduler.wait()
    finally:
        unwatch()
        await organizer.client.close()


async def _estimate(organizer: PromptOrganizer, settings: OrganizerSettings):
    try:
        return await organizer.estimate_execution(settings)
    finally:
        await organizer.client.close()


@cli.command()
@click.pass_context
def estimate(ctx):
    """Estimate tokens and cost of the next run without running it."""
    db_path = ctx.obj["db_path"]
    if not _database_exists(db_path):
        return

    with Database(db_path) as db:
        db.init_schema()
        organizer = build_organizer(db)
        try:
            result = asyncio.run(_estimate(organizer, SettingsStore(db).load()))
        except OrganizerError as e:
            print_error(e)
            return
        print_estimate(result)


async def _run_organize(organizer: PromptOrganizer, settings: OrganizerSettings):
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except NotImplementedError:
        # No loop signal handlers on Windows; Ctrl-C then aborts the process
        pass

    try:
        with Progress() as progress:
            task = progress.add_task(STATUS_LABELS[GenerationStatus.SENDING], total=100)

            def on_progress(update):
                progress.update(
                    task,
                    completed=update.estimated_progress,
                    description=f"{STATUS_LABELS[update.status]} ({update.output_tokens:,} tokens)",
                )

            return await organizer.execute_organization(settings, token, on_progress)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


async def _organize(organizer: PromptOrganizer, settings: OrganizerSettings, confirm: bool):
    """Estimate, confirm and run on one event loop; the client's connections belong to it."""
    try:
        if confirm:
            print_estimate(await organizer.estimate_execution(settings))
            if not click.confirm("Run the organizer?", default=True):
                return None
        return await _run_organize(organizer, settings)
    finally:
        await organizer.client.close()


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip the cost confirmation")
@click.option("--success-message", is_flag=True, help="Ask the model for a short summary of the first template")
@click.pass_context
def organize(ctx, yes, success_message):
    """Generate templates from your prompt history (Ctrl-C cancels)."""
    db_path = ctx.obj["db_path"]
    if not _database_exists(db_path):
        return

    with Database(db_path) as db:
        db.init_schema()
        settings = SettingsStore(db).load()
        organizer = build_organizer(db, with_success_message=success_message)

        try:
            result = asyncio.run(_organize(organizer, settings, confirm=not yes))
        except OrganizerError as e:
            print_error(e)
            return
        if result is None:
            return

        print_result(result)
        if result.templates:
            console.print("\n[dim]Review them with: prompt-organizer review[/dim]")


@cli.command()
@click.pass_context
def review(ctx):
    """Review pending templates: save, pin or discard each one."""
    db_path = ctx.obj["db_path"]
    if not _database_exists(db_path):
        return

    with Database(db_path) as db:
        db.init_schema()
        reconciler = PendingTemplates(PendingTemplatesStore(db), db)
        pending = reconciler.load()
        if pending is None or not pending.templates:
            console.print("[green]No templates waiting for review.[/green]")
            return

        session = ReviewSession.from_pending(pending)
        while session.selected is not None:
            print_review_list(session)
            print_candidate(session.selected)
            choice = click.prompt(
                "[s]ave, save and [p]in, [d]iscard, edit [t]itle, [j]ump, [q]uit",
                type=click.Choice(["s", "p", "d", "t", "j", "q"]),
                show_choices=False,
            )
            if choice == "q":
                break
            if choice == "t":
                title = click.prompt("Title", default=session.selected.title)
                session.update_candidate(session.selected_index, title=title)
            elif choice == "j":
                index = click.prompt("Candidate #", type=click.IntRange(1, len(session.candidates)))
                session.select_candidate(index - 1)
            elif session.selected.user_action != UserAction.PENDING:
                console.print("[yellow]Already decided; jump to a pending candidate.[/yellow]")
            else:
                session.decide(REVIEW_ACTIONS[choice])

        if session.is_complete:
            console.print("[green]All candidates reviewed.[/green]")

        try:
            result = session.commit(reconciler)
        except OrganizerError as e:
            print_error(e)
            console.print("[dim]Your decisions were not saved; run review again to retry.[/dim]")
            return

        console.print(
            f"[green]Saved {len(result.saved)}[/green], discarded {len(result.discarded)}, "
            f"{len(result.remaining)} still pending"
        )


@cli.command()
@click.option("--clear", is_flag=True, help="Drop the pending batch without saving anything")
@click.pass_context
def pending(ctx, clear):
    """Show templates waiting for review."""
    db_path = ctx.obj["db_path"]
    if not _database_exists(db_path):
        return

    with Database(db_path) as db:
        db.init_schema()
        store = PendingTemplatesStore(db)
        if clear:
            store.clear()
            console.print("[yellow]Pending templates cleared[/yellow]")
            return
        print_pending(store.get())


@cli.command()
@click.option("--pinned", is_flag=True, help="Only pinned templates")
@click.pass_context
def templates(ctx, pinned):
    """List saved templates."""
    db_path = ctx.obj["db_path"]
    if not _database_exists(db_path):
        return

    with Database(db_path) as db:
        db.init_schema()
        print_templates(db.get_templates(pinned_only=pinned))


if __name__ == "__main__":
    cli()
