"""Report generation for CLI output."""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .errors import OrganizerError
from .models import (
    ExecutionEstimate,
    OrganizerResult,
    OrganizerSettings,
    PendingOrganizerTemplates,
    SourcePrompt,
    TemplateCandidate,
    UserAction,
)
from .review import ReviewSession

console = Console()

ACTION_STYLES = {
    UserAction.PENDING: "[dim]pending[/dim]",
    UserAction.SAVE: "[green]save[/green]",
    UserAction.SAVE_AND_PIN: "[bold green]save + pin[/bold green]",
    UserAction.DISCARD: "[red]discard[/red]",
}


def print_library_summary(stats: dict):
    """Print overall prompt library statistics."""
    if stats["total_prompts"] == 0:
        console.print("[yellow]No prompts found. Run 'prompt-organizer ingest' or 'record' first.[/yellow]")
        return

    table = Table(title="Prompt Library")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Prompts", str(stats["total_prompts"]))
    table.add_row("Executions", f"{stats['total_executions']:,}")
    table.add_row("Used in last 30 days", str(stats["executed_last_30_days"]))
    table.add_row("Already organized", str(stats["excluded"]))
    table.add_row("Date Range", f"{stats['first_executed']:%Y-%m-%d} to {stats['last_executed']:%Y-%m-%d}")
    table.add_row("Total Tokens", f"{stats['total_tokens']:,}")
    most_used = stats["most_used"]
    table.add_row("Most Used", f"{most_used.name} ({most_used.execution_count}x)")

    console.print(table)


def print_prompts(prompts: list[SourcePrompt], limit: int = 20):
    if not prompts:
        console.print("[yellow]No prompts found.[/yellow]")
        return

    table = Table(title=f"Prompts ({min(limit, len(prompts))} of {len(prompts)})")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Runs", justify="right", style="green")
    table.add_column("Last Run")
    table.add_column("Organized", justify="center")

    for prompt in prompts[:limit]:
        table.add_row(
            prompt.id,
            prompt.name,
            str(prompt.execution_count),
            f"{prompt.last_executed_at:%Y-%m-%d}",
            "✓" if prompt.exclude_from_organizer else "",
        )

    console.print(table)


def print_settings(settings: OrganizerSettings, selected_count: int | None = None):
    table = Table(title="Organizer Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Period (days)", str(settings.filter_period_days))
    table.add_row("Min executions", str(settings.filter_min_execution_count))
    table.add_row("Max prompts", str(settings.filter_max_prompts))
    first_line = settings.organization_prompt.splitlines()[0] if settings.organization_prompt else "(default)"
    table.add_row("Organization prompt", first_line)
    if selected_count is not None:
        table.add_row("Prompts selected", str(selected_count))

    console.print(table)


def print_estimate(estimate: ExecutionEstimate):
    table = Table(title="Execution Estimate")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")

    table.add_row("Model", estimate.model)
    table.add_row("Target prompts", str(estimate.target_prompt_count))
    table.add_row("Input tokens", f"{estimate.estimated_input_tokens:,}")
    table.add_row("Output tokens (est.)", f"{estimate.estimated_output_tokens:,}")
    table.add_row("Context usage", f"{estimate.context_usage_rate:.1%} of {estimate.context_limit:,}")
    table.add_row("Cost (est.)", f"¥{estimate.estimated_cost:.2f}")

    console.print(table)


def print_result(result: OrganizerResult):
    console.print(
        f"[green]Generated {len(result.templates)} templates[/green] "
        f"from {result.source_count} prompts of the last {result.period_days} days"
    )
    console.print(
        f"[dim]Tokens: {result.input_tokens:,} in / {result.output_tokens:,} out, "
        f"cost ¥{result.actual_cost or 0:.2f} (estimated ¥{result.estimated_cost or 0:.2f})[/dim]"
    )
    if result.success_message:
        console.print(Panel(result.success_message, style="green"))


def print_candidate(candidate: TemplateCandidate):
    """Print a detailed view of one candidate."""
    meta = candidate.ai_metadata
    lines = [
        f"[bold]Use case:[/bold] {candidate.use_case}",
        f"[bold]Category:[/bold] {candidate.category_id}",
        f"[bold]Sources:[/bold] {meta.source_count} prompts" + (" [magenta](suggested pin)[/magenta]" if meta.show_in_pinned else ""),
        f"[bold]Status:[/bold] {ACTION_STYLES[candidate.user_action]}",
        "",
        candidate.content,
    ]
    if candidate.variables:
        lines.append("")
        lines.append("[bold]Variables:[/bold]")
        lines.extend(f"  {{{{{v.name}}}}} {v.description}" for v in candidate.variables)
    if candidate.cluster_explanation:
        lines.append("")
        lines.append(f"[dim]{candidate.cluster_explanation}[/dim]")

    console.print(Panel("\n".join(lines), title=candidate.title, title_align="left"))


def print_review_list(session: ReviewSession):
    table = Table(title=f"Candidates ({session.pending_count()} pending)")
    table.add_column("#", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Use case")
    table.add_column("Sources", justify="right")
    table.add_column("Decision")

    for idx, candidate in enumerate(session.candidates):
        marker = "▶" if idx == session.selected_index else ""
        table.add_row(
            f"{marker}{idx + 1}",
            candidate.title,
            candidate.use_case,
            str(candidate.ai_metadata.source_count),
            ACTION_STYLES[candidate.user_action],
        )

    console.print(table)


def print_pending(pending: PendingOrganizerTemplates | None):
    if pending is None or not pending.templates:
        console.print("[green]No templates waiting for review.[/green]")
        return
    console.print(
        f"[cyan]{len(pending.templates)} templates from {pending.generated_at:%Y-%m-%d %H:%M} waiting for review[/cyan]"
    )
    print_review_list(ReviewSession.from_pending(pending))


def print_templates(templates: list[dict]):
    if not templates:
        console.print("[yellow]No saved templates.[/yellow]")
        return

    table = Table(title="Saved Templates")
    table.add_column("Title", style="cyan")
    table.add_column("Use case")
    table.add_column("Category")
    table.add_column("Variables", justify="right")
    table.add_column("Pinned", justify="center")

    for template in templates:
        table.add_row(
            template["title"],
            template["use_case"] or "",
            template["category_id"] or "",
            str(len(template["variables"])),
            "📌" if template["pinned"] else "",
        )

    console.print(table)


def print_error(error: OrganizerError):
    """Print a run-level error banner. Cancellation is not an error."""
    if error.is_cancellation:
        console.print("[dim]Cancelled.[/dim]")
        return
    console.print(Panel(error.message, title=f"[red]{error.code.value}[/red]", style="red"))
