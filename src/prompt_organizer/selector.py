"""Selection of organizer candidates from the prompt library."""

from datetime import datetime, timedelta

from .models import CandidateInput, OrganizerSettings, SourcePrompt


def select_prompts(
    prompts: list[SourcePrompt], settings: OrganizerSettings, now: datetime | None = None
) -> list[CandidateInput]:
    """Filter, rank and truncate prompts for an organizer run.

    Drops prompts flagged as excluded, prompts last executed before the
    period window and prompts below the minimum execution count. The rest are
    ordered by execution count (most used first) and cut to the maximum.
    """
    now = now or datetime.now()
    cutoff = now - timedelta(days=settings.filter_period_days)

    eligible = [
        p
        for p in prompts
        if not p.exclude_from_organizer
        and p.last_executed_at >= cutoff
        and p.execution_count >= settings.filter_min_execution_count
    ]
    eligible.sort(key=lambda p: p.execution_count, reverse=True)

    return [
        CandidateInput(id=p.id, name=p.name, content=p.content, execution_count=p.execution_count)
        for p in eligible[: settings.filter_max_prompts]
    ]


def count_selected(prompts: list[SourcePrompt], settings: OrganizerSettings, now: datetime | None = None) -> int:
    """Number of prompts a run with these settings would send."""
    return len(select_prompts(prompts, settings, now))
