"""Reconciliation of the pending review batch with permanent storage."""

from datetime import datetime
from typing import Protocol

from rich.console import Console

from .models import CommitResult, PendingOrganizerTemplates, TemplateCandidate, UserAction
from .storage import PendingTemplatesStore

console = Console()


class TemplatePersister(Protocol):
    def save_templates(self, candidates: list[TemplateCandidate]) -> list[str]: ...


def partition_candidates(candidates: list[TemplateCandidate]) -> CommitResult:
    """Split a reviewed batch by user action."""
    saved, discarded, remaining = [], [], []
    for candidate in candidates:
        match candidate.user_action:
            case UserAction.SAVE | UserAction.SAVE_AND_PIN:
                saved.append(candidate)
            case UserAction.DISCARD:
                discarded.append(candidate)
            case UserAction.PENDING:
                remaining.append(candidate)
    return CommitResult(saved=saved, discarded=discarded, remaining=remaining)


class PendingTemplates:
    """Keeps the persisted pending batch consistent with review decisions."""

    def __init__(self, store: PendingTemplatesStore, persister: TemplatePersister):
        self.store = store
        self.persister = persister

    def load(self) -> PendingOrganizerTemplates | None:
        return self.store.get()

    def replace_batch(self, candidates: list[TemplateCandidate], now: datetime | None = None):
        """Store a new run's candidates, overwriting any unfinished batch."""
        previous = self.store.get()
        if previous and previous.templates:
            console.print(
                f"[yellow]Replacing {len(previous.templates)} unreviewed templates from "
                f"{previous.generated_at:%Y-%m-%d %H:%M}[/yellow]"
            )
        self.store.set(PendingOrganizerTemplates(templates=list(candidates), generated_at=now or datetime.now()))

    def commit(self, candidates: list[TemplateCandidate], generated_at: datetime) -> CommitResult:
        """Save accepted candidates and keep only undecided ones pending.

        Discarded candidates are dropped. If saving fails, the pending batch
        is left untouched so the commit can be retried.
        """
        result = partition_candidates(candidates)

        if result.saved:
            self.persister.save_templates(result.saved)

        if result.remaining:
            self.store.set(PendingOrganizerTemplates(templates=result.remaining, generated_at=generated_at))
        else:
            self.store.clear()

        return result

    def clear(self):
        self.store.clear()
