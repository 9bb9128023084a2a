"""Review state machine over a batch of template candidates."""

from datetime import datetime

from .config import TITLE_MAX_LENGTH, USE_CASE_MAX_LENGTH
from .errors import normalize_error
from .models import CommitResult, PendingOrganizerTemplates, TemplateCandidate, TemplateVariable, UserAction
from .pending import PendingTemplates

EDITABLE_FIELDS = {"title", "content", "use_case", "category_id", "variables"}


class ReviewSession:
    """Tracks the selected candidate and per-candidate decisions.

    A decision moves a candidate from PENDING to SAVE, DISCARD or
    SAVE_AND_PIN and is final within the session. After each decision the
    selection moves to the next pending candidate, or to None once every
    candidate has been decided.

    Misuse by the caller (an index out of range, deciding twice, an unknown
    field) raises IndexError or ValueError. Only commit, which touches
    storage, raises OrganizerError.
    """

    def __init__(self, candidates: list[TemplateCandidate], generated_at: datetime | None = None):
        self.candidates = list(candidates)
        self.generated_at = generated_at or datetime.now()
        self.selected_index: int | None = None
        if self.candidates:
            first = self.next_pending_index(-1)
            self.selected_index = 0 if first is None else first

    @classmethod
    def from_pending(cls, pending: PendingOrganizerTemplates) -> "ReviewSession":
        return cls(pending.templates, pending.generated_at)

    @property
    def is_empty(self) -> bool:
        return not self.candidates

    @property
    def is_complete(self) -> bool:
        """True when there are candidates and every one has been decided."""
        return bool(self.candidates) and all(c.user_action != UserAction.PENDING for c in self.candidates)

    @property
    def selected(self) -> TemplateCandidate | None:
        if self.selected_index is None:
            return None
        return self.candidates[self.selected_index]

    def pending_count(self) -> int:
        return sum(1 for c in self.candidates if c.user_action == UserAction.PENDING)

    def _check_index(self, index: int):
        if not 0 <= index < len(self.candidates):
            raise IndexError(f"No candidate at index {index}")

    def select_candidate(self, index: int):
        self._check_index(index)
        self.selected_index = index

    def next_pending_index(self, current: int) -> int | None:
        """Next pending index after `current`, wrapping to the start, never `current` itself."""
        for i in range(current + 1, len(self.candidates)):
            if self.candidates[i].user_action == UserAction.PENDING:
                return i
        for i in range(len(self.candidates)):
            if i != current and self.candidates[i].user_action == UserAction.PENDING:
                return i
        return None

    def decide(self, action: UserAction):
        """Record a decision for the selected candidate and advance."""
        if action == UserAction.PENDING:
            raise ValueError("A decision must be save, discard or save_and_pin")
        candidate = self.selected
        if candidate is None:
            raise ValueError("No candidate selected")
        if candidate.user_action != UserAction.PENDING:
            raise ValueError(f"Candidate '{candidate.title}' was already decided ({candidate.user_action.value})")

        candidate.user_action = action
        self.selected_index = self.next_pending_index(self.selected_index)

    def update_candidate(self, index: int, **fields):
        """Edit candidate fields. Allowed whatever the review state is.

        Titles and use cases are cut to the same limits as generated ones.
        """
        self._check_index(index)
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit fields: {', '.join(sorted(unknown))}")

        candidate = self.candidates[index]
        for key, value in fields.items():
            if key == "title":
                value = value[:TITLE_MAX_LENGTH]
            elif key == "use_case":
                value = value[:USE_CASE_MAX_LENGTH]
            elif key == "variables":
                value = [v if isinstance(v, TemplateVariable) else TemplateVariable(**v) for v in value]
            setattr(candidate, key, value)

    def commit(self, reconciler: PendingTemplates) -> CommitResult:
        """Hand every candidate, pending ones included, to the reconciler.

        On failure the session is unchanged and commit can be retried.
        """
        try:
            return reconciler.commit(self.candidates, self.generated_at)
        except Exception as e:
            raise normalize_error(e) from e
