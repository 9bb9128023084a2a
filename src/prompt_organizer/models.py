"""Data models for prompt organizer."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum


@dataclass
class SourcePrompt:
    """A prompt from the user's history library."""

    id: str
    name: str
    content: str
    execution_count: int
    last_executed_at: datetime
    exclude_from_organizer: bool = False


@dataclass
class Category:
    """A template category."""

    id: str
    name: str
    is_default: bool = False


@dataclass
class OrganizerSettings:
    """Filter and instruction settings for an organizer run."""

    filter_period_days: int = 30
    filter_min_execution_count: int = 2
    filter_max_prompts: int = 50
    organization_prompt: str = ""

    def __post_init__(self):
        if self.filter_period_days <= 0:
            raise ValueError("filter_period_days must be positive")
        if self.filter_min_execution_count < 0:
            raise ValueError("filter_min_execution_count must not be negative")
        if self.filter_max_prompts <= 0:
            raise ValueError("filter_max_prompts must be positive")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "OrganizerSettings":
        return cls(
            filter_period_days=int(data["filter_period_days"]),
            filter_min_execution_count=int(data["filter_min_execution_count"]),
            filter_max_prompts=int(data["filter_max_prompts"]),
            organization_prompt=data.get("organization_prompt", ""),
        )


@dataclass(frozen=True)
class CandidateInput:
    """Projection of a source prompt that is sent to the model."""

    id: str
    name: str
    content: str
    execution_count: int


@dataclass
class TokenUsage:
    """Token counters for one generation call."""

    input_tokens: int = 0
    thoughts_tokens: int = 0
    output_tokens: int = 0

    def merge(self, input_tokens: int = 0, thoughts_tokens: int = 0, output_tokens: int = 0):
        """Raise counters to the reported values. Counters never decrease."""
        self.input_tokens = max(self.input_tokens, input_tokens)
        self.thoughts_tokens = max(self.thoughts_tokens, thoughts_tokens)
        self.output_tokens = max(self.output_tokens, output_tokens)


class GenerationStatus(str, Enum):
    SENDING = "sending"
    THINKING = "thinking"
    GENERATING = "generating"
    COMPLETE = "complete"


@dataclass
class GenerationProgress:
    """Progress snapshot delivered once per stream chunk."""

    chunk: str
    accumulated: str
    estimated_progress: int
    status: GenerationStatus
    thoughts_tokens: int = 0
    output_tokens: int = 0


@dataclass
class TemplateVariable:
    """A `{{name}}` placeholder in a template."""

    name: str
    description: str = ""


@dataclass
class GeneratedTemplate:
    """One template item as returned by the model."""

    title: str
    content: str
    use_case: str
    category_id: str
    source_prompt_ids: list[str]
    variables: list[TemplateVariable] = field(default_factory=list)
    cluster_explanation: str = ""


class UserAction(str, Enum):
    PENDING = "pending"
    SAVE = "save"
    DISCARD = "discard"
    SAVE_AND_PIN = "save_and_pin"


@dataclass
class AIMetadata:
    """Provenance of an AI-generated template."""

    generated_at: datetime
    source_prompt_ids: list[str]
    source_count: int
    source_period_days: int
    extracted_variables: list[TemplateVariable]
    confirmed: bool = False
    show_in_pinned: bool = False


@dataclass
class TemplateCandidate:
    """A generated template awaiting review."""

    id: str
    title: str
    content: str
    use_case: str
    category_id: str
    variables: list[TemplateVariable]
    ai_metadata: AIMetadata
    user_action: UserAction = UserAction.PENDING
    cluster_explanation: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["user_action"] = self.user_action.value
        data["ai_metadata"]["generated_at"] = self.ai_metadata.generated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TemplateCandidate":
        meta = data["ai_metadata"]
        return cls(
            id=data["id"],
            title=data["title"],
            content=data["content"],
            use_case=data["use_case"],
            category_id=data["category_id"],
            variables=[TemplateVariable(**v) for v in data.get("variables", [])],
            ai_metadata=AIMetadata(
                generated_at=datetime.fromisoformat(meta["generated_at"]),
                source_prompt_ids=list(meta["source_prompt_ids"]),
                source_count=meta["source_count"],
                source_period_days=meta["source_period_days"],
                extracted_variables=[TemplateVariable(**v) for v in meta.get("extracted_variables", [])],
                confirmed=meta.get("confirmed", False),
                show_in_pinned=meta.get("show_in_pinned", False),
            ),
            user_action=UserAction(data.get("user_action", UserAction.PENDING.value)),
            cluster_explanation=data.get("cluster_explanation", ""),
        )


@dataclass
class OrganizerResult:
    """Outcome of one organizer run."""

    templates: list[TemplateCandidate]
    source_count: int
    source_prompt_ids: list[str]
    period_days: int
    executed_at: datetime
    input_tokens: int
    output_tokens: int
    estimated_cost: float | None = None
    actual_cost: float | None = None
    success_message: str | None = None


@dataclass
class ExecutionEstimate:
    """Pre-flight estimate for a run."""

    target_prompt_count: int
    estimated_input_tokens: int
    estimated_output_tokens: int
    context_usage_rate: float
    model: str
    context_limit: int
    estimated_cost: float


@dataclass
class PendingOrganizerTemplates:
    """The persisted batch of candidates not yet reviewed."""

    templates: list[TemplateCandidate]
    generated_at: datetime

    def to_dict(self) -> dict:
        return {
            "templates": [t.to_dict() for t in self.templates],
            "generated_at": self.generated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingOrganizerTemplates":
        return cls(
            templates=[TemplateCandidate.from_dict(t) for t in data["templates"]],
            generated_at=datetime.fromisoformat(data["generated_at"]),
        )


@dataclass
class CommitResult:
    """Partition of a review batch after commit."""

    saved: list[TemplateCandidate]
    discarded: list[TemplateCandidate]
    remaining: list[TemplateCandidate]
