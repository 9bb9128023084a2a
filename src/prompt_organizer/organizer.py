"""Orchestration of an organizer run: select, generate, package, flag."""

from datetime import datetime
from typing import Callable, Protocol

from rich.console import Console

from .config import OUTPUT_TOKEN_RATIO
from .converter import convert_to_candidate
from .errors import CancellationError, ErrorCode, FilterError, LLMError, OrganizerError, normalize_error
from .estimator import CostEstimator, calculate_cost
from .generator import TemplateGenerator
from .llm import CancellationToken, LLMClient
from .models import (
    CandidateInput,
    Category,
    ExecutionEstimate,
    GenerationProgress,
    OrganizerResult,
    OrganizerSettings,
    SourcePrompt,
    TemplateCandidate,
)
from .pending import PendingTemplates
from .selector import select_prompts
from .success_message import generate_success_message

console = Console()


class PromptStore(Protocol):
    def get_all_prompts(self) -> list[SourcePrompt]: ...

    def update_prompt(self, prompt_id: str, **fields): ...


class CategoryProvider(Protocol):
    def get_all_categories(self) -> list[Category]: ...


class PromptOrganizer:
    """Runs the organizer pipeline.

    Every failure leaves the public methods as an OrganizerError. Only one
    run may be in flight per instance.
    """

    def __init__(
        self,
        prompt_store: PromptStore,
        category_provider: CategoryProvider,
        client: LLMClient,
        pending: PendingTemplates | None = None,
        with_success_message: bool = False,
    ):
        self.prompt_store = prompt_store
        self.category_provider = category_provider
        self.client = client
        self.pending = pending
        self.with_success_message = with_success_message
        self.generator = TemplateGenerator(client)
        self.estimator = CostEstimator(client)
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def target_prompts(self, settings: OrganizerSettings, now: datetime | None = None) -> list[CandidateInput]:
        return select_prompts(self.prompt_store.get_all_prompts(), settings, now)

    async def estimate_execution(self, settings: OrganizerSettings) -> ExecutionEstimate:
        """Estimate tokens and cost for a run with these settings."""
        try:
            prompts = self.target_prompts(settings)
            categories = self.category_provider.get_all_categories()
            return await self.estimator.estimate_execution(prompts, settings, categories)
        except Exception as e:
            raise normalize_error(e) from e

    async def execute_organization(
        self,
        settings: OrganizerSettings,
        token: CancellationToken | None = None,
        on_progress: Callable[[GenerationProgress], None] | None = None,
    ) -> OrganizerResult:
        """Run the full pipeline and return the packaged result."""
        if self._running:
            raise OrganizerError(ErrorCode.BUSY, "An organizer run is already in progress")

        self._running = True
        try:
            return await self._execute(settings, token or CancellationToken(), on_progress)
        except OrganizerError:
            raise
        except Exception as e:
            raise normalize_error(e) from e
        finally:
            self._running = False

    async def _execute(
        self,
        settings: OrganizerSettings,
        token: CancellationToken,
        on_progress: Callable[[GenerationProgress], None] | None,
    ) -> OrganizerResult:
        executed_at = datetime.now()

        targets = self.target_prompts(settings, executed_at)
        if not targets:
            raise FilterError("No prompts match the filter criteria")
        console.print(f"[cyan]{len(targets)} prompts selected for organization[/cyan]")

        categories = self.category_provider.get_all_categories()
        output = await self.generator.generate_templates(
            targets, settings.organization_prompt, categories, token=token, on_progress=on_progress
        )

        candidates = [
            convert_to_candidate(template, targets, categories, settings.filter_period_days, executed_at)
            for template in output.templates
        ]

        usage = output.usage
        estimated_cost = calculate_cost(usage.input_tokens, int(usage.input_tokens * OUTPUT_TOKEN_RATIO))
        actual_cost = calculate_cost(usage.input_tokens, usage.output_tokens)

        if token.cancelled:
            raise CancellationError("Generation cancelled by user")

        self._flag_source_prompts(candidates)

        if candidates and self.pending is not None:
            self.pending.replace_batch(candidates, executed_at)

        success_message = None
        if self.with_success_message and candidates:
            success_message = await self._success_message(candidates[0])

        return OrganizerResult(
            templates=candidates,
            source_count=len(targets),
            source_prompt_ids=[p.id for p in targets],
            period_days=settings.filter_period_days,
            executed_at=executed_at,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            estimated_cost=estimated_cost,
            actual_cost=actual_cost,
            success_message=success_message,
        )

    def _flag_source_prompts(self, candidates: list[TemplateCandidate]):
        """Exclude every referenced source prompt from future runs.

        Best effort: a failed update is reported and the run still succeeds.
        The flag is never reverted, even if the candidate is discarded later.
        """
        source_ids = []
        for candidate in candidates:
            for source_id in candidate.ai_metadata.source_prompt_ids:
                if source_id not in source_ids:
                    source_ids.append(source_id)

        for source_id in source_ids:
            try:
                self.prompt_store.update_prompt(source_id, exclude_from_organizer=True)
            except Exception as e:
                console.print(f"[yellow]Could not flag prompt {source_id} as organized: {e}[/yellow]")

    async def _success_message(self, candidate: TemplateCandidate) -> str | None:
        try:
            return await generate_success_message(self.client, candidate)
        except LLMError as e:
            console.print(f"[yellow]Skipping success message: {e.message}[/yellow]")
            return None
