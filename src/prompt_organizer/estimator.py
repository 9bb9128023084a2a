"""Pre-flight token and cost estimation."""

import asyncio
from typing import Awaitable, Callable

from rich.console import Console

from .config import (
    CONTEXT_LIMIT,
    ESTIMATE_DEBOUNCE_SECONDS,
    INPUT_PRICE_PER_1M,
    OUTPUT_PRICE_PER_1M,
    OUTPUT_TOKEN_RATIO,
    USD_TO_JPY,
)
from .generator import ORGANIZE_SCHEMA, SYSTEM_ORGANIZATION_INSTRUCTION, TOOL_NAME, build_prompt
from .llm import LLMClient
from .models import CandidateInput, Category, ExecutionEstimate, OrganizerSettings

console = Console()


def calculate_cost(input_tokens: int, output_tokens: int) -> float:
    """Cost in JPY for the given token counts."""
    usd = input_tokens / 1_000_000 * INPUT_PRICE_PER_1M + output_tokens / 1_000_000 * OUTPUT_PRICE_PER_1M
    return usd * USD_TO_JPY


class CostEstimator:
    """Counts tokens for the exact organizer request without running it."""

    def __init__(self, client: LLMClient):
        self.client = client

    async def estimate_execution(
        self,
        prompts: list[CandidateInput],
        settings: OrganizerSettings,
        categories: list[Category],
    ) -> ExecutionEstimate:
        self.client.ensure_initialized()

        prompt_text = build_prompt(prompts, settings.organization_prompt, categories)
        input_tokens = await self.client.estimate_tokens(
            prompt_text,
            system_instruction=SYSTEM_ORGANIZATION_INSTRUCTION,
            tools=[LLMClient.build_tool(TOOL_NAME, ORGANIZE_SCHEMA)],
        )
        output_tokens = int(input_tokens * OUTPUT_TOKEN_RATIO)

        return ExecutionEstimate(
            target_prompt_count=len(prompts),
            estimated_input_tokens=input_tokens,
            estimated_output_tokens=output_tokens,
            context_usage_rate=input_tokens / CONTEXT_LIMIT,
            model=self.client.model,
            context_limit=CONTEXT_LIMIT,
            estimated_cost=calculate_cost(input_tokens, output_tokens),
        )


class EstimateScheduler:
    """Debounces re-estimation while settings are being edited.

    Only timers that have not fired yet are cancelled by a new `schedule()`.
    An estimate that is already running completes and is delivered even if a
    newer one was scheduled after it.
    """

    def __init__(
        self,
        estimate: Callable[[OrganizerSettings], Awaitable[ExecutionEstimate]],
        on_estimate: Callable[[ExecutionEstimate], None],
        on_error: Callable[[Exception], None] | None = None,
        delay: float = ESTIMATE_DEBOUNCE_SECONDS,
    ):
        self._estimate = estimate
        self._on_estimate = on_estimate
        self._on_error = on_error
        self.delay = delay
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, settings: OrganizerSettings):
        """Request an estimate for these settings after the debounce delay."""
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay, self._fire, settings)

    def _fire(self, settings: OrganizerSettings):
        self._timer = None
        task = asyncio.ensure_future(self._run(settings))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, settings: OrganizerSettings):
        try:
            estimate = await self._estimate(settings)
        except Exception as e:
            if self._on_error is None:
                console.print(f"[red]Estimate failed: {e}[/red]")
                return
            self._on_error(e)
            return
        self._on_estimate(estimate)

    async def wait(self):
        """Wait for a scheduled estimate to fire and every fired estimate to finish."""
        while self._timer is not None:
            await asyncio.sleep(self.delay)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def cancel(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
