"""Async Claude API client for structured, streamed generation."""

import asyncio
import json
from dataclasses import dataclass, replace
from typing import Callable

import anthropic
from anthropic import AsyncAnthropic

from .config import MAX_OUTPUT_TOKENS, MODEL, SUCCESS_MESSAGE_TIMEOUT, THINKING_BUDGET_TOKENS, get_api_key
from .errors import LLMError, LLMErrorType
from .models import TokenUsage
from .stats import count_tokens

ProgressCallback = Callable[[str, str, TokenUsage], None]

# Raw stream events that carry content or usage; the SDK also emits derived
# convenience events ("text", "thinking", "input_json") which are skipped.
_PROGRESS_EVENTS = {"message_start", "content_block_delta", "message_delta"}


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a running call."""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self):
        if self._cancelled:
            raise LLMError("Generation cancelled", LLMErrorType.CANCELLED)


@dataclass
class StructuredResponse:
    """Parsed JSON output of a structured call and its final token usage."""

    data: dict
    usage: TokenUsage


def parse_json_response(content: str) -> dict:
    """Parse a JSON object from a model response, handling code fences."""
    content = content.strip()

    if "```" in content:
        parts = content.split("```")
        if len(parts) >= 2:
            content = parts[1]
            if content.startswith("json"):
                content = content[4:]
            content = content.strip()

    start = content.find("{")
    end = content.rfind("}")
    if start != -1 and end != -1 and end > start:
        content = content[start : end + 1]

    return json.loads(content)


def to_llm_error(error: Exception) -> LLMError:
    """Map an SDK exception to a typed LLMError."""
    if isinstance(error, anthropic.AuthenticationError):
        return LLMError("Invalid API key.", LLMErrorType.API_KEY_MISSING, error)
    # APITimeoutError is a subclass of APIConnectionError
    if isinstance(error, anthropic.APITimeoutError):
        return LLMError("Request timed out.", LLMErrorType.TIMEOUT, error)
    if isinstance(error, anthropic.APIConnectionError):
        return LLMError("Network error. Please check your connection.", LLMErrorType.NETWORK_ERROR, error)
    if isinstance(error, anthropic.APIStatusError):
        return LLMError(f"API error: {error.message}", LLMErrorType.API_ERROR, error)
    return LLMError(f"API error: {error}", LLMErrorType.API_ERROR, error)


class LLMClient:
    """Wrapper around AsyncAnthropic used by the organizer services."""

    def __init__(
        self,
        model: str = MODEL,
        max_tokens: int = MAX_OUTPUT_TOKENS,
        thinking_budget: int | None = THINKING_BUDGET_TOKENS,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.thinking_budget = thinking_budget
        self._client: AsyncAnthropic | None = None

    def initialize(self, api_key: str | None):
        """Create the SDK client. Raises LLMError when the key is empty."""
        if not api_key:
            raise LLMError("API key is required", LLMErrorType.API_KEY_MISSING)
        # Failed calls are retried by the user, never by the SDK
        self._client = AsyncAnthropic(api_key=api_key, max_retries=0)

    def ensure_initialized(self, api_key: str | None = None):
        """Initialize from the given key or the environment unless already done."""
        if self._client is None:
            self.initialize(api_key or get_api_key())

    def is_initialized(self) -> bool:
        return self._client is not None

    def reset(self):
        self._client = None

    async def close(self):
        """Close the SDK client's connections. Call before the event loop ends."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    def _require_client(self) -> AsyncAnthropic:
        if self._client is None:
            raise LLMError("Client not initialized. Call initialize() first.", LLMErrorType.API_KEY_MISSING)
        return self._client

    @staticmethod
    def build_tool(name: str, schema: dict) -> dict:
        return {
            "name": name,
            "description": "Record the result in the required structure.",
            "input_schema": schema,
        }

    async def estimate_tokens(self, prompt: str, system_instruction: str | None = None, tools: list[dict] | None = None) -> int:
        """Count input tokens for a request without generating anything."""
        client = self._require_client()
        kwargs = {"model": self.model, "messages": [{"role": "user", "content": prompt}]}
        if system_instruction:
            kwargs["system"] = system_instruction
        if tools:
            kwargs["tools"] = tools

        try:
            result = await client.messages.count_tokens(**kwargs)
        except anthropic.APIError as e:
            raise to_llm_error(e) from e
        return result.input_tokens

    async def generate_structured_content_stream(
        self,
        prompt: str,
        schema: dict,
        system_instruction: str,
        *,
        tool_name: str = "save_templates",
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> StructuredResponse:
        """Stream a tool-use call and return the parsed tool input.

        The token is checked on every stream event. Once cancelled, the call
        raises LLMError(CANCELLED) and nothing accumulated so far is returned.
        """
        client = self._require_client()

        request = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system_instruction,
            "messages": [{"role": "user", "content": prompt}],
            "tools": [self.build_tool(tool_name, schema)],
        }
        if self.thinking_budget:
            # Forced tool choice is not allowed together with extended thinking
            request["thinking"] = {"type": "enabled", "budget_tokens": self.thinking_budget}
            request["tool_choice"] = {"type": "auto"}
        else:
            request["tool_choice"] = {"type": "tool", "name": tool_name}

        usage = TokenUsage()
        accumulated = ""
        text_output = ""
        thinking_text = ""
        estimated_output = 0
        reported_output = None

        try:
            async with client.messages.stream(**request) as stream:
                async for event in stream:
                    if token:
                        token.raise_if_cancelled()
                    if event.type not in _PROGRESS_EVENTS:
                        continue

                    chunk = ""
                    if event.type == "message_start":
                        usage.merge(input_tokens=event.message.usage.input_tokens or 0)
                    elif event.type == "message_delta":
                        reported_output = event.usage.output_tokens or 0
                        usage.merge(output_tokens=reported_output)
                    else:
                        delta = event.delta
                        if delta.type == "thinking_delta":
                            thinking_text += delta.thinking
                            usage.merge(thoughts_tokens=count_tokens(thinking_text))
                        elif delta.type == "input_json_delta":
                            chunk = delta.partial_json
                            accumulated += chunk
                        elif delta.type == "text_delta":
                            chunk = delta.text
                            text_output += chunk
                        if chunk:
                            estimated_output += count_tokens(chunk)
                            usage.merge(output_tokens=estimated_output)

                    if on_progress:
                        on_progress(chunk, accumulated or text_output, usage)
        except anthropic.APIError as e:
            raise to_llm_error(e) from e

        if token:
            token.raise_if_cancelled()

        raw = accumulated or text_output
        if not raw.strip():
            raise LLMError("No response from API", LLMErrorType.INVALID_RESPONSE)
        try:
            data = json.loads(accumulated) if accumulated else parse_json_response(text_output)
        except json.JSONDecodeError as e:
            raise LLMError("Invalid JSON response from API", LLMErrorType.INVALID_RESPONSE, e) from e

        # Progress counters never decrease, but the final usage is the provider's count
        if reported_output is not None:
            usage = replace(usage, output_tokens=reported_output)
        return StructuredResponse(data=data, usage=usage)

    async def generate_content(
        self,
        prompt: str,
        system_instruction: str | None = None,
        *,
        model: str | None = None,
        max_tokens: int = 1024,
        timeout: float = SUCCESS_MESSAGE_TIMEOUT,
    ) -> str:
        """Single-shot text generation bounded by a timeout."""
        client = self._require_client()
        kwargs = {
            "model": model or self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_instruction:
            kwargs["system"] = system_instruction

        try:
            response = await asyncio.wait_for(client.messages.create(**kwargs), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise LLMError(f"Request timed out after {timeout:.0f}s", LLMErrorType.TIMEOUT, e) from e
        except anthropic.APIError as e:
            raise to_llm_error(e) from e

        return "".join(block.text for block in response.content if block.type == "text").strip()
