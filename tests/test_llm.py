"""Tests for the Claude client wrapper using fake stream events."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

import anthropic

from prompt_organizer.errors import LLMError, LLMErrorType
from prompt_organizer.llm import CancellationToken, LLMClient, parse_json_response, to_llm_error

from fakes import TOOL_EVENTS, client_with_stream, json_delta, message_delta, message_start, text_delta


class TestClientLifecycle:
    """Initialization and API key handling."""

    def test_empty_key_rejected(self):
        client = LLMClient()

        with pytest.raises(LLMError) as exc_info:
            client.initialize("")

        assert exc_info.value.error_type == LLMErrorType.API_KEY_MISSING
        assert not client.is_initialized()

    def test_ensure_initialized_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        client = LLMClient()

        client.ensure_initialized()

        assert client.is_initialized()
        client.reset()
        assert not client.is_initialized()

    def test_sdk_retries_disabled(self):
        with patch("prompt_organizer.llm.AsyncAnthropic") as sdk_class:
            LLMClient().initialize("sk-test")

        sdk_class.assert_called_once_with(api_key="sk-test", max_retries=0)

    @pytest.mark.asyncio
    async def test_close_releases_sdk_client(self):
        client = LLMClient()
        sdk = MagicMock()
        sdk.close = AsyncMock()
        client._client = sdk

        await client.close()
        await client.close()

        sdk.close.assert_awaited_once()
        assert not client.is_initialized()

    @pytest.mark.asyncio
    async def test_calls_require_initialization(self):
        client = LLMClient()

        with pytest.raises(LLMError) as exc_info:
            await client.estimate_tokens("hello")

        assert exc_info.value.error_type == LLMErrorType.API_KEY_MISSING


class TestStructuredStream:
    """Streaming tool-use generation."""

    @pytest.mark.asyncio
    async def test_returns_parsed_tool_input_and_usage(self):
        client = client_with_stream(TOOL_EVENTS)

        response = await client.generate_structured_content_stream("prompt", {"type": "object"}, "system")

        assert response.data == {"prompts": [{"title": "Weekly report"}]}
        assert response.usage.input_tokens == 1200
        assert response.usage.thoughts_tokens > 0
        assert response.usage.output_tokens >= 80

    @pytest.mark.asyncio
    async def test_thinking_uses_auto_tool_choice(self):
        client = client_with_stream(TOOL_EVENTS, thinking_budget=2048)

        await client.generate_structured_content_stream("prompt", {"type": "object"}, "system", tool_name="save")

        request = client._client.messages.stream.call_args.kwargs
        assert request["thinking"] == {"type": "enabled", "budget_tokens": 2048}
        assert request["tool_choice"] == {"type": "auto"}
        assert request["tools"][0]["name"] == "save"

    @pytest.mark.asyncio
    async def test_without_thinking_forces_the_tool(self):
        client = client_with_stream(TOOL_EVENTS, thinking_budget=None)

        await client.generate_structured_content_stream("prompt", {"type": "object"}, "system", tool_name="save")

        request = client._client.messages.stream.call_args.kwargs
        assert "thinking" not in request
        assert request["tool_choice"] == {"type": "tool", "name": "save"}

    @pytest.mark.asyncio
    async def test_progress_counters_never_decrease(self):
        client = client_with_stream(TOOL_EVENTS)
        seen = []

        await client.generate_structured_content_stream(
            "prompt",
            {"type": "object"},
            "system",
            on_progress=lambda chunk, accumulated, usage: seen.append(
                (usage.input_tokens, usage.thoughts_tokens, usage.output_tokens, accumulated)
            ),
        )

        # content_block_stop is not a progress event
        assert len(seen) == 5
        for earlier, later in zip(seen, seen[1:]):
            assert later[0] >= earlier[0]
            assert later[1] >= earlier[1]
            assert later[2] >= earlier[2]
        assert seen[-1][3] == '{"prompts": [{"title": "Weekly report"}]}'

    @pytest.mark.asyncio
    async def test_final_usage_is_reported_output(self):
        client = client_with_stream([*TOOL_EVENTS[:-1], message_delta(1)])
        seen = []

        response = await client.generate_structured_content_stream(
            "prompt",
            {"type": "object"},
            "system",
            on_progress=lambda chunk, accumulated, usage: seen.append(usage.output_tokens),
        )

        assert response.usage.output_tokens == 1
        assert max(seen) > 1
        assert seen == sorted(seen)

    @pytest.mark.asyncio
    async def test_falls_back_to_text_output(self):
        client = client_with_stream(
            [message_start(10), text_delta('```json\n{"prompts": []}\n```'), message_delta(5)]
        )

        response = await client.generate_structured_content_stream("prompt", {"type": "object"}, "system")

        assert response.data == {"prompts": []}

    @pytest.mark.asyncio
    async def test_empty_response_is_invalid(self):
        client = client_with_stream([message_start(10), message_delta(0)])

        with pytest.raises(LLMError) as exc_info:
            await client.generate_structured_content_stream("prompt", {"type": "object"}, "system")

        assert exc_info.value.error_type == LLMErrorType.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_malformed_json_is_invalid(self):
        client = client_with_stream([message_start(10), json_delta('{"prompts": [')])

        with pytest.raises(LLMError) as exc_info:
            await client.generate_structured_content_stream("prompt", {"type": "object"}, "system")

        assert exc_info.value.error_type == LLMErrorType.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_cancel_mid_stream_raises_and_stops_progress(self):
        client = client_with_stream(TOOL_EVENTS)
        token = CancellationToken()
        calls = []

        def on_progress(chunk, accumulated, usage):
            calls.append(chunk)
            token.cancel()

        with pytest.raises(LLMError) as exc_info:
            await client.generate_structured_content_stream(
                "prompt", {"type": "object"}, "system", token=token, on_progress=on_progress
            )

        assert exc_info.value.error_type == LLMErrorType.CANCELLED
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        client = client_with_stream(TOOL_EVENTS)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(LLMError) as exc_info:
            await client.generate_structured_content_stream("prompt", {"type": "object"}, "system", token=token)

        assert exc_info.value.error_type == LLMErrorType.CANCELLED


class TestGenerateContent:
    """Single-shot generation."""

    @pytest.mark.asyncio
    async def test_joins_text_blocks(self):
        client = LLMClient()
        client._client = MagicMock()
        client._client.messages.create = AsyncMock(
            return_value=SimpleNamespace(
                content=[
                    SimpleNamespace(type="text", text="Fill in the blanks "),
                    SimpleNamespace(type="text", text="to reuse it."),
                ]
            )
        )

        text = await client.generate_content("prompt", "system", model="claude-small", max_tokens=50)

        assert text == "Fill in the blanks to reuse it."
        kwargs = client._client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-small"
        assert kwargs["system"] == "system"

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def slow(**kwargs):
            await asyncio.sleep(1)

        client = LLMClient()
        client._client = MagicMock()
        client._client.messages.create = slow

        with pytest.raises(LLMError) as exc_info:
            await client.generate_content("prompt", timeout=0.01)

        assert exc_info.value.error_type == LLMErrorType.TIMEOUT


class TestErrorMapping:
    """SDK exceptions become typed LLM errors."""

    def _request(self):
        return httpx.Request("POST", "https://api.anthropic.com/v1/messages")

    def test_connection_error(self):
        error = to_llm_error(anthropic.APIConnectionError(request=self._request()))
        assert error.error_type == LLMErrorType.NETWORK_ERROR

    def test_timeout_error(self):
        error = to_llm_error(anthropic.APITimeoutError(request=self._request()))
        assert error.error_type == LLMErrorType.TIMEOUT

    def test_authentication_error(self):
        response = httpx.Response(401, request=self._request())
        error = to_llm_error(anthropic.AuthenticationError("bad key", response=response, body=None))
        assert error.error_type == LLMErrorType.API_KEY_MISSING

    def test_status_error_keeps_message(self):
        response = httpx.Response(529, request=self._request())
        error = to_llm_error(anthropic.APIStatusError("Overloaded", response=response, body=None))
        assert error.error_type == LLMErrorType.API_ERROR
        assert "Overloaded" in error.message


class TestParseJsonResponse:
    def test_plain_object(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_code_fence_with_prose(self):
        assert parse_json_response('Here you go:\n```json\n{"a": [1, 2]}\n```\nDone.') == {"a": [1, 2]}
