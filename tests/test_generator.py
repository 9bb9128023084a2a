"""Tests for template generation."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from prompt_organizer.db import DEFAULT_CATEGORIES
from prompt_organizer.errors import (
    CancellationError,
    ConfigurationError,
    GenerationError,
    LLMError,
    LLMErrorType,
    NetworkError,
)
from prompt_organizer.generator import (
    DEFAULT_ORGANIZATION_PROMPT,
    TemplateGenerator,
    build_prompt,
    calculate_progress,
    calculate_status,
    parse_templates,
)
from prompt_organizer.llm import CancellationToken, StructuredResponse
from prompt_organizer.models import CandidateInput, Category, GenerationStatus, TokenUsage

from fakes import TOOL_EVENTS, client_with_stream

PROMPTS = [
    CandidateInput(id="p1", name="Report", content="Write the weekly report for Apollo", execution_count=5),
    CandidateInput(id="p2", name="Report 2", content="Write the weekly report for Gemini", execution_count=3),
]

TEMPLATE_ITEM = {
    "title": "Weekly report",
    "content": "Write the weekly report for {{project}}",
    "useCase": "Status reporting",
    "categoryId": "documentCreation",
    "sourcePromptIds": ["p1", "p2"],
    "variables": [{"name": "project", "description": "Project name"}],
    "clusterExplanation": "Both ask for the weekly report.",
}


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.generate_structured_content_stream = AsyncMock(
        return_value=StructuredResponse(data={"prompts": [TEMPLATE_ITEM]}, usage=TokenUsage(1000, 200, 300))
    )
    return client


class TestBuildPrompt:
    """User message layout."""

    def test_lists_categories_and_prompts(self):
        prompt = build_prompt(PROMPTS, "Group these.", [Category(id="development", name="Development")])

        assert prompt.startswith("Group these.")
        assert "# Available Categories:\n- ID: development  Name: Development" in prompt
        assert "# Prompts to analyze:" in prompt
        assert "1. Report\n   ID: p1\n   Content: Write the weekly report for Apollo\n   Execution count: 5" in prompt
        assert "2. Report 2\n   ID: p2" in prompt
        assert prompt.endswith("Please generate prompts in JSON format according to the schema.")

    def test_empty_organization_prompt_uses_default(self):
        prompt = build_prompt(PROMPTS, "", DEFAULT_CATEGORIES)

        assert prompt.startswith(DEFAULT_ORGANIZATION_PROMPT)


class TestStatusAndProgress:
    """Status and progress heuristics."""

    @pytest.mark.parametrize(
        "usage, expected",
        [
            (TokenUsage(100, 0, 0), GenerationStatus.SENDING),
            (TokenUsage(100, 50, 0), GenerationStatus.THINKING),
            (TokenUsage(100, 50, 10), GenerationStatus.GENERATING),
        ],
    )
    def test_status(self, usage, expected):
        assert calculate_status(usage) == expected

    def test_nothing_received(self):
        assert calculate_progress("", 8, TokenUsage()) == 0

    def test_thinking_only(self):
        assert calculate_progress("", 8, TokenUsage(thoughts_tokens=30)) == 20

    def test_grows_with_titles(self):
        one = calculate_progress('{"prompts": [{"title": "A"', 8, TokenUsage())
        two = calculate_progress('{"prompts": [{"title": "A"}, {"title": "B"', 8, TokenUsage())

        assert one == 65
        assert two == 90

    def test_caps_at_ninety(self):
        accumulated = "".join('{"title": "x"}' for _ in range(20))

        assert calculate_progress(accumulated, 8, TokenUsage()) == 90

    def test_json_started_without_titles(self):
        assert calculate_progress('{"prompts": [', 8, TokenUsage()) == 40


class TestParseTemplates:
    """Shape checks on the model output."""

    def test_parses_items(self):
        (template,) = parse_templates({"prompts": [TEMPLATE_ITEM]})

        assert template.title == "Weekly report"
        assert template.use_case == "Status reporting"
        assert template.source_prompt_ids == ["p1", "p2"]
        assert template.variables[0].name == "project"
        assert template.cluster_explanation == "Both ask for the weekly report."

    def test_cluster_explanation_optional(self):
        item = {k: v for k, v in TEMPLATE_ITEM.items() if k != "clusterExplanation"}

        (template,) = parse_templates({"prompts": [item]})

        assert template.cluster_explanation == ""

    def test_empty_array_is_valid(self):
        assert parse_templates({"prompts": []}) == []

    def test_missing_prompts_array(self):
        with pytest.raises(GenerationError):
            parse_templates({"templates": []})

    def test_missing_required_field(self):
        item = {k: v for k, v in TEMPLATE_ITEM.items() if k != "useCase"}

        with pytest.raises(GenerationError, match="index 0"):
            parse_templates({"prompts": [item]})

    def test_wrong_type(self):
        with pytest.raises(GenerationError):
            parse_templates({"prompts": [{**TEMPLATE_ITEM, "sourcePromptIds": "p1"}]})


class TestTemplateGenerator:
    """Driving the streaming call."""

    @pytest.mark.asyncio
    async def test_returns_templates_and_usage(self, mock_client):
        generator = TemplateGenerator(mock_client)

        output = await generator.generate_templates(PROMPTS, "", DEFAULT_CATEGORIES)

        assert [t.title for t in output.templates] == ["Weekly report"]
        assert output.usage.output_tokens == 300
        mock_client.ensure_initialized.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_final_progress_is_complete(self, mock_client):
        generator = TemplateGenerator(mock_client)
        updates = []

        await generator.generate_templates(PROMPTS, "", DEFAULT_CATEGORIES, on_progress=updates.append)

        assert updates[-1].status == GenerationStatus.COMPLETE
        assert updates[-1].estimated_progress == 100

    @pytest.mark.parametrize(
        "error_type, expected",
        [
            (LLMErrorType.CANCELLED, CancellationError),
            (LLMErrorType.API_KEY_MISSING, ConfigurationError),
            (LLMErrorType.NETWORK_ERROR, NetworkError),
            (LLMErrorType.INVALID_RESPONSE, GenerationError),
        ],
    )
    @pytest.mark.asyncio
    async def test_maps_llm_errors(self, mock_client, error_type, expected):
        mock_client.generate_structured_content_stream.side_effect = LLMError("failed", error_type)
        generator = TemplateGenerator(mock_client)

        with pytest.raises(expected):
            await generator.generate_templates(PROMPTS, "", DEFAULT_CATEGORIES)

    @pytest.mark.asyncio
    async def test_other_llm_errors_propagate(self, mock_client):
        mock_client.generate_structured_content_stream.side_effect = LLMError("overloaded", LLMErrorType.API_ERROR)
        generator = TemplateGenerator(mock_client)

        with pytest.raises(LLMError):
            await generator.generate_templates(PROMPTS, "", DEFAULT_CATEGORIES)

    @pytest.mark.asyncio
    async def test_streams_progress_from_real_events(self):
        generator = TemplateGenerator(client_with_stream(TOOL_EVENTS))
        updates = []

        with pytest.raises(GenerationError):
            # The canned events carry an incomplete template item
            await generator.generate_templates(PROMPTS, "", DEFAULT_CATEGORIES, on_progress=updates.append)

        statuses = [u.status for u in updates]
        assert statuses[0] == GenerationStatus.SENDING
        assert GenerationStatus.THINKING in statuses
        assert statuses[-1] == GenerationStatus.GENERATING

    @pytest.mark.asyncio
    async def test_cancel_mid_stream_yields_no_result(self):
        generator = TemplateGenerator(client_with_stream(TOOL_EVENTS))
        token = CancellationToken()
        updates = []

        def on_progress(update):
            updates.append(update)
            if update.status == GenerationStatus.THINKING:
                token.cancel()

        with pytest.raises(CancellationError):
            await generator.generate_templates(PROMPTS, "", DEFAULT_CATEGORIES, token=token, on_progress=on_progress)

        assert updates[-1].status == GenerationStatus.THINKING
        assert all(u.status != GenerationStatus.COMPLETE for u in updates)
