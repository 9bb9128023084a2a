"""Template generation from prompt history using the Claude API."""

import re
from dataclasses import dataclass
from typing import Callable

from rich.console import Console

from .errors import CancellationError, ConfigurationError, GenerationError, LLMError, LLMErrorType, NetworkError
from .llm import CancellationToken, LLMClient
from .models import (
    CandidateInput,
    Category,
    GeneratedTemplate,
    GenerationProgress,
    GenerationStatus,
    TemplateVariable,
    TokenUsage,
)

console = Console()

TOOL_NAME = "save_templates"

# Not user editable; only DEFAULT_ORGANIZATION_PROMPT can be overridden
SYSTEM_ORGANIZATION_INSTRUCTION = f"""You are an expert prompt engineering assistant.
Your role is to analyze the user's prompt history and create reusable templates.

CRITICAL RULES:
- You must ONLY output structured JSON by calling the `{TOOL_NAME}` tool exactly once
- Only reference prompt IDs that appear in the input
- Focus on creating practical, reusable templates
- Output in the same language as the user prompts"""

DEFAULT_ORGANIZATION_PROMPT = """Analyze and organize the following user prompts using these guidelines.
Think through the task step by step internally, then output only your final decisions.

# Clustering
1. Group prompts by similarity in content, purpose, tasks and structure.
2. Focus on prompts that are used frequently and are easy to reuse.
3. Only keep clusters that contain two or more prompts and can share one template.

# Variables
1. Identify the fixed parts shared by the prompts of a cluster.
2. Turn the parts that vary (names, dates, targets, topics) into variables.
3. Use short snake_case variable names such as customer_name or deadline.

# Output, for each template
1. title: a short, recognisable name.
2. content: one reusable prompt. Fixed parts stay as text, variable parts
   become {{variable_name}}. Break it into sections and lists so it is easy to read.
3. useCase: a short action-style phrase describing what the template does.
4. categoryId: ONE ID from "Available Categories". Do not invent categories.
5. sourcePromptIds: the IDs of the prompts this template was built from.
6. clusterExplanation: why these prompts were grouped, in a sentence or two.
7. variables: name and a short description for every {{variable_name}} in content."""

ORGANIZE_SCHEMA = {
    "type": "object",
    "properties": {
        "prompts": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {
                        "type": "string",
                        "description": "A short, descriptive title for the prompt template.",
                    },
                    "content": {
                        "type": "string",
                        "description": "The reusable prompt template with {{variable}} placeholders.",
                    },
                    "useCase": {
                        "type": "string",
                        "description": "A concise statement describing the situation and purpose of this prompt.",
                    },
                    "categoryId": {
                        "type": "string",
                        "description": "The ID of this prompt's category.",
                    },
                    "sourcePromptIds": {
                        "type": "array",
                        "items": {"type": "string"},
                        "minItems": 1,
                    },
                    "clusterExplanation": {
                        "type": "string",
                        "description": "Why these prompts were grouped and what the common pattern is.",
                    },
                    "variables": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "name": {"type": "string"},
                                "description": {
                                    "type": "string",
                                    "description": "What value the user should input for this variable.",
                                },
                            },
                            "required": ["name", "description"],
                        },
                    },
                },
                "required": ["title", "content", "useCase", "categoryId", "sourcePromptIds", "variables"],
            },
        }
    },
    "required": ["prompts"],
}

_TITLE_PATTERN = re.compile(r'"title"\s*:')


def build_prompt(
    prompts: list[CandidateInput],
    organization_prompt: str,
    categories: list[Category],
) -> str:
    """Build the user message for an organizer run."""
    category_list = "\n".join(f"- ID: {c.id}  Name: {c.name}" for c in categories)
    prompt_list = "\n\n".join(
        f"{idx}. {p.name}\n   ID: {p.id}\n   Content: {p.content}\n   Execution count: {p.execution_count}"
        for idx, p in enumerate(prompts, start=1)
    )

    return f"""{organization_prompt or DEFAULT_ORGANIZATION_PROMPT}

# Available Categories:
{category_list}

# Prompts to analyze:
{prompt_list}

Please generate prompts in JSON format according to the schema."""


def calculate_status(usage: TokenUsage) -> GenerationStatus:
    """Derive the streaming status from token usage."""
    if usage.thoughts_tokens == 0:
        return GenerationStatus.SENDING
    if usage.output_tokens > 0:
        return GenerationStatus.GENERATING
    return GenerationStatus.THINKING


def calculate_progress(accumulated: str, input_prompt_count: int, usage: TokenUsage) -> int:
    """Heuristic progress percentage from partial JSON.

    0 with nothing received, 20 while only thinking, then 40-90 as template
    objects appear. The expected template count is a quarter of the inputs.
    """
    if not accumulated:
        return 20 if usage.thoughts_tokens > 0 else 0

    template_count = len(_TITLE_PATTERN.findall(accumulated))
    estimated_total = max(input_prompt_count / 4, 1)
    return round(min(template_count / estimated_total * 50, 50) + 40)


def _require_str(item: dict, key: str) -> str:
    value = item[key]
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value


def parse_templates(data: dict) -> list[GeneratedTemplate]:
    """Shape-check the model output and convert it to GeneratedTemplate."""
    if not isinstance(data, dict) or not isinstance(data.get("prompts"), list):
        raise GenerationError("Response does not contain a 'prompts' array")

    templates = []
    for idx, item in enumerate(data["prompts"]):
        try:
            source_ids = item["sourcePromptIds"]
            variables = item["variables"]
            if not isinstance(source_ids, list) or not isinstance(variables, list):
                raise TypeError("sourcePromptIds and variables must be arrays")
            templates.append(
                GeneratedTemplate(
                    title=_require_str(item, "title"),
                    content=_require_str(item, "content"),
                    use_case=_require_str(item, "useCase"),
                    category_id=_require_str(item, "categoryId"),
                    source_prompt_ids=[str(s) for s in source_ids],
                    variables=[
                        TemplateVariable(name=str(v["name"]), description=str(v.get("description", "")))
                        for v in variables
                    ],
                    cluster_explanation=str(item.get("clusterExplanation", "")),
                )
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise GenerationError(f"Malformed template at index {idx}: {e}") from e

    return templates


@dataclass
class GenerationOutput:
    templates: list[GeneratedTemplate]
    usage: TokenUsage


class TemplateGenerator:
    """Drives the streaming organizer call."""

    def __init__(self, client: LLMClient):
        self.client = client

    async def generate_templates(
        self,
        prompts: list[CandidateInput],
        organization_prompt: str,
        categories: list[Category],
        token: CancellationToken | None = None,
        on_progress: Callable[[GenerationProgress], None] | None = None,
    ) -> GenerationOutput:
        """Generate templates for the given candidates.

        Raises ConfigurationError, NetworkError, GenerationError or
        CancellationError. Other LLM failures propagate as LLMError.
        """
        token = token or CancellationToken()
        prompt = build_prompt(prompts, organization_prompt, categories)

        def handle_progress(chunk: str, accumulated: str, usage: TokenUsage):
            if token.cancelled or on_progress is None:
                return
            on_progress(
                GenerationProgress(
                    chunk=chunk,
                    accumulated=accumulated,
                    estimated_progress=calculate_progress(accumulated, len(prompts), usage),
                    status=calculate_status(usage),
                    thoughts_tokens=usage.thoughts_tokens,
                    output_tokens=usage.output_tokens,
                )
            )

        try:
            self.client.ensure_initialized()
            response = await self.client.generate_structured_content_stream(
                prompt,
                ORGANIZE_SCHEMA,
                SYSTEM_ORGANIZATION_INSTRUCTION,
                tool_name=TOOL_NAME,
                token=token,
                on_progress=handle_progress,
            )
        except LLMError as e:
            if e.error_type == LLMErrorType.CANCELLED:
                raise CancellationError("Generation cancelled by user") from e
            if e.error_type == LLMErrorType.API_KEY_MISSING:
                raise ConfigurationError(e.message) from e
            if e.error_type == LLMErrorType.NETWORK_ERROR:
                raise NetworkError(e.message) from e
            if e.error_type == LLMErrorType.INVALID_RESPONSE:
                raise GenerationError(e.message) from e
            console.print(f"[red]Error during template generation: {e.message}[/red]")
            raise

        templates = parse_templates(response.data)

        if on_progress and not token.cancelled:
            on_progress(
                GenerationProgress(
                    chunk="",
                    accumulated="",
                    estimated_progress=100,
                    status=GenerationStatus.COMPLETE,
                    thoughts_tokens=response.usage.thoughts_tokens,
                    output_tokens=response.usage.output_tokens,
                )
            )

        return GenerationOutput(templates=templates, usage=response.usage)
