"""Short success message describing a generated template."""

import json

from .config import SUCCESS_MESSAGE_MODEL, SUCCESS_MESSAGE_TIMEOUT
from .llm import LLMClient
from .models import TemplateCandidate

SUCCESS_MESSAGE_SYSTEM = """You are a UX writing expert.
Your role is to suggest better prompts for users who interact with AI chatbots daily.

CRITICAL RULES:
- Reply with the message only, in plain text
- Use the same language as the template"""

SUCCESS_MESSAGE_PROMPT = """The user's prompt history was organized automatically and reconstructed into reusable templates.
For the template below, write one or two sentences that let the user instantly see its benefit:
- How it was created: which kind of past prompts it was built from.
- Benefit: how it helps the user reach their goal next time.

Example tone (do not reuse):
"We merged the prompts you used for {use_case} into one. Fill in the blanks to get the same quality instantly."

Template JSON:
{template}"""


async def generate_success_message(client: LLMClient, candidate: TemplateCandidate) -> str:
    """Generate a success message for one candidate, bounded by a timeout."""
    template = {
        "title": candidate.title,
        "content": candidate.content,
        "useCase": candidate.use_case,
        "clusterExplanation": candidate.cluster_explanation,
        "category": candidate.category_id,
        "sourcePromptCount": candidate.ai_metadata.source_count,
        "variables": [{"name": v.name} for v in candidate.variables],
    }
    prompt = SUCCESS_MESSAGE_PROMPT.format(
        use_case=candidate.use_case or "this task",
        template=json.dumps(template, ensure_ascii=False, indent=2),
    )

    client.ensure_initialized()
    return await client.generate_content(
        prompt,
        SUCCESS_MESSAGE_SYSTEM,
        model=SUCCESS_MESSAGE_MODEL,
        max_tokens=300,
        timeout=SUCCESS_MESSAGE_TIMEOUT,
    )
