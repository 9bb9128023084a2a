"""Conversion of generated templates into review candidates."""

import uuid
from datetime import datetime

from .config import FALLBACK_CATEGORY_ID, TITLE_MAX_LENGTH, USE_CASE_MAX_LENGTH
from .models import AIMetadata, CandidateInput, Category, GeneratedTemplate, TemplateCandidate, UserAction

# Minimum positional similarity (percent) for repairing a garbled source ID
ID_SIMILARITY_THRESHOLD = 90.0


def calculate_similarity(a: str, b: str) -> float:
    """Percentage of positions where both strings hold the same character."""
    if not a or not b:
        return 0.0
    if a == b:
        return 100.0
    matches = sum(1 for x, y in zip(a, b) if x == y)
    return matches / max(len(a), len(b)) * 100


def correct_source_prompt_ids(source_ids: list[str], prompts: list[CandidateInput]) -> list[str]:
    """Map model-reported IDs onto the IDs that were actually sent.

    Models occasionally corrupt a character or two of long IDs. Each ID is
    kept if it matches exactly, otherwise replaced by the most similar input
    ID above the threshold, otherwise dropped. Order is kept, duplicates are
    removed.
    """
    valid_ids = [p.id for p in prompts]
    valid_set = set(valid_ids)
    corrected: list[str] = []

    for source_id in source_ids:
        if source_id in valid_set:
            match = source_id
        else:
            best_id, best_score = None, 0.0
            for candidate_id in valid_ids:
                score = calculate_similarity(source_id, candidate_id)
                if score > best_score:
                    best_id, best_score = candidate_id, score
            match = best_id if best_score >= ID_SIMILARITY_THRESHOLD else None

        if match is not None and match not in corrected:
            corrected.append(match)

    return corrected


def resolve_category_id(category_id: str | None, categories: list[Category]) -> str:
    if category_id and any(c.id == category_id for c in categories):
        return category_id
    return FALLBACK_CATEGORY_ID


def should_show_in_pinned(source_count: int, variable_count: int) -> bool:
    return source_count >= 3 and variable_count >= 2


def convert_to_candidate(
    template: GeneratedTemplate,
    prompts: list[CandidateInput],
    categories: list[Category],
    period_days: int,
    generated_at: datetime | None = None,
) -> TemplateCandidate:
    """Build a pending TemplateCandidate from one generated template."""
    generated_at = generated_at or datetime.now()
    source_ids = correct_source_prompt_ids(template.source_prompt_ids, prompts)
    variables = list(template.variables)

    return TemplateCandidate(
        id=str(uuid.uuid4()),
        title=template.title[:TITLE_MAX_LENGTH],
        content=template.content,
        use_case=template.use_case[:USE_CASE_MAX_LENGTH],
        category_id=resolve_category_id(template.category_id, categories),
        variables=variables,
        ai_metadata=AIMetadata(
            generated_at=generated_at,
            source_prompt_ids=source_ids,
            source_count=len(source_ids),
            source_period_days=period_days,
            extracted_variables=list(variables),
            confirmed=False,
            show_in_pinned=should_show_in_pinned(len(source_ids), len(variables)),
        ),
        user_action=UserAction.PENDING,
        cluster_explanation=template.cluster_explanation,
    )
