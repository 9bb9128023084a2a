"""Token counting and prompt library statistics."""

from datetime import datetime, timedelta

import tiktoken

from .models import SourcePrompt


def count_tokens(text: str, model: str = "cl100k_base") -> int:
    """Count tokens in text using tiktoken."""
    if not text:
        return 0
    try:
        enc = tiktoken.get_encoding(model)
        return len(enc.encode(text))
    except Exception:
        # Fallback: rough estimate
        return len(text) // 4


def get_library_stats(prompts: list[SourcePrompt], now: datetime | None = None) -> dict:
    """Get high-level statistics about the prompt library."""
    now = now or datetime.now()

    if not prompts:
        return {
            "total_prompts": 0,
            "total_executions": 0,
            "excluded": 0,
            "executed_last_30_days": 0,
        }

    recent_cutoff = now - timedelta(days=30)
    most_used = max(prompts, key=lambda p: p.execution_count)

    return {
        "total_prompts": len(prompts),
        "total_executions": sum(p.execution_count for p in prompts),
        "excluded": sum(1 for p in prompts if p.exclude_from_organizer),
        "executed_last_30_days": sum(1 for p in prompts if p.last_executed_at >= recent_cutoff),
        "first_executed": min(p.last_executed_at for p in prompts),
        "last_executed": max(p.last_executed_at for p in prompts),
        "most_used": most_used,
        "total_tokens": sum(count_tokens(p.content) for p in prompts),
    }
