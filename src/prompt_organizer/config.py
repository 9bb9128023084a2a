"""Defaults, pricing and environment lookup."""

import os
from pathlib import Path

DEFAULT_DB = Path.home() / ".prompt-organizer" / "organizer.db"

API_KEY_ENV = "ANTHROPIC_API_KEY"

MODEL = "claude-sonnet-4-20250514"
SUCCESS_MESSAGE_MODEL = "claude-3-5-haiku-20241022"
MAX_OUTPUT_TOKENS = 16000
THINKING_BUDGET_TOKENS = 4096
SUCCESS_MESSAGE_TIMEOUT = 30.0

# Context window of MODEL, in tokens
CONTEXT_LIMIT = 200_000

# USD per 1M tokens; output price includes thinking tokens
INPUT_PRICE_PER_1M = 0.3
OUTPUT_PRICE_PER_1M = 2.5
USD_TO_JPY = 150

# Output is estimated as half of the input for the pre-flight estimate
OUTPUT_TOKEN_RATIO = 0.5

TITLE_MAX_LENGTH = 20
USE_CASE_MAX_LENGTH = 40
FALLBACK_CATEGORY_ID = "other"

ESTIMATE_DEBOUNCE_SECONDS = 0.2


def get_api_key() -> str | None:
    """Read the API key from the environment."""
    return os.environ.get(API_KEY_ENV) or None
