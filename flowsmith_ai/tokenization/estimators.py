"""Token count estimation.

Counts are estimates derived from character length. Provider families tokenize
at slightly different densities, so the ratio is selected from the model's
provider. The estimate is only used for budgeting memory context, never for
billing.
"""

from __future__ import annotations

import math
from typing import Optional

DEFAULT_CHARS_PER_TOKEN = 4.0

CHARS_PER_TOKEN_BY_PROVIDER = {
    "openai": 4.0,
    "azure-openai": 4.0,
    "anthropic": 3.5,
    "google": 4.0,
    "vertex": 4.0,
}


def estimate_token_count(text: str, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN) -> int:
    """Estimate the number of tokens in ``text``."""
    if not text:
        return 0
    return max(1, math.ceil(len(text) / chars_per_token))


def get_accurate_token_count(text: str, model: Optional[str] = None) -> int:
    """Estimate tokens for ``text`` using the ratio of ``model``'s provider."""
    if not text:
        return 0
    ratio = DEFAULT_CHARS_PER_TOKEN
    if model:
        from ..providers.models import get_provider_from_model

        ratio = CHARS_PER_TOKEN_BY_PROVIDER.get(get_provider_from_model(model), DEFAULT_CHARS_PER_TOKEN)
    return estimate_token_count(text, ratio)
