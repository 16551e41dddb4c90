"""Token budget helpers for memory context."""

from __future__ import annotations

import logging
import math
from typing import Optional

from ....providers.models import get_model_context_window
from ...constants import MEMORY

logger = logging.getLogger(__name__)


def get_memory_token_limit(model: Optional[str] = None) -> int:
    """Return how many tokens of memory may be added for ``model``.

    A fixed share of the context window is reserved for memory so the system
    prompt and the response still fit. Unknown models use a conservative
    default.
    """
    if not model:
        logger.debug("No model provided, using default token limit %d", MEMORY.DEFAULT_TOKEN_LIMIT)
        return MEMORY.DEFAULT_TOKEN_LIMIT

    context_window = get_model_context_window(model)
    if not context_window:
        logger.debug("No context window information for model %s, using default", model)
        return MEMORY.DEFAULT_TOKEN_LIMIT

    limit = math.floor(context_window * MEMORY.TOKEN_BUFFER_RATIO)
    logger.debug("Memory token limit for %s: %d (context window %d)", model, limit, context_window)
    return limit
