"""Cost resolution for assistant turns.

Claude Code records ``costUSD`` on some transcript versions and only token
usage on others. The resolver prefers the recorded amount and falls back to
a static per-model rate table. Rates are USD per 1M tokens and are not
fetched from anywhere.
"""

import logging
from typing import Callable, NamedTuple, Optional

from .models import AssistantTurn, TokenUsage

logger = logging.getLogger(__name__)


class ModelRates(NamedTuple):
    """USD per 1M tokens."""

    input: float
    output: float
    cache_creation: float
    cache_read: float


MODEL_PRICING: dict[str, ModelRates] = {
    "claude-opus-4-5": ModelRates(5.00, 25.00, 6.25, 0.50),
    "claude-opus-4-1": ModelRates(15.00, 75.00, 18.75, 1.50),
    "claude-opus-4": ModelRates(15.00, 75.00, 18.75, 1.50),
    "claude-sonnet-4-5": ModelRates(3.00, 15.00, 3.75, 0.30),
    "claude-sonnet-4": ModelRates(3.00, 15.00, 3.75, 0.30),
    "claude-haiku-4-5": ModelRates(1.00, 5.00, 1.25, 0.10),
    "claude-3-7-sonnet": ModelRates(3.00, 15.00, 3.75, 0.30),
    "claude-3-5-sonnet": ModelRates(3.00, 15.00, 3.75, 0.30),
    "claude-3-5-haiku": ModelRates(0.80, 4.00, 1.00, 0.08),
    "claude-3-opus": ModelRates(15.00, 75.00, 18.75, 1.50),
    "claude-3-haiku": ModelRates(0.25, 1.25, 0.30, 0.03),
}

# Transcripts without a model id are priced as Opus 4
DEFAULT_MODEL = "claude-opus-4"
DEFAULT_PRICING = MODEL_PRICING[DEFAULT_MODEL]

CostResolver = Callable[[AssistantTurn], float]


def get_model_pricing(model: Optional[str]) -> tuple[ModelRates, bool]:
    """Look up rates for a model id.

    Args:
        model: Model id (e.g., "claude-sonnet-4-20250514")

    Returns:
        Tuple of (rates, is_default). is_default is True if the model was not
        found in the pricing table.
    """
    if not model:
        return DEFAULT_PRICING, False

    pricing = MODEL_PRICING.get(model)
    if pricing:
        return pricing, False

    # Longest prefix wins so "claude-opus-4-5-2025..." is not priced as opus-4
    model_lower = model.lower()
    for prefix in sorted(MODEL_PRICING, key=len, reverse=True):
        if model_lower.startswith(prefix):
            return MODEL_PRICING[prefix], False

    return DEFAULT_PRICING, True


def calculate_cost(usage: TokenUsage, model: Optional[str] = None) -> float:
    """Calculate cost in USD for one usage record."""
    rates, is_default = get_model_pricing(model)
    if is_default:
        logger.debug(f"No pricing for model {model!r}, using {DEFAULT_MODEL} rates")

    return (
        usage.input_tokens * rates.input
        + usage.output_tokens * rates.output
        + usage.cache_creation_input_tokens * rates.cache_creation
        + usage.cache_read_input_tokens * rates.cache_read
    ) / 1_000_000


def resolve_cost(event: AssistantTurn) -> float:
    """Default cost resolver.

    Uses the recorded ``costUSD`` when present, otherwise prices the token
    usage, otherwise returns 0.
    """
    if event.cost_usd is not None:
        return event.cost_usd
    if event.usage is not None:
        return calculate_cost(event.usage, event.model)
    return 0.0
