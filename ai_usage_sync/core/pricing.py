"""
Pricing calculations for providers that don't report cost.

Anthropic and OpenAI usage reports carry token counts only; Cursor reports
cents directly and never goes through this module.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from .token_counter import TokenUsage


CACHE_WRITE_MULTIPLIER = Decimal("1.25")
CACHE_READ_MULTIPLIER = Decimal("0.1")
TOKENS_PER_MILLION = Decimal("1000000")


@dataclass(frozen=True)
class ModelPricing:
    """Per-million-token pricing for a specific model."""
    input_cost_per_1m: Decimal
    output_cost_per_1m: Decimal


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table with a fallback for unknown models."""
    prices: Dict[str, ModelPricing]
    fallback: ModelPricing

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for the longest table key contained in the model id.

        Provider model ids carry date suffixes, so keys are matched as
        substrings of the id, most specific key first.

        Args:
            model: Raw or normalized model identifier

        Returns:
            ModelPricing for the model, or the fallback pricing
        """
        needle = model.lower()
        for key in sorted(self.prices, key=len, reverse=True):
            if key in needle:
                return self.prices[key]
        return self.fallback


PRICING_TABLE = PricingTable(
    prices={
        "claude-opus-4-5": ModelPricing(Decimal("5"), Decimal("25")),
        "claude-sonnet-4-5": ModelPricing(Decimal("3"), Decimal("15")),
        "claude-haiku-4-5": ModelPricing(Decimal("1"), Decimal("5")),
        "claude-opus-4-1": ModelPricing(Decimal("15"), Decimal("75")),
        "claude-opus-4": ModelPricing(Decimal("15"), Decimal("75")),
        "claude-sonnet-4": ModelPricing(Decimal("3"), Decimal("15")),
        "claude-3-5-haiku": ModelPricing(Decimal("0.8"), Decimal("4")),
        "gpt-4o-mini": ModelPricing(Decimal("0.15"), Decimal("0.60")),
        "gpt-4o": ModelPricing(Decimal("2.50"), Decimal("10")),
        "gpt-4.1": ModelPricing(Decimal("2"), Decimal("8")),
    },
    fallback=ModelPricing(Decimal("3"), Decimal("15")),
)


def calculate_cost(model: str, usage: TokenUsage, table: Optional[PricingTable] = None) -> float:
    """Calculate total cost in USD for a token breakdown.

    Args:
        model: Model identifier
        usage: Token usage data
        table: Pricing table override (defaults to PRICING_TABLE)

    Returns:
        Total cost in USD
    """
    pricing = (table or PRICING_TABLE).get_pricing(model)

    input_cost = Decimal(usage.input_tokens) * pricing.input_cost_per_1m
    output_cost = Decimal(usage.output_tokens) * pricing.output_cost_per_1m
    cache_write_cost = Decimal(usage.cache_write_tokens) * pricing.input_cost_per_1m * CACHE_WRITE_MULTIPLIER
    cache_read_cost = Decimal(usage.cache_read_tokens) * pricing.input_cost_per_1m * CACHE_READ_MULTIPLIER

    total = (input_cost + output_cost + cache_write_cost + cache_read_cost) / TOKENS_PER_MILLION
    return float(total)
