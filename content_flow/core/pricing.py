"""
Pricing calculations and rate management.

Estimates what an accounted provider call cost so the usage ledger can keep
an auditable spend record per subject.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from typing import Dict, Optional

from .token_counter import TokenUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_1k: Decimal  # Cost per 1K input tokens
    output_cost_per_1k: Decimal  # Cost per 1K output tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> Optional[ModelPricing]:
        """Get pricing for a specific model.

        Dated model variants (``claude-3-haiku-20240307``) match their
        undated family entry when there is no exact match.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model, or None if the model is unknown
        """
        if model in self.prices:
            return self.prices[model]
        for name, pricing in self.prices.items():
            if model.startswith(name):
                return pricing
        return None


# Fixed pricing table - no dynamic fetching
PRICING_TABLE = PricingTable({
    "gpt-4": ModelPricing(
        input_cost_per_1k=Decimal("0.03"),
        output_cost_per_1k=Decimal("0.06")
    ),
    "gpt-3.5-turbo": ModelPricing(
        input_cost_per_1k=Decimal("0.0015"),
        output_cost_per_1k=Decimal("0.002")
    ),
    "claude-3-5-sonnet": ModelPricing(
        input_cost_per_1k=Decimal("0.003"),
        output_cost_per_1k=Decimal("0.015")
    ),
    "claude-3-haiku": ModelPricing(
        input_cost_per_1k=Decimal("0.00025"),
        output_cost_per_1k=Decimal("0.00125")
    ),
    "gemini-1.5-pro": ModelPricing(
        input_cost_per_1k=Decimal("0.00125"),
        output_cost_per_1k=Decimal("0.00375")
    ),
    "gemini-1.5-flash": ModelPricing(
        input_cost_per_1k=Decimal("0.000075"),
        output_cost_per_1k=Decimal("0.0003")
    ),
    "gemini-pro": ModelPricing(
        input_cost_per_1k=Decimal("0.0005"),
        output_cost_per_1k=Decimal("0.0015")
    ),
    "mock-deterministic": ModelPricing(
        input_cost_per_1k=Decimal("0"),
        output_cost_per_1k=Decimal("0")
    ),
})


def calculate_cost(model: str, usage: TokenUsage, table: PricingTable = PRICING_TABLE) -> float:
    """Calculate total cost for model usage with conservative rounding.

    Args:
        model: Model identifier
        usage: Token usage data
        table: Pricing table to use

    Returns:
        Total cost rounded UP to 6 decimal places; 0.0 for unknown models
    """
    pricing = table.get_pricing(model)
    if pricing is None:
        logger.warning("No pricing found for model '%s', using $0", model)
        return 0.0

    # (tokens / 1000) * cost_per_1k for each direction
    input_cost = (Decimal(usage.input_tokens) / Decimal("1000")) * pricing.input_cost_per_1k
    output_cost = (Decimal(usage.output_tokens) / Decimal("1000")) * pricing.output_cost_per_1k

    # Total cost with conservative rounding (always round UP)
    total_cost = input_cost + output_cost
    rounded_cost = total_cost.quantize(Decimal("0.000001"), rounding=ROUND_UP)

    return float(rounded_cost)
