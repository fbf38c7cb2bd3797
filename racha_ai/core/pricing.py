"""
Model tiers and pricing.

Each tier has a flat per-call estimate in BRL, used by the budget guard
before a call is made, and per-token USD prices, used to compute the
actual cost of a call once the provider reports usage.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from enum import Enum
from typing import Dict

from .token_counter import TokenUsage

DEFAULT_EXCHANGE_RATE = Decimal("5.20")  # BRL per USD


class ModelTier(Enum):
    """AI tiers in escalation order."""
    FAST = "fast"
    BALANCED = "balanced"
    CAPABLE = "capable"


class LatencyClass(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_cost_per_1k: Decimal  # USD per 1K prompt tokens
    completion_cost_per_1k: Decimal  # USD per 1K completion tokens


@dataclass(frozen=True)
class TierProfile:
    """Everything the router needs to know about one tier."""
    tier: ModelTier
    model: str
    cost_per_call_brl: Decimal
    latency: LatencyClass
    baseline_confidence: float

    def __post_init__(self):
        """Validate tier values."""
        if not self.model or not self.model.strip():
            raise ValueError(f"model for tier {self.tier.value} cannot be empty")
        if self.cost_per_call_brl <= 0:
            raise ValueError(f"cost_per_call_brl for tier {self.tier.value} must be > 0")
        if not 0.0 <= self.baseline_confidence <= 1.0:
            raise ValueError("baseline_confidence must be within [0, 1]")


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]


PRICING_TABLE = PricingTable({
    "gpt-4o-mini": ModelPricing(
        prompt_cost_per_1k=Decimal("0.00015"),
        completion_cost_per_1k=Decimal("0.0006")
    ),
    "gpt-4o": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0025"),
        completion_cost_per_1k=Decimal("0.01")
    ),
    "gpt-4-turbo": ModelPricing(
        prompt_cost_per_1k=Decimal("0.01"),
        completion_cost_per_1k=Decimal("0.03")
    ),
})


DEFAULT_TIERS: Dict[ModelTier, TierProfile] = {
    ModelTier.FAST: TierProfile(
        tier=ModelTier.FAST,
        model="gpt-4o-mini",
        cost_per_call_brl=Decimal("0.02"),
        latency=LatencyClass.LOW,
        baseline_confidence=0.80,
    ),
    ModelTier.BALANCED: TierProfile(
        tier=ModelTier.BALANCED,
        model="gpt-4o",
        cost_per_call_brl=Decimal("0.10"),
        latency=LatencyClass.MEDIUM,
        baseline_confidence=0.90,
    ),
    ModelTier.CAPABLE: TierProfile(
        tier=ModelTier.CAPABLE,
        model="gpt-4-turbo",
        cost_per_call_brl=Decimal("0.50"),
        latency=LatencyClass.HIGH,
        baseline_confidence=0.95,
    ),
}


def calculate_cost_brl(
    model: str,
    usage: TokenUsage,
    exchange_rate: Decimal = DEFAULT_EXCHANGE_RATE
) -> Decimal:
    """Calculate the BRL cost of a call with conservative rounding.

    Args:
        model: Model identifier
        usage: Token usage data
        exchange_rate: BRL per USD

    Returns:
        Cost in BRL rounded UP to 4 decimal places

    Raises:
        ValueError: If model is not supported
    """
    pricing = PRICING_TABLE.get_pricing(model)

    prompt_cost = (Decimal(usage.prompt_tokens) / Decimal("1000")) * pricing.prompt_cost_per_1k
    completion_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * pricing.completion_cost_per_1k

    total_brl = (prompt_cost + completion_cost) * Decimal(str(exchange_rate))
    return total_brl.quantize(Decimal("0.0001"), rounding=ROUND_UP)
