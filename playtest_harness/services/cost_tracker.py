"""
Token usage aggregation for session cost estimates.

Collects token usage from every model call in a session, organized by
category (narrator / players / classification) and model, and prices it
with the per-model table from Settings. One tracker per session; sessions
never share trackers.
"""

from dataclasses import dataclass, field
from typing import Dict, Literal, Optional

import structlog

from playtest_harness.core.config import Settings
from playtest_harness.domain.models.tracking import (
    CategoryCost,
    CostBreakdown,
    TokenUsage,
)

log = structlog.get_logger(__name__)

CostCategory = Literal["narrator", "players", "classification"]
COST_CATEGORIES = ("narrator", "players", "classification")

# Estimate for models missing from the price table, USD per 1M total tokens
UNKNOWN_MODEL_PRICE_PER_MILLION = 1.0


@dataclass
class ModelUsage:
    """Token usage and cost for one model within a category.

    Attributes:
        input_tokens: Total input tokens used
        output_tokens: Total output tokens used
        cost: Total cost (USD)
        calls: Number of recorded calls
    """

    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    calls: int = 0


@dataclass
class CategoryUsage:
    """Usage per model inside one cost category."""

    models: Dict[str, ModelUsage] = field(default_factory=dict)

    def to_cost(self) -> CategoryCost:
        input_tokens = sum(m.input_tokens for m in self.models.values())
        output_tokens = sum(m.output_tokens for m in self.models.values())
        return CategoryCost(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost_usd=sum(m.cost for m in self.models.values()),
        )


class CostTracker:
    """
    In-memory cost accumulator for one session.

    Usage:
        tracker = CostTracker(settings)
        tracker.record("narrator", "anthropic/claude-opus-4.5", usage)
        breakdown = tracker.get_breakdown()
    """

    def __init__(self, config: Settings):
        self._config = config
        self._categories: Dict[str, CategoryUsage] = {
            category: CategoryUsage() for category in COST_CATEGORIES
        }

    def price(self, model: str, usage: TokenUsage) -> float:
        """USD cost of usage on model."""
        pricing = self._config.get_pricing_for_model(model)
        if pricing is None:
            log.debug("model_pricing_unknown", model=model)
            return usage.total_tokens / 1_000_000 * UNKNOWN_MODEL_PRICE_PER_MILLION
        input_price, output_price = pricing
        return (
            usage.input_tokens / 1_000_000 * input_price
            + usage.output_tokens / 1_000_000 * output_price
        )

    def record(
        self, category: CostCategory, model: str, usage: Optional[TokenUsage]
    ) -> None:
        """
        Record one model call's token usage.

        Args:
            category: Cost category the call belongs to
            model: Model id that actually served the call
            usage: Token counts (None is ignored)
        """
        if usage is None:
            return
        if category not in self._categories:
            raise ValueError(f"Unknown cost category: {category}")

        models = self._categories[category].models
        entry = models.setdefault(model, ModelUsage())
        cost = self.price(model, usage)
        entry.input_tokens += usage.input_tokens
        entry.output_tokens += usage.output_tokens
        entry.cost += cost
        entry.calls += 1

        log.debug(
            "llm_usage_recorded",
            category=category,
            model=model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cost=round(cost, 6),
        )

    def get_breakdown(self) -> CostBreakdown:
        """Per-category totals plus the grand total."""
        narrator = self._categories["narrator"].to_cost()
        players = self._categories["players"].to_cost()
        classification = self._categories["classification"].to_cost()
        return CostBreakdown(
            narrator=narrator,
            players=players,
            classification=classification,
            total_cost_usd=narrator.cost_usd + players.cost_usd + classification.cost_usd,
            total_tokens=narrator.total_tokens
            + players.total_tokens
            + classification.total_tokens,
        )

    def get_model_usage(self) -> Dict[str, Dict[str, Dict[str, float]]]:
        """Usage nested as category -> model -> counters, for reports."""
        return {
            category: {
                model: {
                    "input_tokens": usage.input_tokens,
                    "output_tokens": usage.output_tokens,
                    "calls": usage.calls,
                    "cost": round(usage.cost, 6),
                }
                for model, usage in category_usage.models.items()
            }
            for category, category_usage in self._categories.items()
        }
