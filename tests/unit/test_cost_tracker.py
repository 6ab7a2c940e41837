"""Tests for per-session cost aggregation."""

import pytest

from playtest_harness.core.config import Settings
from playtest_harness.domain.models.tracking import TokenUsage
from playtest_harness.services.cost_tracker import CostTracker


@pytest.fixture
def tracker():
    return CostTracker(
        Settings(
            _env_file=None,
            model_pricing={"acme/big": (10.0, 20.0), "acme/small": (1.0, 2.0)},
        )
    )


class TestCostTracker:
    def test_empty_breakdown(self, tracker):
        """Should report zeros before anything is recorded."""
        breakdown = tracker.get_breakdown()
        assert breakdown.total_cost_usd == 0.0
        assert breakdown.total_tokens == 0

    def test_priced_usage(self, tracker):
        """Should price input and output tokens separately."""
        tracker.record(
            "narrator", "acme/big", TokenUsage(input_tokens=1_000_000, output_tokens=500_000)
        )
        breakdown = tracker.get_breakdown()

        assert breakdown.narrator.cost_usd == pytest.approx(20.0)
        assert breakdown.narrator.input_tokens == 1_000_000
        assert breakdown.narrator.output_tokens == 500_000
        assert breakdown.narrator.total_tokens == 1_500_000

    def test_categories_sum_to_total(self, tracker):
        """Total should be the sum of the three categories."""
        usage = TokenUsage(input_tokens=200_000, output_tokens=100_000)
        tracker.record("narrator", "acme/big", usage)
        tracker.record("players", "acme/small", usage)
        tracker.record("players", "acme/big", usage)
        tracker.record("classification", "acme/small", usage)

        breakdown = tracker.get_breakdown()
        assert breakdown.total_cost_usd == pytest.approx(
            breakdown.narrator.cost_usd
            + breakdown.players.cost_usd
            + breakdown.classification.cost_usd
        )
        assert breakdown.total_tokens == 4 * 300_000
        assert breakdown.players.cost_usd == pytest.approx(0.4 + 4.0)

    def test_unknown_model_estimated(self, tracker):
        """Should estimate unknown models at a flat per-token rate."""
        tracker.record("players", "acme/mystery", TokenUsage(input_tokens=500_000, output_tokens=500_000))
        assert tracker.get_breakdown().players.cost_usd == pytest.approx(1.0)

    def test_none_usage_ignored(self, tracker):
        tracker.record("narrator", "acme/big", None)
        assert tracker.get_model_usage()["narrator"] == {}

    def test_unknown_category_rejected(self, tracker):
        with pytest.raises(ValueError):
            tracker.record("tools", "acme/big", TokenUsage(input_tokens=1))

    def test_model_usage_counts_calls(self, tracker):
        """Should count calls per model within a category."""
        tracker.record("narrator", "acme/big", TokenUsage(input_tokens=10, output_tokens=5))
        tracker.record("narrator", "acme/big", TokenUsage(input_tokens=10, output_tokens=5))

        usage = tracker.get_model_usage()["narrator"]["acme/big"]
        assert usage["calls"] == 2
        assert usage["input_tokens"] == 20
        assert usage["output_tokens"] == 10

    def test_trackers_are_independent(self):
        """Two sessions' trackers should not share totals."""
        config = Settings(_env_file=None)
        first, second = CostTracker(config), CostTracker(config)
        first.record("narrator", "x-ai/grok-4", TokenUsage(input_tokens=100))
        assert second.get_breakdown().total_tokens == 0
