"""Tests for run cost estimation."""

from __future__ import annotations

import pytest

from shardrun_core.cost import (
    FARGATE_PRICING,
    FREE_PRICING,
    MS_PER_HOUR,
    ResourcePricing,
    estimate_cost,
)
from shardrun_core.types import ResourceSpec


class TestEstimateCost:
    """Tests for estimate_cost."""

    def test_one_vcpu_two_gb_one_hour(self) -> None:
        cost = estimate_cost(MS_PER_HOUR, 1, ResourceSpec(cpu=1024, memory=2048), FARGATE_PRICING)

        assert cost == pytest.approx(0.04048 + 2 * 0.004445)

    def test_scales_with_shards_and_time(self) -> None:
        resources = ResourceSpec(cpu=512, memory=1024)
        one = estimate_cost(MS_PER_HOUR / 2, 1, resources, FARGATE_PRICING)

        assert estimate_cost(MS_PER_HOUR, 10, resources, FARGATE_PRICING) == pytest.approx(20 * one)

    def test_free_pricing(self) -> None:
        assert estimate_cost(MS_PER_HOUR, 4, ResourceSpec(), FREE_PRICING) == 0.0

    @pytest.mark.parametrize("duration,shards", [(0, 4), (-5, 4), (1000, 0)])
    def test_nothing_ran(self, duration: float, shards: int) -> None:
        assert estimate_cost(duration, shards, ResourceSpec(), FARGATE_PRICING) == 0.0

    def test_rejects_negative_prices(self) -> None:
        with pytest.raises(ValueError):
            ResourcePricing(vcpu_hour=-1.0, gb_hour=0.0)
