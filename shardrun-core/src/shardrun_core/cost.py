"""Run cost estimation.

Cost is an estimate from the configured task size and wall-clock duration,
not a billing reconciliation:

    cost = shards * hours * (vcpus * vcpu_hour + memory_gb * gb_hour)
"""

from __future__ import annotations

from dataclasses import dataclass

from shardrun_core.types.tasks import ResourceSpec

MS_PER_HOUR = 1000 * 60 * 60


@dataclass(frozen=True)
class ResourcePricing:
    """Unit prices of a compute backend.

    Attributes:
        vcpu_hour: USD per vCPU-hour.
        gb_hour: USD per GiB-hour of memory.
    """

    vcpu_hour: float
    gb_hour: float

    def __post_init__(self) -> None:
        if self.vcpu_hour < 0 or self.gb_hour < 0:
            raise ValueError("prices must be non-negative")


FARGATE_PRICING = ResourcePricing(vcpu_hour=0.04048, gb_hour=0.004445)
"""On-demand Fargate (Linux/x86, us-east-1) unit prices."""

FREE_PRICING = ResourcePricing(vcpu_hour=0.0, gb_hour=0.0)
"""Pricing for backends that run on local hardware."""


def estimate_cost(
    duration_ms: float,
    shard_count: int,
    resources: ResourceSpec,
    pricing: ResourcePricing,
) -> float:
    """Estimate the cost of a run.

    Args:
        duration_ms: Wall-clock duration of the run in milliseconds.
        shard_count: Number of tasks that ran.
        resources: Size of each task.
        pricing: Backend unit prices.

    Returns:
        Estimated cost in USD.
    """
    if duration_ms <= 0 or shard_count <= 0:
        return 0.0
    hours = duration_ms / MS_PER_HOUR
    vcpu_cost = resources.vcpus * pricing.vcpu_hour * hours * shard_count
    memory_cost = resources.memory_gb * pricing.gb_hour * hours * shard_count
    return vcpu_cost + memory_cost
