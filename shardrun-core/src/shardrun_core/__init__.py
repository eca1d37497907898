"""Core library for distributed test-shard runs.

This package provides the record types, interfaces, error types and pure
algorithms shared by every shardrun package. It has no third-party
dependencies so that it can serve as the base layer for the orchestrator,
the storage/compute adapters and the HTTP service.

Key components:
    - Types: Shard plan types (TestFile, Shard, RunManifest), worker result
      types (ShardResult, TestCaseResult), compute task types (LaunchSpec,
      TaskHandle, TaskManifest) and run outcome types (RunSummary, RunStatus).
    - Interfaces: Protocol-based definitions for the durable store and the
      compute backend.
    - Sharding: ShardPlanner and plan statistics.
    - Layout: Persisted key layout and run-id generation.
    - Errors: Hierarchy of exception types for the various failure modes.

Example:
    >>> from shardrun_core import ShardPlanner, ShardStrategy, TestFile
    >>> files = [TestFile("a.spec.ts", 10, 5000.0), TestFile("b.spec.ts", 10, 2000.0)]
    >>> plan = ShardPlanner().plan(files, 2, ShardStrategy.DURATION_BALANCED)
    >>> print(f"Balance: {plan.balance_score:.2f}")
    Balance: 0.40
"""

from shardrun_core.cost import FARGATE_PRICING, FREE_PRICING, ResourcePricing, estimate_cost
from shardrun_core.errors import (
    AggregationError,
    BackendError,
    CancelUnsupportedError,
    ConfigurationError,
    EmptyInputError,
    InvalidArgumentError,
    LaunchError,
    ObjectNotFoundError,
    RunNotFoundError,
    RunTimeoutError,
    SchemaError,
    ShardrunError,
    StoreError,
)
from shardrun_core.interfaces import ComputeBackend, DurableStore
from shardrun_core.retry import RetryPolicy, with_retry
from shardrun_core.sharding import (
    ShardPlan,
    ShardPlanner,
    ShardStats,
    ShardStrategy,
    balance_score,
    describe_plan,
    optimal_shard_count,
    shard_stats,
)
from shardrun_core.store import BaseStore
from shardrun_core.types import (
    FailureKind,
    LaunchSpec,
    OverallStatus,
    ResourceSpec,
    ResultTotals,
    RunId,
    RunManifest,
    RunOutcome,
    RunPhase,
    RunStatus,
    RunSummary,
    Shard,
    ShardResult,
    ShardState,
    ShardStatus,
    TaskDescription,
    TaskHandle,
    TaskId,
    TaskManifest,
    TaskState,
    TestCaseResult,
    TestCaseStatus,
    TestFile,
    TestFramework,
)

__all__ = [
    # Errors
    "AggregationError",
    "BackendError",
    "CancelUnsupportedError",
    "ConfigurationError",
    "EmptyInputError",
    "InvalidArgumentError",
    "LaunchError",
    "ObjectNotFoundError",
    "RunNotFoundError",
    "RunTimeoutError",
    "SchemaError",
    "ShardrunError",
    "StoreError",
    # Interfaces
    "BaseStore",
    "ComputeBackend",
    "DurableStore",
    # Sharding
    "ShardPlan",
    "ShardPlanner",
    "ShardStats",
    "ShardStrategy",
    "balance_score",
    "describe_plan",
    "optimal_shard_count",
    "shard_stats",
    # Cost and retry
    "FARGATE_PRICING",
    "FREE_PRICING",
    "ResourcePricing",
    "RetryPolicy",
    "estimate_cost",
    "with_retry",
    # Types
    "FailureKind",
    "LaunchSpec",
    "OverallStatus",
    "ResourceSpec",
    "ResultTotals",
    "RunId",
    "RunManifest",
    "RunOutcome",
    "RunPhase",
    "RunStatus",
    "RunSummary",
    "Shard",
    "ShardResult",
    "ShardState",
    "ShardStatus",
    "TaskDescription",
    "TaskHandle",
    "TaskId",
    "TaskManifest",
    "TaskState",
    "TestCaseResult",
    "TestCaseStatus",
    "TestFile",
    "TestFramework",
]
