"""Core data types for shardrun.

Submodules:
    common: Identifiers and field readers (RunId, TaskId, TestFramework)
    shard: Shard plan types (TestFile, Shard, RunManifest)
    results: Worker result types (ShardResult, TestCaseResult, ResultTotals)
    tasks: Compute task types (LaunchSpec, TaskHandle, TaskDescription, TaskManifest)
    run: Run outcome and progress types (RunSummary, RunStatus, RunPhase)

All types are exported from this package for convenience.
"""

from shardrun_core.types.common import RunId, TaskId, TestFramework
from shardrun_core.types.results import (
    ResultTotals,
    ShardResult,
    TestCaseResult,
    TestCaseStatus,
)
from shardrun_core.types.run import (
    FailureKind,
    OverallStatus,
    RunOutcome,
    RunPhase,
    RunStatus,
    RunSummary,
    ShardState,
    ShardStatus,
)
from shardrun_core.types.shard import RunManifest, Shard, TestFile
from shardrun_core.types.tasks import (
    TAG_FRAMEWORK,
    TAG_RUN_ID,
    TAG_SHARD,
    LaunchSpec,
    ResourceSpec,
    TaskDescription,
    TaskHandle,
    TaskManifest,
    TaskState,
)

__all__ = [
    # Common
    "RunId",
    "TaskId",
    "TestFramework",
    # Shard plan
    "RunManifest",
    "Shard",
    "TestFile",
    # Results
    "ResultTotals",
    "ShardResult",
    "TestCaseResult",
    "TestCaseStatus",
    # Tasks
    "TAG_FRAMEWORK",
    "TAG_RUN_ID",
    "TAG_SHARD",
    "LaunchSpec",
    "ResourceSpec",
    "TaskDescription",
    "TaskHandle",
    "TaskManifest",
    "TaskState",
    # Run
    "FailureKind",
    "OverallStatus",
    "RunOutcome",
    "RunPhase",
    "RunStatus",
    "RunSummary",
    "ShardState",
    "ShardStatus",
]
