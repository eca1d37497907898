"""Run-level outcome and progress types.

Classes:
    RunPhase: Lifecycle phase of an orchestrated run.
    RunOutcome: Final outcome of a run.
    FailureKind: Diagnostic cause of an unsuccessful run.
    RunSummary: Aggregated outcome of a run, computed on demand.
    ShardState: Reconciled state of one shard.
    OverallStatus: Reconciled state of a whole run.
    ShardStatus: Reconciled view of one shard.
    RunStatus: Point-in-time progress snapshot of a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from shardrun_core.types.results import ResultTotals, ShardResult


class RunPhase(str, Enum):
    """Lifecycle phase of an orchestrated run.

    Transitions: INITIALIZING -> SUBMITTING -> AWAITING_COMPLETION ->
    AGGREGATING -> one of COMPLETED, FAILED, CANCELLED.
    """

    INITIALIZING = "initializing"
    SUBMITTING = "submitting"
    AWAITING_COMPLETION = "awaiting_completion"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Return True for COMPLETED, FAILED and CANCELLED."""
        return self in (RunPhase.COMPLETED, RunPhase.FAILED, RunPhase.CANCELLED)


class RunOutcome(str, Enum):
    """Final outcome of a run."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FailureKind(str, Enum):
    """Why a run did not succeed.

    Attributes:
        NONE: Every shard reported and no test failed.
        CANCELLED: The run was cancelled before completion.
        TIMEOUT: The run exceeded its deadline.
        INFRA_FAILURE: A shard has no result and its task failed.
        MISSING_RESULTS: A shard has no result although its task did not report failure.
        TEST_FAILURES: All shards reported, and at least one test failed.
    """

    NONE = "none"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    INFRA_FAILURE = "infra_failure"
    MISSING_RESULTS = "missing_results"
    TEST_FAILURES = "test_failures"


@dataclass(frozen=True)
class RunSummary:
    """Aggregated outcome of a run.

    Totals are additive sums over the shard results that were read.

    Attributes:
        run_id: The run.
        backend: Name of the compute backend.
        shard_count: Number of shards in the manifest.
        results: Shard results that were read, ordered by shard id.
        missing_shards: Shards without a result.
        failed_tasks: Shards whose task stopped with a non-zero or missing exit code.
        timed_out: True if the run deadline expired.
        cancelled: True if the run was cancelled.
        duration: Wall-clock duration of the run in milliseconds.
        cost: Estimated compute cost in USD.
        start_time: When the run started.
        end_time: When the run finished.
    """

    run_id: str
    backend: str
    shard_count: int
    results: tuple[ShardResult, ...] = ()
    missing_shards: tuple[int, ...] = ()
    failed_tasks: tuple[int, ...] = ()
    timed_out: bool = False
    cancelled: bool = False
    duration: float = 0.0
    cost: float = 0.0
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def totals(self) -> ResultTotals:
        """Return the additive totals over all results."""
        return ResultTotals.of(self.results)

    @property
    def passed(self) -> int:
        """Return the number of passed tests."""
        return self.totals.passed

    @property
    def failed(self) -> int:
        """Return the number of failed tests."""
        return self.totals.failed

    @property
    def skipped(self) -> int:
        """Return the number of skipped tests."""
        return self.totals.skipped

    @property
    def total_tests(self) -> int:
        """Return the number of tests reported."""
        return self.totals.total

    @property
    def failure_kind(self) -> FailureKind:
        """Return the dominant reason the run did not succeed."""
        if self.cancelled:
            return FailureKind.CANCELLED
        if self.timed_out:
            return FailureKind.TIMEOUT
        if self.missing_shards:
            if set(self.missing_shards) & set(self.failed_tasks):
                return FailureKind.INFRA_FAILURE
            return FailureKind.MISSING_RESULTS
        if self.failed > 0:
            return FailureKind.TEST_FAILURES
        return FailureKind.NONE

    @property
    def succeeded(self) -> bool:
        """Return True if every shard produced a result and no test failed."""
        return self.failure_kind is FailureKind.NONE

    @property
    def outcome(self) -> RunOutcome:
        """Return the final outcome."""
        if self.cancelled:
            return RunOutcome.CANCELLED
        return RunOutcome.COMPLETED if self.succeeded else RunOutcome.FAILED

    @property
    def exit_code(self) -> int:
        """Return a process exit code: 0 on success, 1 otherwise."""
        return 0 if self.succeeded else 1

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {
            "runId": self.run_id,
            "backend": self.backend,
            "outcome": self.outcome.value,
            "failureKind": self.failure_kind.value,
            "totalShards": self.shard_count,
            "totalTests": self.total_tests,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "missingShards": list(self.missing_shards),
            "failedTasks": list(self.failed_tasks),
            "timedOut": self.timed_out,
            "duration": self.duration,
            "cost": self.cost,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "endTime": self.end_time.isoformat() if self.end_time else None,
        }


class ShardState(str, Enum):
    """Reconciled state of one shard.

    COMPLETED and FAILED come from a stored result; the others from live
    backend state.
    """

    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        """Return True for COMPLETED, FAILED and STOPPED."""
        return self in (ShardState.COMPLETED, ShardState.FAILED, ShardState.STOPPED)


class OverallStatus(str, Enum):
    """Reconciled state of a whole run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Return True for COMPLETED and FAILED."""
        return self in (OverallStatus.COMPLETED, OverallStatus.FAILED)


@dataclass(frozen=True)
class ShardStatus:
    """Reconciled view of one shard.

    Attributes:
        shard_id: The shard.
        state: Reconciled state.
        result: Stored result, if present.
        backend_status: Raw backend status, if live state was available.
        exit_code: Task exit code, if reported.
    """

    shard_id: int
    state: ShardState
    result: ShardResult | None = None
    backend_status: str | None = None
    exit_code: int | None = None


@dataclass(frozen=True)
class RunStatus:
    """Point-in-time progress snapshot of a run.

    Attributes:
        run_id: The run.
        overall: Overall state.
        shards: Per-shard states, ordered by shard id.
        live_state_available: False when the snapshot was built from the store
            alone (no task manifest, or the backend could not be queried).
        metadata: Manifest metadata (timestamp, framework, ...).
    """

    run_id: str
    overall: OverallStatus
    shards: tuple[ShardStatus, ...]
    live_state_available: bool = False
    metadata: Mapping[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        """Return the number of shards."""
        return len(self.shards)

    def count(self, state: ShardState) -> int:
        """Return the number of shards in a state."""
        return sum(1 for s in self.shards if s.state is state)

    @property
    def completed(self) -> int:
        """Return the number of shards with a stored result."""
        return sum(1 for s in self.shards if s.result is not None)

    @property
    def results(self) -> list[ShardResult]:
        """Return the stored results."""
        return [s.result for s in self.shards if s.result is not None]

    @property
    def totals(self) -> ResultTotals:
        """Return totals over the stored results (partial while running)."""
        return ResultTotals.of(self.results)

    @property
    def started_at(self) -> str | None:
        """Return the manifest timestamp, if recorded."""
        return self.metadata.get("timestamp")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {
            "runId": self.run_id,
            "status": self.overall.value,
            "liveStateAvailable": self.live_state_available,
            "progress": {
                "total": self.total,
                "completed": self.completed,
                "running": self.count(ShardState.RUNNING),
                "failed": self.count(ShardState.FAILED),
            },
            "shards": [
                {
                    "shardId": s.shard_id,
                    "state": s.state.value,
                    "backendStatus": s.backend_status,
                    "exitCode": s.exit_code,
                    "result": s.result.to_dict() if s.result else None,
                }
                for s in self.shards
            ],
            "startTime": self.started_at,
        }
