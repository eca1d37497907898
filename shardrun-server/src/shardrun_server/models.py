"""Pydantic models for the shardrun-server REST API.

This module defines the response models of the run status service and the
conversions from the orchestrator's record types.
"""

from __future__ import annotations

from pydantic import BaseModel

from shardrun_core.types.run import OverallStatus, RunStatus, ShardState, ShardStatus
from shardrun_orchestrator.cancel import CancelReport


class TotalsModel(BaseModel):
    """Test counts over the stored results of a run.

    Attributes:
        passed: Passed tests.
        failed: Failed tests.
        skipped: Skipped tests.
        total: All reported tests.
    """

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0


class ShardStatusModel(BaseModel):
    """Reconciled state of one shard.

    Attributes:
        shard_id: Shard id.
        state: Reconciled shard state.
        backend_status: Raw backend status, when live state was available.
        exit_code: Task exit code, if reported.
        passed: Passed tests, once a result is stored.
        failed: Failed tests, once a result is stored.
        skipped: Skipped tests, once a result is stored.
    """

    shard_id: int
    state: ShardState
    backend_status: str | None = None
    exit_code: int | None = None
    passed: int | None = None
    failed: int | None = None
    skipped: int | None = None

    @classmethod
    def from_status(cls, shard: ShardStatus) -> ShardStatusModel:
        result = shard.result
        return cls(
            shard_id=shard.shard_id,
            state=shard.state,
            backend_status=shard.backend_status,
            exit_code=shard.exit_code,
            passed=result.passed if result else None,
            failed=result.failed if result else None,
            skipped=result.skipped if result else None,
        )


class RunStatusModel(BaseModel):
    """Status snapshot of a run.

    Attributes:
        run_id: Run id.
        status: Overall run state.
        live_state_available: False when built from stored results alone.
        started_at: ISO timestamp the run was started, if recorded.
        total_shards: Number of shards.
        completed_shards: Shards with a stored result.
        totals: Test counts over the stored results.
        shards: Per-shard states, ordered by shard id.
    """

    run_id: str
    status: OverallStatus
    live_state_available: bool
    started_at: str | None = None
    total_shards: int
    completed_shards: int
    totals: TotalsModel
    shards: list[ShardStatusModel]

    @classmethod
    def from_status(cls, status: RunStatus) -> RunStatusModel:
        totals = status.totals
        return cls(
            run_id=status.run_id,
            status=status.overall,
            live_state_available=status.live_state_available,
            started_at=status.started_at,
            total_shards=status.total,
            completed_shards=status.completed,
            totals=TotalsModel(
                passed=totals.passed,
                failed=totals.failed,
                skipped=totals.skipped,
                total=totals.total,
            ),
            shards=[ShardStatusModel.from_status(s) for s in status.shards],
        )


class CancelResponse(BaseModel):
    """Outcome of a cancel request.

    Attributes:
        run_id: Run id.
        dry_run: True if nothing was stopped because force was not set.
        would_stop: Task ids of the active tasks found.
        stopped: Task ids stopped.
        already_stopped: Task ids that were already stopped or no longer known.
        failed_to_stop: Task ids whose stop call failed.
    """

    run_id: str
    dry_run: bool
    would_stop: list[str] = []
    stopped: list[str] = []
    already_stopped: list[str] = []
    failed_to_stop: list[str] = []

    @classmethod
    def from_report(cls, report: CancelReport) -> CancelResponse:
        return cls(
            run_id=report.run_id,
            dry_run=report.dry_run,
            would_stop=[h.task_id for h in report.would_stop],
            stopped=[h.task_id for h in report.stopped],
            already_stopped=[h.task_id for h in report.already_stopped],
            failed_to_stop=[h.task_id for h in report.failed_to_stop],
        )


class HealthModel(BaseModel):
    """Health check response.

    Attributes:
        status: ``ok`` when the service is configured.
        backend: Configured compute backend name.
        store: Location of the configured durable store.
    """

    status: str
    backend: str
    store: str
