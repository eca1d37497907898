"""Run orchestration engine.

A RunOrchestrator drives the full lifecycle of one run:

    INITIALIZING -> SUBMITTING -> AWAITING_COMPLETION -> AGGREGATING
        -> COMPLETED | FAILED | CANCELLED

The shard manifest is persisted before the first task launch, so workers,
``shardrun status`` and ``shardrun cancel`` all work even if this process
dies right after submission. An orchestrator instance holds the state of a
single run and refuses to run twice.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Sequence, Union

from shardrun_core import layout
from shardrun_core.cost import estimate_cost
from shardrun_core.errors import (
    AggregationError,
    BackendError,
    EmptyInputError,
    LaunchError,
    RunTimeoutError,
    SchemaError,
    StoreError,
)
from shardrun_core.interfaces import ComputeBackend, DurableStore
from shardrun_core.retry import RetryPolicy
from shardrun_core.store import GZIP_CONTENT_TYPE
from shardrun_core.types.common import RunId
from shardrun_core.types.results import ShardResult
from shardrun_core.types.run import RunPhase, RunSummary
from shardrun_core.types.shard import RunManifest, Shard
from shardrun_core.types.tasks import (
    LaunchSpec,
    ResourceSpec,
    TaskDescription,
    TaskHandle,
    TaskManifest,
    TaskState,
)

from shardrun_orchestrator.config import ShardrunConfig
from shardrun_orchestrator.workload import pack_directory_async

logger = logging.getLogger(__name__)

TIMEOUT_STOP_REASON = "Run exceeded its deadline"
CANCEL_STOP_REASON = "Run cancelled"
ABORT_STOP_REASON = "Run aborted after a launch failure"

# Callback receiving (phase, descriptions of the latest poll)
ProgressCallback = Callable[[RunPhase, Sequence[TaskDescription]], None]


@dataclass(frozen=True)
class OrchestratorSettings:
    """Tunables of a run.

    Attributes:
        shard_timeout: Timeout handed to each worker, in seconds.
        timeout_multiplier: Safety multiplier applied once to get the run deadline.
        poll_interval: Seconds between describe calls.
        launch_delay: Seconds between consecutive launches.
        resources: Size of each worker task.
        result_retry: Backoff for result fetches.
    """

    shard_timeout: float = 1800.0
    timeout_multiplier: float = 1.5
    poll_interval: float = 5.0
    launch_delay: float = 0.1
    resources: ResourceSpec = field(default_factory=ResourceSpec)
    result_retry: RetryPolicy = field(default_factory=RetryPolicy)

    @property
    def run_deadline(self) -> float:
        """Return the run deadline in seconds after submission."""
        return self.shard_timeout * self.timeout_multiplier

    @property
    def worker_timeout_ms(self) -> int:
        """Return the worker timeout in milliseconds."""
        return int(self.shard_timeout * 1000)

    @classmethod
    def from_config(cls, config: ShardrunConfig) -> OrchestratorSettings:
        """Build settings from a loaded configuration."""
        orch = config.orchestrator
        return cls(
            shard_timeout=config.execution.timeout_seconds,
            timeout_multiplier=orch.timeout_multiplier,
            poll_interval=orch.poll_interval,
            launch_delay=orch.launch_delay,
            resources=config.execution.resources,
            result_retry=RetryPolicy(
                max_attempts=orch.result_attempts,
                base_delay=orch.result_base_delay,
                max_delay=orch.result_max_delay,
            ),
        )


@dataclass(frozen=True)
class RunRequest:
    """What to run.

    Attributes:
        shards: The shard plan, ids 0..K-1.
        framework: Test framework the workers drive.
        workload: Workload archive bytes, or a directory to pack.
        run_id: Run id to use; generated when omitted.
    """

    shards: tuple[Shard, ...]
    framework: str
    workload: Union[bytes, str, Path]
    run_id: str | None = None


class RunOrchestrator:
    """Drives one run from submission to summary.

    Args:
        store: Durable store holding the run's artifacts.
        backend: Compute backend running one task per shard.
        settings: Run tunables.
        progress: Optional callback invoked after every poll.
    """

    def __init__(
        self,
        store: DurableStore,
        backend: ComputeBackend,
        settings: OrchestratorSettings | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._settings = settings or OrchestratorSettings()
        self._progress = progress

        self._phase = RunPhase.INITIALIZING
        self._started = False
        self._run_id: RunId | None = None
        self._handles: list[TaskHandle] = []
        self._active: dict[str, TaskHandle] = {}
        self._descriptions: dict[str, TaskDescription] = {}
        self._cancel_event = asyncio.Event()
        self._timeout_error: RunTimeoutError | None = None

    @property
    def phase(self) -> RunPhase:
        """Return the current lifecycle phase."""
        return self._phase

    @property
    def run_id(self) -> RunId | None:
        """Return the run id once the run has started."""
        return self._run_id

    @property
    def handles(self) -> list[TaskHandle]:
        """Return the handles launched so far, in shard order."""
        return list(self._handles)

    @property
    def timeout_error(self) -> RunTimeoutError | None:
        """Return the deadline error, if the run timed out."""
        return self._timeout_error

    @property
    def cancel_requested(self) -> bool:
        """Return True once request_cancel() was called."""
        return self._cancel_event.is_set()

    def request_cancel(self) -> None:
        """Ask the run to stop its tasks and finish with a CANCELLED summary.

        Safe to call from a signal handler running on the event loop.
        """
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested for %s", self._run_id or "pending run")
            self._cancel_event.set()

    def _set_phase(self, phase: RunPhase) -> None:
        logger.debug("Run %s: %s -> %s", self._run_id, self._phase.value, phase.value)
        self._phase = phase

    async def run(self, request: RunRequest) -> RunSummary:
        """Execute the run.

        Returns:
            The run summary. Missing results, task failures, timeouts and
            cancellation are reported in the summary, not raised.

        Raises:
            RuntimeError: If this orchestrator already ran.
            ConfigurationError: If backend prerequisites are missing.
            StoreError: If the workload or manifest cannot be persisted.
            LaunchError: If a task could not be launched.
        """
        if self._started:
            raise RuntimeError(f"Cannot start: orchestrator is {self._phase.value}")
        self._started = True
        if not request.shards:
            raise EmptyInputError("A run needs at least one shard")

        run_id = (
            layout.validate_run_id(request.run_id) if request.run_id else layout.generate_run_id()
        )
        self._run_id = run_id
        start_wall = datetime.now(timezone.utc)
        start = time.monotonic()
        shard_count = len(request.shards)

        try:
            self._backend.check_prerequisites()
            await self._prepare(run_id, request, start_wall)

            self._set_phase(RunPhase.SUBMITTING)
            await self._submit(run_id, request, start)

            self._set_phase(RunPhase.AWAITING_COMPLETION)
            await self._await_completion(start)

            self._set_phase(RunPhase.AGGREGATING)
            cancelled = self._cancel_event.is_set()
            policy = RetryPolicy(max_attempts=1) if cancelled else self._settings.result_retry
            try:
                results = await self.aggregate(run_id, shard_count, policy=policy)
                missing: tuple[int, ...] = ()
            except AggregationError as e:
                logger.error("%s", e)
                results = list(e.results)
                missing = e.missing_shards
        except asyncio.CancelledError:
            if self._active:
                logger.warning("Run %s interrupted, stopping %d task(s)", run_id, len(self._active))
                await asyncio.shield(self._stop_active(CANCEL_STOP_REASON))
            self._set_phase(RunPhase.CANCELLED)
            raise
        except Exception:
            self._set_phase(RunPhase.FAILED)
            raise

        end_wall = datetime.now(timezone.utc)
        duration_ms = (time.monotonic() - start) * 1000
        summary = RunSummary(
            run_id=run_id,
            backend=self._backend.name,
            shard_count=shard_count,
            results=tuple(results),
            missing_shards=missing,
            failed_tasks=self._failed_tasks(),
            timed_out=self._timeout_error is not None,
            cancelled=cancelled,
            duration=duration_ms,
            cost=estimate_cost(
                duration_ms, shard_count, self._settings.resources, self._backend.pricing
            ),
            start_time=start_wall,
            end_time=end_wall,
        )
        if summary.cancelled:
            self._set_phase(RunPhase.CANCELLED)
        elif summary.succeeded:
            self._set_phase(RunPhase.COMPLETED)
        else:
            self._set_phase(RunPhase.FAILED)
        logger.info(
            "Run %s %s: %d passed, %d failed, %d skipped (%s)",
            run_id,
            summary.outcome.value,
            summary.passed,
            summary.failed,
            summary.skipped,
            summary.failure_kind.value,
        )
        return summary

    async def _prepare(self, run_id: RunId, request: RunRequest, started: datetime) -> None:
        await self._store.ensure_container_exists()

        if isinstance(request.workload, bytes):
            workload = request.workload
        else:
            workload = await pack_directory_async(request.workload)
        await self._store.put_blob(
            layout.workload_key(run_id), workload, content_type=GZIP_CONTENT_TYPE
        )
        logger.info("Uploaded workload for %s (%d bytes)", run_id, len(workload))

        manifest = RunManifest(run_id=run_id, shards=tuple(request.shards))
        await self._store.put_json(
            layout.manifest_key(run_id),
            manifest.to_payload(),
            metadata={
                "runId": run_id,
                "timestamp": started.isoformat(),
                "framework": request.framework,
                "totalShards": str(manifest.shard_count),
            },
        )
        logger.info("Persisted manifest for %s (%d shards)", run_id, manifest.shard_count)

    async def _submit(self, run_id: RunId, request: RunRequest, start: float) -> None:
        deadline = time.time() + self._settings.run_deadline
        for index, shard in enumerate(request.shards):
            if index > 0 and self._settings.launch_delay > 0:
                await asyncio.sleep(self._settings.launch_delay)
            if self._cancel_event.is_set():
                logger.warning(
                    "Cancelled during submission, %d of %d shard(s) not launched",
                    len(request.shards) - index,
                    len(request.shards),
                )
                break
            spec = LaunchSpec(
                run_id=run_id,
                shard_id=shard.id,
                store_location=self._store.location,
                region=self._backend.region,
                framework=request.framework,
                timeout_ms=self._settings.worker_timeout_ms,
                resources=self._settings.resources,
                deadline=deadline,
            )
            try:
                handle = await self._backend.launch(spec)
            except BackendError as e:
                logger.error("Launch of shard %d failed: %s", shard.id, e)
                await self._persist_tasks(run_id)
                await self._stop_active(ABORT_STOP_REASON)
                if isinstance(e, LaunchError):
                    raise
                raise LaunchError(str(e), shard.id) from e
            if handle.shard_id is None:
                handle = TaskHandle(handle.task_id, shard.id)
            self._handles.append(handle)
            self._active[handle.task_id] = handle
            logger.debug("Launched shard %d as %s", shard.id, handle.task_id)

        logger.info(
            "Launched %d task(s) for %s in %.1fs",
            len(self._handles),
            run_id,
            time.monotonic() - start,
        )
        await self._persist_tasks(run_id)

    async def _persist_tasks(self, run_id: RunId) -> None:
        manifest = TaskManifest.from_handles(
            self._handles, cluster=self._backend.cluster, region=self._backend.region
        )
        try:
            await self._store.put_json(layout.tasks_key(run_id), manifest.to_dict())
        except StoreError as e:
            logger.warning(
                "Could not persist task manifest for %s, status and cancel will be limited: %s",
                run_id,
                e,
            )

    async def _await_completion(self, start: float) -> None:
        deadline = start + self._settings.run_deadline
        while self._active:
            if self._cancel_event.is_set():
                logger.info("Stopping %d active task(s) after cancellation", len(self._active))
                await self._stop_active(CANCEL_STOP_REASON)
                return

            await self._poll()
            if not self._active:
                break

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._timeout_error = RunTimeoutError(
                    self._settings.run_deadline, len(self._active)
                )
                logger.error("%s", self._timeout_error)
                await self._stop_active(TIMEOUT_STOP_REASON)
                return

            try:
                await asyncio.wait_for(
                    self._cancel_event.wait(), timeout=min(self._settings.poll_interval, remaining)
                )
            except asyncio.TimeoutError:
                pass

        logger.info("All %d task(s) stopped", len(self._handles))

    async def _poll(self) -> None:
        try:
            descriptions = await self._backend.describe(list(self._active.values()))
        except BackendError as e:
            logger.warning("Describe failed, retrying on the next poll: %s", e)
            return

        for description in descriptions:
            task_id = description.handle.task_id
            self._descriptions[task_id] = description
            if description.state is TaskState.STOPPED and task_id in self._active:
                del self._active[task_id]
                if description.succeeded:
                    logger.debug("Shard %s finished", description.shard_id)
                else:
                    logger.warning(
                        "Shard %s task stopped with exit code %s (%s)",
                        description.shard_id,
                        description.exit_code,
                        description.reason or description.status,
                    )
        logger.debug("%d of %d task(s) active", len(self._active), len(self._handles))
        if self._progress is not None:
            self._progress(self._phase, descriptions)

    async def _stop_active(self, reason: str) -> None:
        for task_id, handle in list(self._active.items()):
            try:
                await self._backend.stop(handle, reason)
            except BackendError as e:
                logger.warning("Failed to stop %s: %s", task_id, e)
            del self._active[task_id]

    def _failed_tasks(self) -> tuple[int, ...]:
        failed = {
            d.shard_id
            for d in self._descriptions.values()
            if d.state is TaskState.STOPPED and not d.succeeded and d.shard_id is not None
        }
        return tuple(sorted(failed))

    async def aggregate(
        self, run_id: str, shard_count: int, policy: RetryPolicy | None = None
    ) -> list[ShardResult]:
        """Read the result of every shard.

        A pure read of the store; safe to repeat.

        Args:
            run_id: The run.
            shard_count: Number of shards in the manifest.
            policy: Backoff for each fetch; defaults to the settings' policy.

        Returns:
            Results ordered by shard id.

        Raises:
            AggregationError: If any shard has no readable result; the
                results that were read are carried on the error.
        """
        policy = policy or self._settings.result_retry
        results: list[ShardResult] = []
        missing: list[int] = []
        for shard_id in range(shard_count):
            result = await self._fetch_result(run_id, shard_id, policy)
            if result is None:
                missing.append(shard_id)
            else:
                results.append(result)
        if missing:
            raise AggregationError(missing, results)
        return results

    async def _fetch_result(
        self, run_id: str, shard_id: int, policy: RetryPolicy
    ) -> ShardResult | None:
        key = layout.result_key(run_id, shard_id)
        try:
            async for attempt in policy.retrying(StoreError):
                with attempt:
                    payload = await self._store.get_json(key)
            result = ShardResult.from_dict(payload)
        except StoreError as e:
            logger.warning("No result for shard %d: %s", shard_id, e)
            return None
        except SchemaError as e:
            logger.warning("Malformed result for shard %d: %s", shard_id, e)
            return None
        if result.shard_id != shard_id:
            logger.warning(
                "Result at %s names shard %d, ignoring it", key, result.shard_id
            )
            return None
        return result
