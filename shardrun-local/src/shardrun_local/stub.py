"""Scripted in-process compute backend.

StubBackend implements the ComputeBackend protocol without running anything.
Each task follows a script: it reports PENDING for some describe calls, then
RUNNING, then STOPPED with a scripted exit code. An optional worker callback
runs when a task finishes, typically writing the shard's result to a store,
which lets a whole run be exercised in-process.

Example:
    >>> backend = StubBackend(scripts={1: TaskScript(exit_code=1)})
    >>> # shard 1 will stop with exit code 1, every other shard with 0
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping, Sequence, Union

from shardrun_core.cost import FREE_PRICING, ResourcePricing
from shardrun_core.errors import BackendError, ConfigurationError, LaunchError
from shardrun_core.types.common import TaskId
from shardrun_core.types.tasks import LaunchSpec, TaskDescription, TaskHandle, TaskState

from shardrun_local.memory import CallLog

logger = logging.getLogger(__name__)

WorkerCallback = Callable[[LaunchSpec], Union[Awaitable[None], None]]


@dataclass(frozen=True)
class TaskScript:
    """Scripted lifecycle of one stub task.

    Attributes:
        pending_polls: Describe calls that report PENDING.
        running_polls: Describe calls that report RUNNING afterwards.
        exit_code: Exit code once stopped; None models a task killed without one.
        never_stops: If True the task stays RUNNING until stopped.
        run_worker: If False the worker callback is skipped (shard produces no result).
    """

    pending_polls: int = 0
    running_polls: int = 1
    exit_code: int | None = 0
    never_stops: bool = False
    run_worker: bool = True


@dataclass
class _StubTask:
    spec: LaunchSpec
    script: TaskScript
    polls: int = 0
    stopped: bool = False
    stop_reason: str | None = None
    finished: bool = False

    def state(self) -> TaskState:
        if self.stopped or self.finished:
            return TaskState.STOPPED
        if self.polls <= self.script.pending_polls:
            return TaskState.PENDING
        return TaskState.RUNNING


@dataclass
class StubFailures:
    """Failures a StubBackend injects.

    Attributes:
        launch: Shard ids whose launch raises LaunchError.
        stop: Task ids whose stop raises BackendError.
        describe: Number of upcoming describe calls that raise BackendError.
        forgotten: Shard ids the backend no longer reports in describe.
        prerequisites: Message of a ConfigurationError raised by check_prerequisites.
    """

    launch: set[int] = field(default_factory=set)
    stop: set[str] = field(default_factory=set)
    describe: int = 0
    forgotten: set[int] = field(default_factory=set)
    prerequisites: str | None = None


class StubBackend:
    """ComputeBackend that follows per-shard scripts.

    Args:
        scripts: Per-shard scripts; shards without one use default_script.
        default_script: Script for unscripted shards.
        worker: Callback invoked once when a task finishes on its own.
        calls: Optional shared call log (see MemoryStore).
        failures: Failures to inject.
    """

    def __init__(
        self,
        scripts: Mapping[int, TaskScript] | None = None,
        default_script: TaskScript | None = None,
        worker: WorkerCallback | None = None,
        calls: CallLog | None = None,
        failures: StubFailures | None = None,
    ) -> None:
        self._scripts = dict(scripts or {})
        self._default = default_script or TaskScript()
        self._worker = worker
        self.calls: CallLog = calls if calls is not None else []
        self.failures = failures or StubFailures()
        self.tasks: dict[str, _StubTask] = {}
        self.launched: list[LaunchSpec] = []
        self.stop_calls: list[str] = []

    @property
    def name(self) -> str:
        return "stub"

    @property
    def cluster(self) -> str:
        return "stub"

    @property
    def region(self) -> str:
        return "local"

    @property
    def pricing(self) -> ResourcePricing:
        return FREE_PRICING

    def check_prerequisites(self) -> None:
        if self.failures.prerequisites:
            raise ConfigurationError(self.failures.prerequisites)

    async def launch(self, spec: LaunchSpec) -> TaskHandle:
        self.calls.append(("backend.launch", str(spec.shard_id)))
        if spec.shard_id in self.failures.launch:
            raise LaunchError(f"Stub launch failure for shard {spec.shard_id}", spec.shard_id)
        task_id = f"stub-task/{spec.run_id}/{spec.shard_id}"
        script = self._scripts.get(spec.shard_id, self._default)
        self.tasks[task_id] = _StubTask(spec=spec, script=script)
        self.launched.append(spec)
        logger.debug("Launched stub task %s", task_id)
        return TaskHandle(task_id=TaskId(task_id), shard_id=spec.shard_id)

    async def describe(self, handles: Sequence[TaskHandle]) -> list[TaskDescription]:
        self.calls.append(("backend.describe", str(len(handles))))
        if self.failures.describe > 0:
            self.failures.describe -= 1
            raise BackendError("Stub describe failure")

        descriptions = []
        for handle in handles:
            task = self.tasks.get(handle.task_id)
            if task is None or task.spec.shard_id in self.failures.forgotten:
                continue
            task.polls += 1
            await self._advance(task)
            state = task.state()
            descriptions.append(
                TaskDescription(
                    handle=TaskHandle(handle.task_id, task.spec.shard_id),
                    state=state,
                    exit_code=self._exit_code(task) if state is TaskState.STOPPED else None,
                    status=state.value.upper(),
                    reason=task.stop_reason,
                )
            )
        return descriptions

    async def _advance(self, task: _StubTask) -> None:
        script = task.script
        if task.stopped or task.finished or script.never_stops:
            return
        if task.polls > script.pending_polls + script.running_polls:
            task.finished = True
            if self._worker is not None and script.run_worker:
                outcome = self._worker(task.spec)
                if inspect.isawaitable(outcome):
                    await outcome

    @staticmethod
    def _exit_code(task: _StubTask) -> int | None:
        if task.stopped and not task.finished:
            return None
        return task.script.exit_code

    async def stop(self, handle: TaskHandle, reason: str) -> None:
        self.calls.append(("backend.stop", handle.task_id))
        self.stop_calls.append(handle.task_id)
        if handle.task_id in self.failures.stop:
            raise BackendError(f"Stub stop failure for {handle.task_id}")
        task = self.tasks.get(handle.task_id)
        if task is not None and not task.finished:
            task.stopped = True
            task.stop_reason = reason
