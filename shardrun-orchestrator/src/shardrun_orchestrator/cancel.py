"""Cancellation of runs from their persisted task manifest.

Cancelling is a two-step, explicit action: the default call only reports
which tasks would be stopped; ``force=True`` stops them. Stops are issued
one per active task and a failing stop never prevents the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from shardrun_core import layout
from shardrun_core.errors import (
    BackendError,
    CancelUnsupportedError,
    ObjectNotFoundError,
    RunNotFoundError,
)
from shardrun_core.interfaces import DurableStore
from shardrun_core.types.tasks import TaskHandle, TaskManifest, TaskState

from shardrun_orchestrator.backends import BackendFactory

logger = logging.getLogger(__name__)

CANCEL_REASON = "Cancelled by shardrun cancel command"


@dataclass(frozen=True)
class CancelReport:
    """Outcome of a cancel request.

    Attributes:
        run_id: The run.
        dry_run: True if nothing was stopped because force was not given.
        would_stop: Active tasks found (the tasks a forced cancel stops).
        stopped: Tasks stopped successfully.
        already_stopped: Tasks that were already stopped or are no longer known.
        failed_to_stop: Tasks whose stop call failed.
    """

    run_id: str
    dry_run: bool
    would_stop: tuple[TaskHandle, ...] = ()
    stopped: tuple[TaskHandle, ...] = ()
    already_stopped: tuple[TaskHandle, ...] = ()
    failed_to_stop: tuple[TaskHandle, ...] = ()

    @property
    def succeeded(self) -> bool:
        """Return True unless a stop call failed."""
        return not self.failed_to_stop

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary."""
        return {
            "runId": self.run_id,
            "dryRun": self.dry_run,
            "wouldStop": [h.task_id for h in self.would_stop],
            "stopped": len(self.stopped),
            "alreadyStopped": len(self.already_stopped),
            "failedToStop": len(self.failed_to_stop),
        }


class CancelCoordinator:
    """Stops the active tasks of a run.

    Args:
        store: Durable store holding the run.
        backend_factory: Builds a backend for the task manifest's cluster and region.
    """

    def __init__(self, store: DurableStore, backend_factory: BackendFactory) -> None:
        self._store = store
        self._backend_factory = backend_factory

    async def cancel(self, run_id: str, force: bool = False) -> CancelReport:
        """Cancel a run.

        Args:
            run_id: The run.
            force: Stop the active tasks; otherwise only report them.

        Returns:
            What was (or would be) stopped.

        Raises:
            RunNotFoundError: If the run does not exist at all.
            CancelUnsupportedError: If the run has no task manifest.
            BackendError: If the task states cannot be queried.
        """
        tasks = await self._load_tasks(run_id)
        handles = tasks.handles()
        backend = self._backend_factory(tasks.cluster, tasks.region)
        states = {d.handle.task_id: d.state for d in await backend.describe(handles)}

        # Tasks the backend no longer reports count as stopped
        active = [
            h for h in handles if states.get(h.task_id, TaskState.STOPPED) is not TaskState.STOPPED
        ]
        already = tuple(h for h in handles if h not in active)
        logger.info(
            "Run %s: %d active task(s), %d already stopped", run_id, len(active), len(already)
        )

        if not force:
            return CancelReport(
                run_id=run_id, dry_run=True, would_stop=tuple(active), already_stopped=already
            )

        stopped = []
        failed = []
        for handle in active:
            try:
                await backend.stop(handle, CANCEL_REASON)
                stopped.append(handle)
                logger.debug("Stopped %s (shard %s)", handle.task_id, handle.shard_id)
            except BackendError as e:
                logger.warning("Failed to stop %s: %s", handle.task_id, e)
                failed.append(handle)

        return CancelReport(
            run_id=run_id,
            dry_run=False,
            would_stop=tuple(active),
            stopped=tuple(stopped),
            already_stopped=already,
            failed_to_stop=tuple(failed),
        )

    async def _load_tasks(self, run_id: str) -> TaskManifest:
        try:
            return TaskManifest.from_dict(await self._store.get_json(layout.tasks_key(run_id)))
        except ObjectNotFoundError as e:
            if not await self._store.list_keys(layout.run_prefix(run_id)):
                raise RunNotFoundError(run_id) from e
            raise CancelUnsupportedError(run_id) from e
