"""Run status reconciliation.

A snapshot merges two sources:

- the durable store, which is authoritative: a stored shard result is the
  terminal record of its shard whatever the backend says;
- live task state from the compute backend, used only for shards without a
  result. It is optional: without a task manifest, or when the backend cannot
  be queried, the snapshot is built from the store alone and flagged with
  ``live_state_available=False``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Mapping, Sequence

from shardrun_core import layout
from shardrun_core.errors import (
    ObjectNotFoundError,
    RunNotFoundError,
    SchemaError,
    ShardrunError,
    StoreError,
)
from shardrun_core.interfaces import DurableStore
from shardrun_core.types.results import ShardResult
from shardrun_core.types.run import OverallStatus, RunStatus, ShardState, ShardStatus
from shardrun_core.types.shard import RunManifest
from shardrun_core.types.tasks import TaskDescription, TaskManifest, TaskState

from shardrun_orchestrator.backends import BackendFactory

logger = logging.getLogger(__name__)

StatusCallback = Callable[[RunStatus], None]

_LIVE_STATES = {
    TaskState.PENDING: ShardState.PENDING,
    TaskState.RUNNING: ShardState.RUNNING,
    TaskState.STOPPED: ShardState.STOPPED,
}


def shard_state(result: ShardResult | None, description: TaskDescription | None) -> ShardState:
    """Return the state of one shard; a stored result always wins."""
    if result is not None:
        return ShardState.FAILED if result.has_failures else ShardState.COMPLETED
    if description is not None:
        return _LIVE_STATES[description.state]
    return ShardState.UNKNOWN


def overall_status(shards: Sequence[ShardStatus]) -> OverallStatus:
    """Derive the state of a run from the states of its shards.

    A shard stopped without a result is terminal and counts as failed.
    """
    if not shards:
        return OverallStatus.PENDING
    terminal = [s for s in shards if s.state.is_terminal]
    if len(terminal) == len(shards):
        failed = any(s.state in (ShardState.FAILED, ShardState.STOPPED) for s in shards)
        return OverallStatus.FAILED if failed else OverallStatus.COMPLETED
    if terminal or any(s.state is ShardState.RUNNING for s in shards):
        return OverallStatus.RUNNING
    return OverallStatus.PENDING


class StatusReconciler:
    """Builds progress snapshots of runs.

    Args:
        store: Durable store holding the runs.
        backend_factory: Builds a backend for a task manifest's cluster and
            region. Without one, snapshots use the store alone.
    """

    def __init__(self, store: DurableStore, backend_factory: BackendFactory | None = None) -> None:
        self._store = store
        self._backend_factory = backend_factory

    async def snapshot(self, run_id: str) -> RunStatus:
        """Return the current status of a run.

        Raises:
            RunNotFoundError: If no manifest exists for run_id.
            SchemaError: If the manifest is malformed.
            StoreError: If the store cannot be read.
        """
        manifest = await self._load_manifest(run_id)
        # Live state first: a task seen stopped has had its chance to write a result
        descriptions = await self._live_state(run_id)
        results = await self._load_results(run_id, manifest.shard_count)

        shards = []
        for shard in manifest.shards:
            result = results.get(shard.id)
            description = descriptions.get(shard.id) if descriptions is not None else None
            shards.append(
                ShardStatus(
                    shard_id=shard.id,
                    state=shard_state(result, description),
                    result=result,
                    backend_status=description.status if description else None,
                    exit_code=description.exit_code if description else None,
                )
            )

        status = RunStatus(
            run_id=run_id,
            overall=overall_status(shards),
            shards=tuple(shards),
            live_state_available=descriptions is not None,
            metadata=manifest.metadata,
        )
        logger.debug(
            "Run %s is %s (%d/%d results)",
            run_id,
            status.overall.value,
            status.completed,
            status.total,
        )
        return status

    async def watch(
        self, run_id: str, interval: float = 5.0, on_update: StatusCallback | None = None
    ) -> RunStatus:
        """Poll snapshots until the run is terminal.

        Cancelling the coroutine stops watching immediately; nothing needs
        cleaning up.

        Returns:
            The first terminal snapshot.
        """
        while True:
            status = await self.snapshot(run_id)
            if on_update is not None:
                on_update(status)
            if status.overall.is_terminal:
                return status
            await asyncio.sleep(interval)

    async def _load_manifest(self, run_id: str) -> RunManifest:
        key = layout.manifest_key(run_id)
        try:
            payload = await self._store.get_json(key)
        except ObjectNotFoundError as e:
            raise RunNotFoundError(run_id) from e

        metadata: Mapping[str, str] = {}
        try:
            metadata = await self._store.get_metadata(key)
        except StoreError as e:
            logger.debug("No metadata for %s: %s", key, e)
        return RunManifest.from_payload(run_id, payload, metadata)

    async def _load_results(self, run_id: str, shard_count: int) -> dict[int, ShardResult]:
        results: dict[int, ShardResult] = {}
        for key in await self._store.list_keys(layout.results_prefix(run_id)):
            shard_id = layout.shard_id_from_result_key(key)
            if shard_id is None or shard_id >= shard_count:
                continue
            try:
                result = ShardResult.from_dict(await self._store.get_json(key))
            except (StoreError, SchemaError) as e:
                logger.warning("Skipping unreadable result %s: %s", key, e)
                continue
            if result.shard_id != shard_id:
                logger.warning("Skipping %s: it names shard %d", key, result.shard_id)
                continue
            results[shard_id] = result
        return results

    async def _live_state(self, run_id: str) -> dict[int, TaskDescription] | None:
        if self._backend_factory is None:
            return None
        try:
            tasks = TaskManifest.from_dict(await self._store.get_json(layout.tasks_key(run_id)))
        except ObjectNotFoundError:
            logger.warning("No task manifest for %s, showing stored results only", run_id)
            return None
        except ShardrunError as e:
            logger.warning("Unreadable task manifest for %s: %s", run_id, e)
            return None

        handles = tasks.handles()
        shard_by_task = {h.task_id: h.shard_id for h in handles}
        try:
            backend = self._backend_factory(tasks.cluster, tasks.region)
            described = await backend.describe(handles)
        except ShardrunError as e:
            logger.warning("Live task state unavailable for %s: %s", run_id, e)
            return None

        descriptions: dict[int, TaskDescription] = {}
        for description in described:
            shard_id = description.shard_id
            if shard_id is None:
                shard_id = shard_by_task.get(description.handle.task_id)
            if shard_id is not None:
                descriptions[shard_id] = description
        return descriptions
