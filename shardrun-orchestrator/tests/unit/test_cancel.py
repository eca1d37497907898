"""Tests for CancelCoordinator."""

from __future__ import annotations

import pytest

from shardrun_core import layout
from shardrun_core.errors import BackendError, CancelUnsupportedError, RunNotFoundError
from shardrun_core.interfaces import ComputeBackend
from shardrun_core.types.tasks import LaunchSpec, TaskManifest
from shardrun_local.memory import MemoryStore
from shardrun_local.stub import StubBackend, StubFailures, TaskScript
from shardrun_orchestrator.cancel import CANCEL_REASON, CancelCoordinator

RUN_ID = "run-1707600000000-abc123"


def _task_id(shard_id: int) -> str:
    return f"stub-task/{RUN_ID}/{shard_id}"


async def _launch(store: MemoryStore, backend: StubBackend, shard_count: int = 3) -> None:
    handles = []
    for shard_id in range(shard_count):
        spec = LaunchSpec(RUN_ID, shard_id, store.location, "local", "playwright", 60_000)
        handles.append(await backend.launch(spec))
    await store.put_json(layout.manifest_key(RUN_ID), [])
    await store.put_json(
        layout.tasks_key(RUN_ID),
        TaskManifest.from_handles(handles, backend.cluster, backend.region).to_dict(),
    )


@pytest.fixture
def store() -> MemoryStore:
    """Create an empty store."""
    return MemoryStore()


@pytest.fixture
def backend() -> StubBackend:
    """Create a backend whose shard 0 task finishes on the first describe."""
    return StubBackend(
        scripts={0: TaskScript(running_polls=0)},
        default_script=TaskScript(never_stops=True),
    )


def _factory(backend: ComputeBackend):
    def factory(cluster: str, region: str) -> ComputeBackend:
        assert (cluster, region) == ("stub", "local")
        return backend

    return factory


class TestCancel:
    """Tests for CancelCoordinator.cancel."""

    async def test_dry_run_issues_no_stops(self, store: MemoryStore, backend: StubBackend) -> None:
        await _launch(store, backend)

        report = await CancelCoordinator(store, _factory(backend)).cancel(RUN_ID)

        assert report.dry_run
        assert backend.stop_calls == []
        assert [h.task_id for h in report.would_stop] == [_task_id(1), _task_id(2)]
        assert [h.task_id for h in report.already_stopped] == [_task_id(0)]
        assert report.stopped == ()

    async def test_force_stops_each_active_task_once(
        self, store: MemoryStore, backend: StubBackend
    ) -> None:
        await _launch(store, backend)

        report = await CancelCoordinator(store, _factory(backend)).cancel(RUN_ID, force=True)

        assert not report.dry_run
        assert backend.stop_calls == [_task_id(1), _task_id(2)]
        assert len(report.stopped) == 2
        assert len(report.already_stopped) == 1
        assert report.failed_to_stop == ()
        assert report.succeeded
        assert backend.tasks[_task_id(1)].stop_reason == CANCEL_REASON

    async def test_forgotten_tasks_count_as_stopped(self, store: MemoryStore) -> None:
        backend = StubBackend(
            default_script=TaskScript(never_stops=True), failures=StubFailures(forgotten={2})
        )
        await _launch(store, backend)

        report = await CancelCoordinator(store, _factory(backend)).cancel(RUN_ID, force=True)

        assert backend.stop_calls == [_task_id(0), _task_id(1)]
        assert [h.task_id for h in report.already_stopped] == [_task_id(2)]

    async def test_continues_past_stop_failures(
        self, store: MemoryStore, backend: StubBackend
    ) -> None:
        backend.failures.stop.add(_task_id(1))
        await _launch(store, backend)

        report = await CancelCoordinator(store, _factory(backend)).cancel(RUN_ID, force=True)

        assert backend.stop_calls == [_task_id(1), _task_id(2)]
        assert [h.task_id for h in report.failed_to_stop] == [_task_id(1)]
        assert [h.task_id for h in report.stopped] == [_task_id(2)]
        assert not report.succeeded
        assert report.to_dict() == {
            "runId": RUN_ID,
            "dryRun": False,
            "wouldStop": [_task_id(1), _task_id(2)],
            "stopped": 1,
            "alreadyStopped": 1,
            "failedToStop": 1,
        }

    async def test_second_cancel_finds_nothing_active(
        self, store: MemoryStore, backend: StubBackend
    ) -> None:
        await _launch(store, backend)
        coordinator = CancelCoordinator(store, _factory(backend))
        await coordinator.cancel(RUN_ID, force=True)

        report = await coordinator.cancel(RUN_ID, force=True)

        assert report.stopped == ()
        assert len(report.already_stopped) == 3
        assert len(backend.stop_calls) == 2

    async def test_without_task_manifest(self, store: MemoryStore, backend: StubBackend) -> None:
        await store.put_json(layout.manifest_key(RUN_ID), [])

        with pytest.raises(CancelUnsupportedError, match="no task manifest"):
            await CancelCoordinator(store, _factory(backend)).cancel(RUN_ID, force=True)

        assert backend.stop_calls == []

    async def test_unknown_run(self, store: MemoryStore, backend: StubBackend) -> None:
        with pytest.raises(RunNotFoundError):
            await CancelCoordinator(store, _factory(backend)).cancel(RUN_ID)

    async def test_describe_failure_propagates(self, store: MemoryStore) -> None:
        backend = StubBackend(failures=StubFailures(describe=1))
        await _launch(store, backend)

        with pytest.raises(BackendError):
            await CancelCoordinator(store, _factory(backend)).cancel(RUN_ID, force=True)

        assert backend.stop_calls == []
