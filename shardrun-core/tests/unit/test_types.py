"""Tests for shardrun record types."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from shardrun_core.errors import SchemaError
from shardrun_core.types import (
    FailureKind,
    LaunchSpec,
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
    OverallStatus,
    TaskDescription,
    TaskHandle,
    TaskId,
    TaskManifest,
    TaskState,
    TestCaseResult,
    TestCaseStatus,
    TestFile,
)


def _result(shard_id: int, passed: int = 1, failed: int = 0, skipped: int = 0) -> ShardResult:
    return ShardResult(shard_id=shard_id, passed=passed, failed=failed, skipped=skipped)


class TestTestFile:
    """Tests for TestFile."""

    def test_rejects_negative_size(self) -> None:
        with pytest.raises(ValueError):
            TestFile(path="a.spec.ts", size=-1)

    def test_rejects_negative_duration(self) -> None:
        with pytest.raises(ValueError):
            TestFile(path="a.spec.ts", size=1, estimated_duration=-5.0)

    def test_to_dict_wire_keys(self) -> None:
        f = TestFile(
            path="/repo/e2e/auth/login.spec.ts",
            size=2048,
            estimated_duration=5000.0,
            suite="auth",
            relative_path="e2e/auth/login.spec.ts",
            framework="playwright",
        )

        assert f.to_dict() == {
            "path": "/repo/e2e/auth/login.spec.ts",
            "relativePath": "e2e/auth/login.spec.ts",
            "size": 2048,
            "framework": "playwright",
            "estimatedDuration": 5000.0,
            "suite": "auth",
        }

    def test_relative_path_defaults_to_path(self) -> None:
        assert TestFile(path="a.spec.ts", size=1).to_dict()["relativePath"] == "a.spec.ts"

    def test_from_dict(self) -> None:
        f = TestFile.from_dict({"path": "a.cy.ts", "size": 10, "estimatedDuration": 8000})

        assert f.path == "a.cy.ts"
        assert f.size == 10
        assert f.estimated_duration == 8000.0
        assert f.suite is None

    def test_from_dict_missing_size(self) -> None:
        with pytest.raises(SchemaError, match="size"):
            TestFile.from_dict({"path": "a.cy.ts"})


class TestRunManifest:
    """Tests for RunManifest payload handling."""

    def _payload(self) -> list[dict]:
        files = [
            TestFile(path=f"t{i}.spec.ts", size=100, estimated_duration=1000.0) for i in range(3)
        ]
        shards = (Shard.from_files(0, files[:2]), Shard.from_files(1, files[2:]))
        return RunManifest(run_id=RunId("run-1"), shards=shards).to_payload()

    def test_payload_is_list_of_shards(self) -> None:
        payload = self._payload()

        assert isinstance(payload, list)
        assert payload[0]["id"] == 0
        assert payload[0]["totalSize"] == 200
        assert payload[0]["estimatedDuration"] == 2000.0
        assert len(payload[0]["files"]) == 2

    def test_from_payload(self) -> None:
        manifest = RunManifest.from_payload("run-1", self._payload(), {"framework": "playwright"})

        assert manifest.run_id == "run-1"
        assert manifest.shard_count == 2
        assert manifest.file_count == 3
        assert manifest.metadata["framework"] == "playwright"
        assert manifest.get_shard(1) is not None
        assert manifest.get_shard(2) is None

    def test_from_payload_sorts_shards(self) -> None:
        payload = list(reversed(self._payload()))

        manifest = RunManifest.from_payload("run-1", payload)

        assert [s.id for s in manifest.shards] == [0, 1]

    def test_recomputes_missing_totals(self) -> None:
        payload = [{"id": 0, "files": [{"path": "a", "size": 5, "estimatedDuration": 10}]}]

        manifest = RunManifest.from_payload("run-1", payload)

        assert manifest.shards[0].total_size == 5
        assert manifest.shards[0].estimated_duration == 10.0

    @pytest.mark.parametrize(
        "payload",
        [
            {"shards": []},
            [],
            [{"id": 0, "files": "nope"}],
            [{"id": 1, "files": []}],
            [{"id": 0, "files": []}, {"id": 2, "files": []}],
            [{"files": []}],
            [{"id": 0, "files": [{"path": "a", "size": -1}]}],
        ],
    )
    def test_rejects_malformed(self, payload: object) -> None:
        with pytest.raises(SchemaError):
            RunManifest.from_payload("run-1", payload)


class TestShardResult:
    """Tests for ShardResult."""

    def test_from_dict(self) -> None:
        result = ShardResult.from_dict(
            {
                "shard": 2,
                "passed": 3,
                "failed": 1,
                "skipped": 0,
                "duration": 1234,
                "tests": [
                    {"name": "logs in", "status": "passed", "duration": 10},
                    {"name": "logs out", "file": "auth.spec.ts", "status": "failed",
                     "duration": 20, "error": "timeout"},
                ],
            }
        )

        assert result.shard_id == 2
        assert result.total == 4
        assert result.has_failures is True
        assert result.duration == 1234.0
        assert [t.name for t in result.failed_tests()] == ["logs out"]
        assert result.failed_tests()[0].error == "timeout"

    def test_round_trip_keeps_wire_keys(self) -> None:
        result = ShardResult(
            shard_id=0,
            passed=1,
            tests=(TestCaseResult("ok", TestCaseStatus.PASSED, duration=5.0),),
        )

        data = result.to_dict()

        assert data["shard"] == 0
        assert data["tests"] == [{"name": "ok", "status": "passed", "duration": 5.0}]
        assert ShardResult.from_dict(data) == result

    @pytest.mark.parametrize(
        "payload",
        [
            "not an object",
            {"passed": 1, "failed": 0, "skipped": 0},
            {"shard": 0, "passed": -1, "failed": 0, "skipped": 0},
            {"shard": 0, "passed": True, "failed": 0, "skipped": 0},
            {"shard": 0, "passed": "3", "failed": 0, "skipped": 0},
            {"shard": 0, "passed": 1, "failed": 0, "skipped": 0, "tests": {}},
            {"shard": 0, "passed": 1, "failed": 0, "skipped": 0,
             "tests": [{"name": "x", "status": "flaky"}]},
        ],
    )
    def test_rejects_malformed(self, payload: object) -> None:
        with pytest.raises(SchemaError):
            ShardResult.from_dict(payload)

    def test_totals(self) -> None:
        totals = ResultTotals.of([_result(0, 3, 1, 1), _result(1, 2, 0, 0)])

        assert totals.passed == 5
        assert totals.failed == 1
        assert totals.skipped == 1
        assert totals.total == 7


class TestLaunchSpec:
    """Tests for LaunchSpec."""

    def test_environment(self) -> None:
        spec = LaunchSpec(
            run_id="run-1",
            shard_id=3,
            store_location="my-bucket",
            region="eu-west-1",
            framework="cypress",
            timeout_ms=1_800_000,
        )

        assert spec.environment() == {
            "RUN_ID": "run-1",
            "SHARD_ID": "3",
            "S3_BUCKET": "my-bucket",
            "AWS_REGION": "eu-west-1",
            "TEST_FRAMEWORK": "cypress",
            "TEST_TIMEOUT": "1800000",
        }
        assert spec.tags() == {
            "ShardrunRunId": "run-1",
            "ShardrunShard": "3",
            "ShardrunFramework": "cypress",
        }

    def test_resources(self) -> None:
        resources = ResourceSpec(cpu=2048, memory=4096)

        assert resources.vcpus == 2.0
        assert resources.memory_gb == 4.0


class TestTaskTypes:
    """Tests for task handles, descriptions and manifests."""

    def test_short_id(self) -> None:
        handle = TaskHandle(TaskId("arn:aws:ecs:us-east-1:123:task/cluster/abc123"))
        assert handle.short_id == "abc123"

    def test_state_terminal(self) -> None:
        assert TaskState.STOPPED.is_terminal
        assert not TaskState.RUNNING.is_terminal

    def test_description_succeeded(self) -> None:
        handle = TaskHandle(TaskId("t"), 0)

        assert TaskDescription(handle, TaskState.STOPPED, exit_code=0).succeeded
        assert not TaskDescription(handle, TaskState.STOPPED, exit_code=1).succeeded
        assert not TaskDescription(handle, TaskState.STOPPED).succeeded
        assert not TaskDescription(handle, TaskState.RUNNING, exit_code=0).succeeded

    def test_manifest_orders_by_shard(self) -> None:
        handles = [TaskHandle(TaskId("b"), 1), TaskHandle(TaskId("a"), 0)]

        manifest = TaskManifest.from_handles(handles, "cluster", "us-east-1")

        assert manifest.task_ids == ("a", "b")
        assert [(h.task_id, h.shard_id) for h in manifest.handles()] == [("a", 0), ("b", 1)]

    def test_manifest_wire_form(self) -> None:
        manifest = TaskManifest(
            task_ids=(TaskId("a"),), cluster="c", region="r", created_at="2024-01-01T00:00:00"
        )

        data = manifest.to_dict()

        assert data == {
            "taskArns": ["a"],
            "cluster": "c",
            "region": "r",
            "createdAt": "2024-01-01T00:00:00",
        }
        assert TaskManifest.from_dict(data) == manifest

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"cluster": "c", "region": "r"},
            {"taskArns": [1, 2], "cluster": "c", "region": "r"},
            {"taskArns": ["a"], "region": "r"},
        ],
    )
    def test_manifest_rejects_malformed(self, payload: object) -> None:
        with pytest.raises(SchemaError):
            TaskManifest.from_dict(payload)


class TestRunSummary:
    """Tests for RunSummary outcome derivation."""

    def test_success(self) -> None:
        summary = RunSummary("run-1", "stub", 2, results=(_result(0), _result(1)))

        assert summary.succeeded
        assert summary.failure_kind is FailureKind.NONE
        assert summary.outcome is RunOutcome.COMPLETED
        assert summary.exit_code == 0

    def test_test_failures(self) -> None:
        summary = RunSummary("run-1", "stub", 2, results=(_result(0), _result(1, 0, 2)))

        assert summary.failure_kind is FailureKind.TEST_FAILURES
        assert summary.outcome is RunOutcome.FAILED
        assert summary.exit_code == 1

    def test_missing_results(self) -> None:
        summary = RunSummary("run-1", "stub", 2, results=(_result(0),), missing_shards=(1,))

        assert summary.failure_kind is FailureKind.MISSING_RESULTS
        assert not summary.succeeded

    def test_infra_failure(self) -> None:
        summary = RunSummary(
            "run-1", "stub", 2, results=(_result(0),), missing_shards=(1,), failed_tasks=(1,)
        )

        assert summary.failure_kind is FailureKind.INFRA_FAILURE

    def test_failed_task_with_result_is_not_infra(self) -> None:
        summary = RunSummary(
            "run-1", "stub", 1, results=(_result(0, 0, 1),), failed_tasks=(0,)
        )

        assert summary.failure_kind is FailureKind.TEST_FAILURES

    def test_timeout_beats_missing(self) -> None:
        summary = RunSummary("run-1", "stub", 2, missing_shards=(0, 1), timed_out=True)

        assert summary.failure_kind is FailureKind.TIMEOUT

    def test_cancelled(self) -> None:
        summary = RunSummary("run-1", "stub", 1, results=(_result(0),), cancelled=True)

        assert summary.outcome is RunOutcome.CANCELLED
        assert summary.failure_kind is FailureKind.CANCELLED
        assert summary.exit_code == 1

    def test_to_dict(self) -> None:
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        summary = RunSummary(
            "run-1", "ecs", 1, results=(_result(0, 4, 1, 2),), start_time=start, cost=0.5
        )

        data = summary.to_dict()

        assert data["runId"] == "run-1"
        assert data["totalTests"] == 7
        assert data["failureKind"] == "test_failures"
        assert data["startTime"] == "2024-01-01T00:00:00+00:00"
        assert data["endTime"] is None
        assert data["cost"] == 0.5


class TestRunStatus:
    """Tests for RunStatus helpers."""

    def test_counts(self) -> None:
        status = RunStatus(
            run_id="run-1",
            overall=OverallStatus.RUNNING,
            shards=(
                ShardStatus(0, ShardState.COMPLETED, result=_result(0, 2)),
                ShardStatus(1, ShardState.RUNNING, backend_status="RUNNING"),
                ShardStatus(2, ShardState.FAILED, result=_result(2, 1, 1)),
            ),
            metadata={"timestamp": "2024-01-01T00:00:00Z"},
        )

        assert status.total == 3
        assert status.completed == 2
        assert status.count(ShardState.RUNNING) == 1
        assert status.totals.passed == 3
        assert status.started_at == "2024-01-01T00:00:00Z"
        assert status.to_dict()["progress"] == {
            "total": 3,
            "completed": 2,
            "running": 1,
            "failed": 1,
        }

    def test_terminal_states(self) -> None:
        assert ShardState.STOPPED.is_terminal
        assert not ShardState.UNKNOWN.is_terminal
        assert OverallStatus.FAILED.is_terminal
        assert not OverallStatus.RUNNING.is_terminal
        assert RunPhase.CANCELLED.is_terminal
        assert not RunPhase.AGGREGATING.is_terminal
