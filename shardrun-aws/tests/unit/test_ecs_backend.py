"""Tests for the ECS compute backend."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from shardrun_core.errors import BackendError, ConfigurationError, LaunchError
from shardrun_core.types.common import TaskId
from shardrun_core.types.tasks import LaunchSpec, ResourceSpec, TaskHandle, TaskState
from shardrun_aws.ecs import EcsBackend, map_status

CLUSTER = "shardrun-cluster"
ARN = "arn:aws:ecs:us-east-1:123456789012:task/shardrun-cluster/{}"


def _spec(shard_id: int = 0) -> LaunchSpec:
    return LaunchSpec(
        run_id="run-1707600000000-abc123",
        shard_id=shard_id,
        store_location="shardrun-storage",
        region="us-east-1",
        framework="playwright",
        timeout_ms=1_800_000,
        resources=ResourceSpec(cpu=1024, memory=2048),
    )


def _task(
    task_id: str, status: str, shard: int | None = None, exit_code: int | None = None
) -> dict:
    task: dict = {"taskArn": ARN.format(task_id), "lastStatus": status, "containers": [{}]}
    if shard is not None:
        task["tags"] = [
            {"key": "ShardrunRunId", "value": "run-1"},
            {"key": "ShardrunShard", "value": str(shard)},
        ]
    if exit_code is not None:
        task["containers"] = [{"exitCode": exit_code}]
    return task


@pytest.fixture
def mock_client() -> MagicMock:
    """Create a mock boto3 ECS client."""
    return MagicMock()


@pytest.fixture
def backend(mock_client: MagicMock) -> EcsBackend:
    """Create an EcsBackend around the mock client."""
    return EcsBackend(
        cluster=CLUSTER,
        region="us-east-1",
        task_definition="shardrun-runner",
        subnets=["subnet-1", "subnet-2"],
        security_groups=["sg-1"],
        client=mock_client,
    )


class TestStatusMapping:
    """Tests for map_status."""

    @pytest.mark.parametrize(
        "status,expected",
        [
            ("PROVISIONING", TaskState.PENDING),
            ("PENDING", TaskState.PENDING),
            ("ACTIVATING", TaskState.RUNNING),
            ("RUNNING", TaskState.RUNNING),
            ("DEACTIVATING", TaskState.STOPPED),
            ("STOPPING", TaskState.STOPPED),
            ("DEPROVISIONING", TaskState.STOPPED),
            ("STOPPED", TaskState.STOPPED),
            (None, TaskState.PENDING),
        ],
    )
    def test_map_status(self, status: str | None, expected: TaskState) -> None:
        assert map_status(status) is expected


class TestPrerequisites:
    """Tests for check_prerequisites."""

    def test_complete(self, backend: EcsBackend) -> None:
        backend.check_prerequisites()

    def test_missing_subnets(self, mock_client: MagicMock) -> None:
        backend = EcsBackend(CLUSTER, "us-east-1", "shardrun-runner", client=mock_client)

        with pytest.raises(ConfigurationError, match="subnets"):
            backend.check_prerequisites()

        mock_client.assert_not_called()


class TestLaunch:
    """Tests for launch."""

    async def test_run_task_request(self, backend: EcsBackend, mock_client: MagicMock) -> None:
        mock_client.run_task.return_value = {"tasks": [{"taskArn": ARN.format("t0")}]}

        handle = await backend.launch(_spec(2))

        assert handle.task_id == ARN.format("t0")
        assert handle.shard_id == 2
        kwargs = mock_client.run_task.call_args.kwargs
        assert kwargs["cluster"] == CLUSTER
        assert kwargs["taskDefinition"] == "shardrun-runner"
        assert kwargs["launchType"] == "FARGATE"
        assert kwargs["networkConfiguration"]["awsvpcConfiguration"] == {
            "subnets": ["subnet-1", "subnet-2"],
            "securityGroups": ["sg-1"],
            "assignPublicIp": "ENABLED",
        }
        override = kwargs["overrides"]["containerOverrides"][0]
        assert override["name"] == "shardrun-worker"
        env = {e["name"]: e["value"] for e in override["environment"]}
        assert env["SHARD_ID"] == "2"
        assert env["S3_BUCKET"] == "shardrun-storage"
        assert env["TEST_TIMEOUT"] == "1800000"
        tags = {t["key"]: t["value"] for t in kwargs["tags"]}
        assert tags == {
            "ShardrunRunId": "run-1707600000000-abc123",
            "ShardrunShard": "2",
            "ShardrunFramework": "playwright",
        }

    async def test_failures_in_response(self, backend: EcsBackend, mock_client: MagicMock) -> None:
        mock_client.run_task.return_value = {
            "tasks": [],
            "failures": [{"arn": "x", "reason": "RESOURCE:MEMORY"}],
        }

        with pytest.raises(LaunchError, match="RESOURCE:MEMORY") as exc_info:
            await backend.launch(_spec(1))

        assert exc_info.value.shard_id == 1

    async def test_client_error(self, backend: EcsBackend, mock_client: MagicMock) -> None:
        mock_client.run_task.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "RunTask"
        )

        with pytest.raises(LaunchError):
            await backend.launch(_spec())


class TestDescribe:
    """Tests for describe."""

    async def test_states_and_exit_codes(self, backend: EcsBackend, mock_client: MagicMock) -> None:
        mock_client.describe_tasks.return_value = {
            "tasks": [
                _task("a", "RUNNING", shard=0),
                _task("b", "STOPPED", shard=1, exit_code=1),
            ]
        }
        handles = [TaskHandle(TaskId(ARN.format("a"))), TaskHandle(TaskId(ARN.format("b")))]

        descriptions = await backend.describe(handles)

        assert [(d.shard_id, d.state, d.exit_code) for d in descriptions] == [
            (0, TaskState.RUNNING, None),
            (1, TaskState.STOPPED, 1),
        ]
        mock_client.describe_tasks.assert_called_once_with(
            cluster=CLUSTER, tasks=[ARN.format("a"), ARN.format("b")], include=["TAGS"]
        )

    async def test_falls_back_to_handle_shard(
        self, backend: EcsBackend, mock_client: MagicMock
    ) -> None:
        mock_client.describe_tasks.return_value = {"tasks": [_task("a", "PENDING")]}

        descriptions = await backend.describe([TaskHandle(TaskId(ARN.format("a")), 4)])

        assert descriptions[0].shard_id == 4

    async def test_batches_of_100(self, backend: EcsBackend, mock_client: MagicMock) -> None:
        mock_client.describe_tasks.return_value = {"tasks": []}
        handles = [TaskHandle(TaskId(ARN.format(i)), i) for i in range(250)]

        await backend.describe(handles)

        sizes = [len(c.kwargs["tasks"]) for c in mock_client.describe_tasks.call_args_list]
        assert sizes == [100, 100, 50]

    async def test_error(self, backend: EcsBackend, mock_client: MagicMock) -> None:
        mock_client.describe_tasks.side_effect = ClientError(
            {"Error": {"Code": "ClusterNotFoundException", "Message": "gone"}}, "DescribeTasks"
        )

        with pytest.raises(BackendError):
            await backend.describe([TaskHandle(TaskId("t"))])


class TestStop:
    """Tests for stop."""

    async def test_stop(self, backend: EcsBackend, mock_client: MagicMock) -> None:
        handle = TaskHandle(TaskId(ARN.format("a")), 0)

        await backend.stop(handle, "Cancelled by shardrun cancel command")

        mock_client.stop_task.assert_called_once_with(
            cluster=CLUSTER, task=ARN.format("a"), reason="Cancelled by shardrun cancel command"
        )

    async def test_already_stopped(self, backend: EcsBackend, mock_client: MagicMock) -> None:
        mock_client.stop_task.side_effect = ClientError(
            {"Error": {"Code": "InvalidParameterException", "Message": "The task is stopped."}},
            "StopTask",
        )

        await backend.stop(TaskHandle(TaskId("t")), "cancel")

    async def test_error(self, backend: EcsBackend, mock_client: MagicMock) -> None:
        mock_client.stop_task.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "StopTask"
        )

        with pytest.raises(BackendError):
            await backend.stop(TaskHandle(TaskId("t")), "cancel")
