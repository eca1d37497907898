"""ECS/Fargate compute backend.

Each shard runs as one Fargate task of a pre-registered task definition. The
worker container receives its shard through environment overrides and every
task is tagged with the run id and shard id so that live state can be matched
back to shards.

ECS lastStatus values are normalized as follows:

    PROVISIONING, PENDING                          -> PENDING
    ACTIVATING, RUNNING                            -> RUNNING
    DEACTIVATING, STOPPING, DEPROVISIONING, STOPPED -> STOPPED
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from shardrun_core.cost import FARGATE_PRICING, ResourcePricing
from shardrun_core.errors import BackendError, ConfigurationError, LaunchError
from shardrun_core.types.common import TaskId
from shardrun_core.types.tasks import (
    TAG_SHARD,
    LaunchSpec,
    TaskDescription,
    TaskHandle,
    TaskState,
)

from shardrun_aws.s3 import create_client

logger = logging.getLogger(__name__)

DEFAULT_CONTAINER_NAME = "shardrun-worker"

# DescribeTasks accepts at most 100 tasks per call
DESCRIBE_BATCH_SIZE = 100

_STATUS_MAP: dict[str, TaskState] = {
    "PROVISIONING": TaskState.PENDING,
    "PENDING": TaskState.PENDING,
    "ACTIVATING": TaskState.RUNNING,
    "RUNNING": TaskState.RUNNING,
    "DEACTIVATING": TaskState.STOPPED,
    "STOPPING": TaskState.STOPPED,
    "DEPROVISIONING": TaskState.STOPPED,
    "STOPPED": TaskState.STOPPED,
}


def map_status(last_status: str | None) -> TaskState:
    """Normalize an ECS lastStatus; unknown values count as PENDING."""
    return _STATUS_MAP.get((last_status or "").upper(), TaskState.PENDING)


def _shard_from_tags(task: dict[str, Any]) -> int | None:
    for tag in task.get("tags", []):
        if tag.get("key") == TAG_SHARD:
            try:
                return int(tag.get("value", ""))
            except ValueError:
                return None
    return None


class EcsBackend:
    """ComputeBackend implementation over ECS with the Fargate launch type.

    Args:
        cluster: ECS cluster name or ARN.
        region: AWS region.
        task_definition: Task definition family[:revision] or ARN.
        subnets: Subnets for the awsvpc network configuration.
        security_groups: Security groups for the tasks.
        container_name: Name of the worker container in the task definition.
        assign_public_ip: Whether tasks get a public IP (needed without NAT).
        client: Optional pre-built ECS client (used by tests).
    """

    def __init__(
        self,
        cluster: str,
        region: str,
        task_definition: str,
        subnets: Sequence[str] = (),
        security_groups: Sequence[str] = (),
        container_name: str = DEFAULT_CONTAINER_NAME,
        assign_public_ip: bool = True,
        client: Any | None = None,
    ) -> None:
        self._cluster = cluster
        self._region = region
        self._task_definition = task_definition
        self._subnets = list(subnets)
        self._security_groups = list(security_groups)
        self._container_name = container_name
        self._assign_public_ip = assign_public_ip
        self._client = client if client is not None else create_client("ecs", region)

    @property
    def name(self) -> str:
        return "ecs"

    @property
    def cluster(self) -> str:
        return self._cluster

    @property
    def region(self) -> str:
        return self._region

    @property
    def pricing(self) -> ResourcePricing:
        return FARGATE_PRICING

    def check_prerequisites(self) -> None:
        missing = []
        if not self._cluster:
            missing.append("cluster")
        if not self._task_definition:
            missing.append("task definition")
        if not self._subnets:
            missing.append("subnets")
        if missing:
            raise ConfigurationError(
                f"ECS backend is missing: {', '.join(missing)}. "
                "Run your infrastructure setup and add its outputs to the config file."
            )

    def _run_task_params(self, spec: LaunchSpec) -> dict[str, Any]:
        awsvpc: dict[str, Any] = {
            "subnets": self._subnets,
            "assignPublicIp": "ENABLED" if self._assign_public_ip else "DISABLED",
        }
        if self._security_groups:
            awsvpc["securityGroups"] = self._security_groups
        return {
            "cluster": self._cluster,
            "taskDefinition": self._task_definition,
            "launchType": "FARGATE",
            "count": 1,
            "networkConfiguration": {"awsvpcConfiguration": awsvpc},
            "overrides": {
                "cpu": str(spec.resources.cpu),
                "memory": str(spec.resources.memory),
                "containerOverrides": [
                    {
                        "name": self._container_name,
                        "environment": [
                            {"name": k, "value": v} for k, v in spec.environment().items()
                        ],
                    }
                ],
            },
            "tags": [{"key": k, "value": v} for k, v in spec.tags().items()],
        }

    async def launch(self, spec: LaunchSpec) -> TaskHandle:
        try:
            response = await asyncio.to_thread(
                self._client.run_task, **self._run_task_params(spec)
            )
        except (ClientError, BotoCoreError) as e:
            raise LaunchError(
                f"Failed to create task for shard {spec.shard_id}: {e}", spec.shard_id
            ) from e

        tasks = response.get("tasks") or []
        if not tasks:
            reasons = "; ".join(
                f"{f.get('arn', '?')}: {f.get('reason', 'unknown')}"
                for f in response.get("failures", [])
            )
            raise LaunchError(
                f"Failed to create task for shard {spec.shard_id}: {reasons or 'no task returned'}",
                spec.shard_id,
            )
        task_arn = tasks[0]["taskArn"]
        logger.debug("Shard %d: %s", spec.shard_id, task_arn)
        return TaskHandle(task_id=TaskId(task_arn), shard_id=spec.shard_id)

    async def describe(self, handles: Sequence[TaskHandle]) -> list[TaskDescription]:
        by_arn = {h.task_id: h for h in handles}
        arns = list(by_arn)
        descriptions = []
        for start in range(0, len(arns), DESCRIBE_BATCH_SIZE):
            batch = arns[start : start + DESCRIBE_BATCH_SIZE]
            try:
                response = await asyncio.to_thread(
                    self._client.describe_tasks,
                    cluster=self._cluster,
                    tasks=batch,
                    include=["TAGS"],
                )
            except (ClientError, BotoCoreError) as e:
                raise BackendError(f"Failed to describe tasks in {self._cluster}: {e}") from e
            for task in response.get("tasks", []):
                descriptions.append(self._describe_task(task, by_arn))
        return descriptions

    @staticmethod
    def _describe_task(task: dict[str, Any], by_arn: dict[str, TaskHandle]) -> TaskDescription:
        arn = task["taskArn"]
        known = by_arn.get(arn)
        shard_id = _shard_from_tags(task)
        if shard_id is None and known is not None:
            shard_id = known.shard_id
        containers = task.get("containers") or []
        container = containers[0] if containers else {}
        status = task.get("lastStatus", "")
        return TaskDescription(
            handle=TaskHandle(task_id=TaskId(arn), shard_id=shard_id),
            state=map_status(status),
            exit_code=container.get("exitCode"),
            status=status,
            reason=task.get("stoppedReason") or container.get("reason"),
        )

    async def stop(self, handle: TaskHandle, reason: str) -> None:
        try:
            await asyncio.to_thread(
                self._client.stop_task,
                cluster=self._cluster,
                task=handle.task_id,
                reason=reason[:255],
            )
        except ClientError as e:
            # StopTask on a task that already stopped reports InvalidParameterException
            code = e.response.get("Error", {}).get("Code", "")
            if code == "InvalidParameterException" and "stopped" in str(e).lower():
                logger.debug("Task %s already stopped", handle.short_id)
                return
            raise BackendError(f"Failed to stop task {handle.short_id}: {e}") from e
        except BotoCoreError as e:
            raise BackendError(f"Failed to stop task {handle.short_id}: {e}") from e
        logger.info("Stopped task %s", handle.short_id)
