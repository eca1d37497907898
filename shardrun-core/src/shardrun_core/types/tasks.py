"""Compute task types.

Classes:
    ResourceSpec: CPU/memory size of one worker task.
    LaunchSpec: Everything a backend needs to start the worker for one shard.
    TaskHandle: Backend-specific reference to a launched task.
    TaskState: Normalized task lifecycle state.
    TaskDescription: Point-in-time view of one task as reported by the backend.
    TaskManifest: Persisted list of task handles for a run (``tasks.json``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence

from shardrun_core.errors import SchemaError
from shardrun_core.types.common import TaskId, require_mapping, require_str

# Tag keys attached to every launched task so that live state can be matched
# back to (run id, shard id) without the task manifest.
TAG_RUN_ID = "ShardrunRunId"
TAG_SHARD = "ShardrunShard"
TAG_FRAMEWORK = "ShardrunFramework"


@dataclass(frozen=True)
class ResourceSpec:
    """CPU/memory size of one worker task.

    Attributes:
        cpu: CPU units (1024 units = 1 vCPU).
        memory: Memory in MiB.
    """

    cpu: int = 1024
    memory: int = 2048

    @property
    def vcpus(self) -> float:
        """Return the size in vCPUs."""
        return self.cpu / 1024

    @property
    def memory_gb(self) -> float:
        """Return the memory size in GiB."""
        return self.memory / 1024


@dataclass(frozen=True)
class LaunchSpec:
    """Everything a backend needs to start the worker for one shard.

    Attributes:
        run_id: Run the task belongs to.
        shard_id: Shard the task executes.
        store_location: Durable store location (bucket name or root directory).
        region: Region the store and tasks live in.
        framework: Test framework the worker drives.
        timeout_ms: Per-shard test timeout handed to the worker, in milliseconds.
        resources: Task size.
        deadline: Wall-clock (epoch seconds) deadline of the whole run, if any.
    """

    run_id: str
    shard_id: int
    store_location: str
    region: str
    framework: str
    timeout_ms: int
    resources: ResourceSpec = field(default_factory=ResourceSpec)
    deadline: float | None = None

    def environment(self) -> dict[str, str]:
        """Return the worker environment variables for this launch."""
        return {
            "RUN_ID": self.run_id,
            "SHARD_ID": str(self.shard_id),
            "S3_BUCKET": self.store_location,
            "AWS_REGION": self.region,
            "TEST_FRAMEWORK": self.framework,
            "TEST_TIMEOUT": str(self.timeout_ms),
        }

    def tags(self) -> dict[str, str]:
        """Return the reconciliation tags for this launch."""
        return {
            TAG_RUN_ID: self.run_id,
            TAG_SHARD: str(self.shard_id),
            TAG_FRAMEWORK: self.framework,
        }


@dataclass(frozen=True)
class TaskHandle:
    """Backend-specific reference to one launched task.

    Attributes:
        task_id: Opaque backend identifier.
        shard_id: Shard the task was launched for, if known.
    """

    task_id: TaskId
    shard_id: int | None = None

    @property
    def short_id(self) -> str:
        """Return the last path segment of the task id (e.g. the ARN suffix)."""
        return self.task_id.rsplit("/", 1)[-1]


class TaskState(str, Enum):
    """Normalized task lifecycle state.

    Attributes:
        PENDING: Accepted but not yet running.
        RUNNING: Executing.
        STOPPED: Terminal; exit code may be available.
    """

    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        """Return True for STOPPED."""
        return self is TaskState.STOPPED


@dataclass(frozen=True)
class TaskDescription:
    """Point-in-time view of one task.

    Attributes:
        handle: The described task; shard_id is recovered from tags when possible.
        state: Normalized state.
        exit_code: Worker exit code, when stopped and reported.
        status: Raw backend status string (e.g. ``DEPROVISIONING``).
        reason: Backend stop reason, if any.
    """

    handle: TaskHandle
    state: TaskState
    exit_code: int | None = None
    status: str = ""
    reason: str | None = None

    @property
    def shard_id(self) -> int | None:
        """Return the shard id of the described task."""
        return self.handle.shard_id

    @property
    def succeeded(self) -> bool:
        """Return True if the task stopped with exit code 0."""
        return self.state is TaskState.STOPPED and self.exit_code == 0


@dataclass(frozen=True)
class TaskManifest:
    """Persisted task handles of a run.

    ``task_ids[i]`` is the task launched for shard ``i``: tasks are launched
    sequentially in shard order.

    Attributes:
        task_ids: Backend task ids in shard order.
        cluster: Backend cluster (or equivalent placement scope).
        region: Backend region.
        created_at: ISO-8601 creation timestamp.
    """

    task_ids: tuple[TaskId, ...]
    cluster: str
    region: str
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @classmethod
    def from_handles(cls, handles: Sequence[TaskHandle], cluster: str, region: str) -> TaskManifest:
        """Build a manifest from launched handles."""
        ordered = sorted(handles, key=lambda h: -1 if h.shard_id is None else h.shard_id)
        return cls(task_ids=tuple(h.task_id for h in ordered), cluster=cluster, region=region)

    def handles(self) -> list[TaskHandle]:
        """Return handles with shard ids inferred from launch order."""
        return [TaskHandle(task_id=t, shard_id=i) for i, t in enumerate(self.task_ids)]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the ``tasks.json`` payload."""
        return {
            "taskArns": list(self.task_ids),
            "cluster": self.cluster,
            "region": self.region,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> TaskManifest:
        """Deserialize and validate a ``tasks.json`` payload.

        Raises:
            SchemaError: If the payload is malformed.
        """
        data = require_mapping(data, "task manifest")
        arns = data.get("taskArns")
        if not isinstance(arns, list) or not all(isinstance(a, str) for a in arns):
            raise SchemaError("task manifest field 'taskArns' must be a list of strings")
        return cls(
            task_ids=tuple(TaskId(a) for a in arns),
            cluster=require_str(data, "cluster", "task manifest"),
            region=require_str(data, "region", "task manifest"),
            created_at=str(data.get("createdAt", "")),
        )
