"""Test file and shard plan types.

Classes:
    TestFile: One discovered test source unit.
    Shard: A partition of test files routed to one worker.
    RunManifest: The persisted shard plan of a run.

The wire forms use the camelCase keys that workers read from
``runs/<runId>/shards.json``; ``to_dict``/``from_dict`` translate between the
two and validate on the way in.

Example:
    >>> f = TestFile(path="e2e/auth/login.spec.ts", size=2048, estimated_duration=5000.0)
    >>> shard = Shard(id=0, files=(f,), total_size=2048, estimated_duration=5000.0)
    >>> RunManifest(run_id=RunId("run-1"), shards=(shard,)).to_payload()[0]["id"]
    0
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from shardrun_core.errors import SchemaError
from shardrun_core.types.common import (
    RunId,
    optional_str,
    require_int,
    require_mapping,
    require_number,
    require_str,
)


@dataclass(frozen=True)
class TestFile:
    """One discovered test source file.

    Attributes:
        path: Path of the file as discovered (absolute or relative to the workload root).
        size: File size in bytes.
        estimated_duration: Estimated execution time in milliseconds, if known.
        suite: Suite name, usually the parent directory.
        relative_path: Path relative to the workload root. Defaults to path.
        framework: Test framework name.
    """

    path: str
    size: int
    estimated_duration: float | None = None
    suite: str | None = None
    relative_path: str | None = None
    framework: str | None = None

    def __post_init__(self) -> None:
        if self.size < 0:
            raise ValueError(f"size must be >= 0, got {self.size}")
        if self.estimated_duration is not None and self.estimated_duration < 0:
            raise ValueError(f"estimated_duration must be >= 0, got {self.estimated_duration}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the worker wire form."""
        data: dict[str, Any] = {
            "path": self.path,
            "relativePath": self.relative_path or self.path,
            "size": self.size,
        }
        if self.framework is not None:
            data["framework"] = self.framework
        if self.estimated_duration is not None:
            data["estimatedDuration"] = self.estimated_duration
        if self.suite is not None:
            data["suite"] = self.suite
        return data

    @classmethod
    def from_dict(cls, data: Any) -> TestFile:
        """Deserialize from the worker wire form.

        Raises:
            SchemaError: If the payload is malformed.
        """
        data = require_mapping(data, "test file")
        estimated = data.get("estimatedDuration")
        return cls(
            path=require_str(data, "path", "test file"),
            size=require_int(data, "size", "test file"),
            estimated_duration=(
                require_number(data, "estimatedDuration", "test file")
                if estimated is not None
                else None
            ),
            suite=optional_str(data, "suite", "test file"),
            relative_path=optional_str(data, "relativePath", "test file"),
            framework=optional_str(data, "framework", "test file"),
        )


@dataclass(frozen=True)
class Shard:
    """A partition of test files routed to one worker.

    Attributes:
        id: Shard index, 0..K-1.
        files: Files assigned to this shard, in assignment order.
        total_size: Sum of file sizes in bytes.
        estimated_duration: Sum of estimated durations in milliseconds; missing
            estimates count as 0.
    """

    id: int
    files: tuple[TestFile, ...] = ()
    total_size: int = 0
    estimated_duration: float = 0.0

    @classmethod
    def from_files(cls, shard_id: int, files: Sequence[TestFile]) -> Shard:
        """Build a shard and compute its totals from the files."""
        return cls(
            id=shard_id,
            files=tuple(files),
            total_size=sum(f.size for f in files),
            estimated_duration=float(sum(f.estimated_duration or 0.0 for f in files)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the worker wire form."""
        return {
            "id": self.id,
            "files": [f.to_dict() for f in self.files],
            "estimatedDuration": self.estimated_duration,
            "totalSize": self.total_size,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Shard:
        """Deserialize from the worker wire form.

        Totals are taken from the payload when present and recomputed from
        the files otherwise.

        Raises:
            SchemaError: If the payload is malformed.
        """
        data = require_mapping(data, "shard")
        shard_id = require_int(data, "id", "shard")
        raw_files = data.get("files")
        if not isinstance(raw_files, list):
            raise SchemaError(f"shard {shard_id} field 'files' must be a list")
        files = tuple(TestFile.from_dict(f) for f in raw_files)
        computed = cls.from_files(shard_id, files)
        return cls(
            id=shard_id,
            files=files,
            total_size=(
                require_int(data, "totalSize", "shard")
                if "totalSize" in data
                else computed.total_size
            ),
            estimated_duration=require_number(
                data, "estimatedDuration", "shard", default=computed.estimated_duration
            ),
        )


@dataclass(frozen=True)
class RunManifest:
    """Persisted shard plan for a run.

    Written once, before any task is launched, and never modified afterwards.
    The payload is a bare JSON array of shards; the run id comes from the key.

    Attributes:
        run_id: The run this plan belongs to.
        shards: Shards ordered by id.
        metadata: Store metadata attached to the manifest object (timestamp, framework, ...).
    """

    run_id: RunId
    shards: tuple[Shard, ...]
    metadata: Mapping[str, str] = field(default_factory=dict)

    @property
    def shard_count(self) -> int:
        """Return the number of shards."""
        return len(self.shards)

    @property
    def file_count(self) -> int:
        """Return the number of test files across all shards."""
        return sum(len(s.files) for s in self.shards)

    def get_shard(self, shard_id: int) -> Shard | None:
        """Find a shard by id."""
        if 0 <= shard_id < len(self.shards):
            return self.shards[shard_id]
        return None

    def to_payload(self) -> list[dict[str, Any]]:
        """Serialize to the ``shards.json`` payload."""
        return [s.to_dict() for s in self.shards]

    @classmethod
    def from_payload(
        cls, run_id: str, payload: Any, metadata: Mapping[str, str] | None = None
    ) -> RunManifest:
        """Deserialize and validate a ``shards.json`` payload.

        Args:
            run_id: Run id the manifest was read for.
            payload: Decoded JSON payload.
            metadata: Optional store metadata of the manifest object.

        Returns:
            A RunManifest with shards ordered by id.

        Raises:
            SchemaError: If the payload is not a non-empty list of shards with
                contiguous ids 0..K-1.
        """
        if not isinstance(payload, list):
            raise SchemaError(f"Manifest for {run_id} must be a JSON array of shards")
        if not payload:
            raise SchemaError(f"Manifest for {run_id} contains no shards")

        shards = sorted((Shard.from_dict(s) for s in payload), key=lambda s: s.id)
        ids = [s.id for s in shards]
        if ids != list(range(len(shards))):
            raise SchemaError(
                f"Manifest for {run_id} has non-contiguous shard ids: {ids}"
            )
        return cls(run_id=RunId(run_id), shards=tuple(shards), metadata=dict(metadata or {}))
