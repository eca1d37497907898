"""Exception types for shardrun-core.

This module defines the exception hierarchy used throughout shardrun.
All shardrun exceptions inherit from ShardrunError, allowing consumers to catch
all framework-specific errors with a single except clause.

Exception hierarchy:
    ShardrunError (base)
    +-- ConfigurationError: Missing or invalid configuration / backend prerequisites
    +-- InvalidArgumentError: Invalid argument to a pure operation (e.g. shard count)
    +-- EmptyInputError: Nothing to operate on (e.g. no test files)
    +-- SchemaError: Malformed persisted payload
    +-- StoreError: Durable store unreachable or operation failed
    |   +-- ObjectNotFoundError: Key does not exist
    +-- BackendError: Compute backend call failed
    |   +-- LaunchError: Task creation failed
    +-- RunTimeoutError: Run exceeded its deadline
    +-- AggregationError: One or more shards produced no result
    +-- RunNotFoundError: No manifest persisted for a run id
    +-- CancelUnsupportedError: No task manifest persisted for a run id
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from shardrun_core.types.results import ShardResult


class ShardrunError(Exception):
    """Base exception for all shardrun errors."""


class ConfigurationError(ShardrunError):
    """Raised when configuration or backend prerequisites are missing or invalid.

    Always raised before any remote call is made.
    """


class InvalidArgumentError(ShardrunError, ValueError):
    """Raised for invalid arguments, such as a shard count below one."""


class EmptyInputError(ShardrunError, ValueError):
    """Raised when an operation receives an empty input it cannot work with."""


class SchemaError(ShardrunError):
    """Raised when a persisted payload does not match its expected schema."""


class StoreError(ShardrunError):
    """Raised when a durable store operation fails."""


class ObjectNotFoundError(StoreError):
    """Raised when a key does not exist in the durable store.

    Attributes:
        key: The missing key.
    """

    def __init__(self, key: str, message: str | None = None) -> None:
        super().__init__(message or f"Object not found: {key}")
        self.key = key


class BackendError(ShardrunError):
    """Raised when a compute backend call fails."""


class LaunchError(BackendError):
    """Raised when a task could not be created for a shard.

    Attributes:
        shard_id: The shard whose launch failed, if known.
    """

    def __init__(self, message: str, shard_id: int | None = None) -> None:
        super().__init__(message)
        self.shard_id = shard_id


class RunTimeoutError(ShardrunError):
    """Raised when a run exceeds its deadline.

    Attributes:
        deadline: The run deadline in seconds.
        active_tasks: Number of tasks still active when the deadline expired.
    """

    def __init__(self, deadline: float, active_tasks: int) -> None:
        super().__init__(
            f"Run exceeded deadline of {deadline:.1f}s with {active_tasks} task(s) still active"
        )
        self.deadline = deadline
        self.active_tasks = active_tasks


class AggregationError(ShardrunError):
    """Raised when one or more shards produced no result after retries.

    This is distinct from test failures: it means a shard's outcome is unknown.
    The results that could be read are carried on the exception.

    Attributes:
        missing_shards: Ids of the shards without a result, ascending.
        results: The results that were read successfully.
    """

    def __init__(self, missing_shards: Sequence[int], results: Sequence[ShardResult]) -> None:
        missing = sorted(missing_shards)
        label = ", ".join(str(s) for s in missing)
        super().__init__(f"Missing results for shard(s): {label}")
        self.missing_shards: tuple[int, ...] = tuple(missing)
        self.results: tuple[ShardResult, ...] = tuple(results)


class RunNotFoundError(ShardrunError):
    """Raised when no run manifest exists for a run id."""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id


class CancelUnsupportedError(ShardrunError):
    """Raised when a run has no persisted task manifest to cancel from."""

    def __init__(self, run_id: str) -> None:
        super().__init__(
            f"Cannot cancel {run_id}: no task manifest was persisted for this run"
        )
        self.run_id = run_id
