"""Protocol-based interface definitions for shardrun.

These interfaces decouple the orchestration engine from the concrete storage
and compute services, so that several implementations can be selected by
configuration.

Interfaces:
    DurableStore: Key/blob object storage (S3, filesystem, in-memory).
    ComputeBackend: Remote task execution (ECS, local processes, stub).
"""

from shardrun_core.interfaces.backend import ComputeBackend
from shardrun_core.interfaces.store import DurableStore

__all__ = [
    "ComputeBackend",
    "DurableStore",
]
