"""Local stores and compute backends for shardrun.

Provides implementations of the shardrun-core interfaces that need no cloud
account:

    - MemoryStore: DurableStore backed by a dictionary, with a call log.
    - FileSystemStore: DurableStore over a local directory.
    - StubBackend: ComputeBackend following scripted task lifecycles.
    - LocalProcessBackend: ComputeBackend running one subprocess per shard.
"""

from shardrun_local.filesystem import FileSystemStore
from shardrun_local.memory import CallLog, MemoryStore
from shardrun_local.process import LocalProcessBackend
from shardrun_local.stub import StubBackend, StubFailures, TaskScript

__all__ = [
    "CallLog",
    "FileSystemStore",
    "LocalProcessBackend",
    "MemoryStore",
    "StubBackend",
    "StubFailures",
    "TaskScript",
]
