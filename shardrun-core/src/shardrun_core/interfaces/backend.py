"""Compute backend interface.

A compute backend launches, describes and stops opaque remote execution
units ("tasks"), one per shard. Placement is entirely the backend's concern.

Protocols:
    ComputeBackend: Pluggable remote execution.
"""

# pylint: disable=unnecessary-ellipsis  # Ellipsis required for Protocol method stubs

from __future__ import annotations

from typing import Protocol, Sequence

from shardrun_core.cost import ResourcePricing
from shardrun_core.types.tasks import LaunchSpec, TaskDescription, TaskHandle


class ComputeBackend(Protocol):
    """Protocol for launching and supervising worker tasks.

    Every launched task must carry the tags from ``LaunchSpec.tags()`` (or an
    equivalent) so that ``describe`` can report the shard id of each task.
    """

    @property
    def name(self) -> str:
        """Return the backend name (e.g. ``ecs``)."""
        ...

    @property
    def cluster(self) -> str:
        """Return the placement scope recorded in the task manifest."""
        ...

    @property
    def region(self) -> str:
        """Return the region recorded in the task manifest."""
        ...

    @property
    def pricing(self) -> ResourcePricing:
        """Return the unit prices used for cost estimates."""
        ...

    def check_prerequisites(self) -> None:
        """Validate local configuration before any remote call.

        Raises:
            ConfigurationError: If a prerequisite is missing.
        """
        ...

    async def launch(self, spec: LaunchSpec) -> TaskHandle:
        """Launch the worker task for one shard.

        Raises:
            LaunchError: If the task could not be created.
        """
        ...

    async def describe(self, handles: Sequence[TaskHandle]) -> list[TaskDescription]:
        """Describe tasks.

        Tasks the backend no longer knows about are omitted from the result.

        Raises:
            BackendError: If the backend cannot be queried.
        """
        ...

    async def stop(self, handle: TaskHandle, reason: str) -> None:
        """Stop a task. Stopping an already-stopped task is not an error.

        Raises:
            BackendError: If the stop request fails.
        """
        ...
