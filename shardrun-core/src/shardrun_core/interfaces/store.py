"""Durable store interface.

The durable store is the coordination medium of a run and the source of
truth for manifests and results. Keys are ``/``-separated paths; see
``shardrun_core.layout`` for the persisted layout.

Protocols:
    DurableStore: Key/blob object storage.
"""

# pylint: disable=unnecessary-ellipsis  # Ellipsis required for Protocol method stubs

from __future__ import annotations

from typing import Any, Mapping, Protocol


class DurableStore(Protocol):
    """Protocol for key/blob object storage.

    Implementations must be safe to share between concurrent runs; every
    run's keys are namespaced by its run id. All failures other than a
    missing key are raised as StoreError.
    """

    @property
    def location(self) -> str:
        """Return the store location handed to workers (bucket name or root path)."""
        ...

    async def ensure_container_exists(self) -> None:
        """Create the bucket/root if it does not exist. Idempotent.

        Raises:
            StoreError: If the container cannot be checked or created.
        """
        ...

    async def put_blob(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        """Write a blob, replacing any existing object at key.

        Raises:
            StoreError: If the write fails.
        """
        ...

    async def get_blob(self, key: str) -> bytes:
        """Read a blob.

        Raises:
            ObjectNotFoundError: If the key does not exist.
            StoreError: If the read fails.
        """
        ...

    async def put_json(
        self, key: str, payload: Any, *, metadata: Mapping[str, str] | None = None
    ) -> None:
        """Write a JSON document.

        Raises:
            StoreError: If the write fails.
        """
        ...

    async def get_json(self, key: str) -> Any:
        """Read and decode a JSON document.

        Raises:
            ObjectNotFoundError: If the key does not exist.
            SchemaError: If the object is not valid JSON.
            StoreError: If the read fails.
        """
        ...

    async def list_keys(self, prefix: str) -> list[str]:
        """List keys starting with prefix, in lexicographic order.

        Raises:
            StoreError: If listing fails.
        """
        ...

    async def get_metadata(self, key: str) -> dict[str, str]:
        """Return the user metadata attached to an object.

        Raises:
            ObjectNotFoundError: If the key does not exist.
            StoreError: If the lookup fails.
        """
        ...
