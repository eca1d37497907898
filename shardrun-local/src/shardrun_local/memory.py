"""In-memory durable store.

Holds every object in a dictionary and records each call, which makes it the
store of choice for tests and dry runs. Several stores (and stub backends)
can share one call log to observe the global order of operations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

from shardrun_core.errors import ObjectNotFoundError
from shardrun_core.store import BaseStore

logger = logging.getLogger(__name__)

# (operation, key) pairs, e.g. ("store.put_json", "runs/run-1/shards.json")
CallLog = list[tuple[str, str]]


@dataclass
class StoredObject:
    """One object held by MemoryStore."""

    data: bytes
    content_type: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


class MemoryStore(BaseStore):
    """DurableStore implementation backed by a dictionary.

    Args:
        name: Location reported to workers.
        calls: Optional shared call log; a new one is created if omitted.
    """

    def __init__(self, name: str = "memory", calls: CallLog | None = None) -> None:
        self._name = name
        self.objects: dict[str, StoredObject] = {}
        self.calls: CallLog = calls if calls is not None else []
        self.container_created = False
        self._errors: dict[tuple[str, str], BaseException] = {}

    @property
    def location(self) -> str:
        return self._name

    def inject_error(self, operation: str, key: str, error: BaseException) -> None:
        """Make every call of operation on key raise error.

        Args:
            operation: Method name, e.g. ``put_blob`` or ``get_blob``.
            key: Object key, or ``*`` for any key.
            error: Exception to raise.
        """
        self._errors[(operation, key)] = error

    def clear_errors(self) -> None:
        """Remove all injected errors."""
        self._errors.clear()

    def _record(self, operation: str, key: str) -> None:
        self.calls.append((f"store.{operation}", key))
        error = self._errors.get((operation, key)) or self._errors.get((operation, "*"))
        if error is not None:
            raise error

    async def ensure_container_exists(self) -> None:
        self._record("ensure_container_exists", self._name)
        self.container_created = True

    async def put_blob(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        self._record("put_blob", key)
        self.objects[key] = StoredObject(bytes(data), content_type, dict(metadata or {}))
        logger.debug("Stored %s (%d bytes)", key, len(data))

    async def put_json(
        self, key: str, payload: object, *, metadata: Mapping[str, str] | None = None
    ) -> None:
        self._record("put_json", key)
        await super().put_json(key, payload, metadata=metadata)

    async def get_blob(self, key: str) -> bytes:
        self._record("get_blob", key)
        try:
            return self.objects[key].data
        except KeyError:
            raise ObjectNotFoundError(key) from None

    async def list_keys(self, prefix: str) -> list[str]:
        self._record("list_keys", prefix)
        return sorted(k for k in self.objects if k.startswith(prefix))

    async def get_metadata(self, key: str) -> dict[str, str]:
        self._record("get_metadata", key)
        if key not in self.objects:
            raise ObjectNotFoundError(key)
        return dict(self.objects[key].metadata)
