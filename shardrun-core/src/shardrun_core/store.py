"""Shared base class for DurableStore implementations.

Concrete stores implement the blob primitives; JSON encoding, decoding and
its error mapping live here so that every store reads and writes the same
bytes.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Mapping

from shardrun_core.errors import SchemaError

JSON_CONTENT_TYPE = "application/json"
GZIP_CONTENT_TYPE = "application/gzip"


def encode_json(payload: Any) -> bytes:
    """Encode a payload the way every shardrun store writes JSON."""
    return json.dumps(payload, indent=2).encode("utf-8")


def decode_json(data: bytes, key: str) -> Any:
    """Decode a JSON document read from key.

    Raises:
        SchemaError: If the bytes are not valid UTF-8 JSON.
    """
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SchemaError(f"Object {key} is not valid JSON: {e}") from e


class BaseStore(ABC):
    """Base class implementing the JSON half of the DurableStore protocol."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Return the store location handed to workers."""

    @abstractmethod
    async def ensure_container_exists(self) -> None:
        """Create the bucket/root if needed."""

    @abstractmethod
    async def put_blob(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        """Write a blob."""

    @abstractmethod
    async def get_blob(self, key: str) -> bytes:
        """Read a blob."""

    @abstractmethod
    async def list_keys(self, prefix: str) -> list[str]:
        """List keys under prefix."""

    @abstractmethod
    async def get_metadata(self, key: str) -> dict[str, str]:
        """Return object metadata."""

    async def put_json(
        self, key: str, payload: Any, *, metadata: Mapping[str, str] | None = None
    ) -> None:
        """Write a JSON document (2-space indented, UTF-8)."""
        await self.put_blob(
            key, encode_json(payload), content_type=JSON_CONTENT_TYPE, metadata=metadata
        )

    async def get_json(self, key: str) -> Any:
        """Read and decode a JSON document."""
        return decode_json(await self.get_blob(key), key)
