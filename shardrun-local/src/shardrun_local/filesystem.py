"""Filesystem durable store.

Objects are plain files under a root directory, so that the persisted layout
can be inspected with ordinary tools:

    {root}/runs/<runId>/shards.json
    {root}/runs/<runId>/results/shard-0.json
    {root}/.metadata/runs/<runId>/shards.json     (object metadata, JSON)

Blocking file I/O runs in a worker thread via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import Mapping

from shardrun_core.errors import ObjectNotFoundError, StoreError
from shardrun_core.store import BaseStore

logger = logging.getLogger(__name__)

METADATA_DIR = ".metadata"


class FileSystemStore(BaseStore):
    """DurableStore implementation over a local directory.

    Args:
        root: Root directory; created by ``ensure_container_exists``.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser().resolve()

    @property
    def location(self) -> str:
        return str(self._root)

    @property
    def root(self) -> Path:
        """Return the root directory."""
        return self._root

    def _path(self, key: str, base: Path | None = None) -> Path:
        parts = PurePosixPath(key).parts
        if not parts or key.startswith("/") or ".." in parts or parts[0] == METADATA_DIR:
            raise StoreError(f"Invalid object key: {key!r}")
        return (base or self._root).joinpath(*parts)

    def _metadata_path(self, key: str) -> Path:
        return self._path(key, self._root / METADATA_DIR)

    async def ensure_container_exists(self) -> None:
        try:
            await asyncio.to_thread(self._root.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create store root {self._root}: {e}") from e

    async def put_blob(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        path = self._path(key)
        meta = dict(metadata or {})
        if content_type:
            meta.setdefault("content-type", content_type)
        try:
            await asyncio.to_thread(_write_atomic, path, data)
            await asyncio.to_thread(
                _write_atomic, self._metadata_path(key), json.dumps(meta).encode("utf-8")
            )
        except OSError as e:
            raise StoreError(f"Failed to write {key}: {e}") from e
        logger.debug("Wrote %s (%d bytes)", path, len(data))

    async def get_blob(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise ObjectNotFoundError(key) from None
        except OSError as e:
            raise StoreError(f"Failed to read {key}: {e}") from e

    async def list_keys(self, prefix: str) -> list[str]:
        try:
            return await asyncio.to_thread(self._list_keys, prefix)
        except OSError as e:
            raise StoreError(f"Failed to list {prefix}: {e}") from e

    def _list_keys(self, prefix: str) -> list[str]:
        # Walk only the deepest directory fully contained in the prefix
        directory = prefix.rsplit("/", 1)[0] if "/" in prefix else ""
        start = self._root.joinpath(*PurePosixPath(directory).parts) if directory else self._root
        if not start.is_dir():
            return []
        keys = []
        for path in start.rglob("*"):
            if not path.is_file():
                continue
            key = path.relative_to(self._root).as_posix()
            if key.startswith(METADATA_DIR + "/") or path.name.startswith(".tmp-"):
                continue
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    async def get_metadata(self, key: str) -> dict[str, str]:
        if not await asyncio.to_thread(self._path(key).is_file):
            raise ObjectNotFoundError(key)
        try:
            raw = await asyncio.to_thread(self._metadata_path(key).read_bytes)
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StoreError(f"Failed to read metadata of {key}: {e}") from e
        try:
            meta = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise StoreError(f"Corrupt metadata for {key}: {e}") from e
        if not isinstance(meta, dict):
            raise StoreError(f"Corrupt metadata for {key}: not a JSON object")
        return {str(k): str(v) for k, v in meta.items()}


def _write_atomic(path: Path, data: bytes) -> None:
    """Write data to path through a temporary file and a rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
