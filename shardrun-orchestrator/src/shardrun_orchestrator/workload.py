"""Workload packaging.

The workload is the test directory packed as a gzip-compressed tarball whose
single top-level entry is the directory itself (``e2e/...``). Workers extract
it before running their shard. ``node_modules`` trees are never packed;
workers install their own dependencies.
"""

from __future__ import annotations

import asyncio
import io
import logging
import tarfile
from pathlib import Path

from shardrun_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

EXCLUDED_DIRS = frozenset({"node_modules"})


def _exclude(info: tarfile.TarInfo) -> tarfile.TarInfo | None:
    if EXCLUDED_DIRS.intersection(Path(info.name).parts):
        return None
    return info


def pack_directory(directory: str | Path) -> bytes:
    """Pack a directory into an in-memory tar.gz archive.

    Args:
        directory: Directory to pack.

    Returns:
        The archive bytes.

    Raises:
        ConfigurationError: If directory does not exist or is not a directory.
    """
    root = Path(directory).expanduser().resolve()
    if not root.is_dir():
        raise ConfigurationError(f"Test directory not found: {directory}")

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        tar.add(str(root), arcname=root.name, filter=_exclude)
    data = buffer.getvalue()
    logger.debug("Packed %s into %d bytes", root, len(data))
    return data


async def pack_directory_async(directory: str | Path) -> bytes:
    """Pack a directory in a worker thread; see pack_directory()."""
    return await asyncio.to_thread(pack_directory, directory)
