"""Persisted key layout and run identifiers.

Layout (stable; workers depend on it):

    runs/<runId>/test-code.tar.gz          workload blob
    runs/<runId>/shards.json               RunManifest, written once
    runs/<runId>/tasks.json                TaskManifest
    runs/<runId>/results/shard-<id>.json   one ShardResult per shard

Run ids are ``run-<millisecond-epoch>-<6 hex chars>``. Ids without the random
suffix (``run-<ms>``) are still accepted when reading.
"""

from __future__ import annotations

import re
import secrets
import time

from shardrun_core.errors import InvalidArgumentError
from shardrun_core.types.common import RunId

RUNS_PREFIX = "runs"
WORKLOAD_NAME = "test-code.tar.gz"
MANIFEST_NAME = "shards.json"
TASKS_NAME = "tasks.json"
RESULTS_DIR = "results"

_RUN_ID_RE = re.compile(r"^run-(\d+)(?:-([0-9a-f]+))?$")
_RESULT_NAME_RE = re.compile(r"^shard-(\d+)\.json$")


def generate_run_id(now_ms: int | None = None) -> RunId:
    """Generate a collision-resistant run id.

    Args:
        now_ms: Millisecond epoch to use instead of the current time.

    Returns:
        A run id like ``run-1707600000000-3fa9c1``.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return RunId(f"run-{now_ms}-{secrets.token_hex(3)}")


def validate_run_id(run_id: str) -> RunId:
    """Check that run_id is well-formed.

    Raises:
        InvalidArgumentError: If the id does not match ``run-<ms>[-<hex>]``.
    """
    if not _RUN_ID_RE.match(run_id):
        raise InvalidArgumentError(
            f"Invalid run id {run_id!r}; run ids look like run-1707600000000-3fa9c1"
        )
    return RunId(run_id)


def run_timestamp_ms(run_id: str) -> int | None:
    """Return the millisecond timestamp embedded in a run id, if any."""
    match = _RUN_ID_RE.match(run_id)
    return int(match.group(1)) if match else None


def run_prefix(run_id: str) -> str:
    """Return the key prefix of everything belonging to a run."""
    return f"{RUNS_PREFIX}/{run_id}/"


def workload_key(run_id: str) -> str:
    """Return the key of the workload blob."""
    return f"{RUNS_PREFIX}/{run_id}/{WORKLOAD_NAME}"


def manifest_key(run_id: str) -> str:
    """Return the key of the shard manifest."""
    return f"{RUNS_PREFIX}/{run_id}/{MANIFEST_NAME}"


def tasks_key(run_id: str) -> str:
    """Return the key of the task manifest."""
    return f"{RUNS_PREFIX}/{run_id}/{TASKS_NAME}"


def results_prefix(run_id: str) -> str:
    """Return the key prefix of the shard results."""
    return f"{RUNS_PREFIX}/{run_id}/{RESULTS_DIR}/"


def result_key(run_id: str, shard_id: int) -> str:
    """Return the key of one shard's result."""
    return f"{results_prefix(run_id)}shard-{shard_id}.json"


def shard_id_from_result_key(key: str) -> int | None:
    """Return the shard id encoded in a result key, or None if key is not a result."""
    match = _RESULT_NAME_RE.match(key.rsplit("/", 1)[-1])
    return int(match.group(1)) if match else None
