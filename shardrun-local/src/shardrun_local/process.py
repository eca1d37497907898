"""Local process compute backend.

Runs one OS process per shard with the worker environment, which is enough
to exercise a real worker against a FileSystemStore on a single machine.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import IO, Sequence

from shardrun_core.cost import FREE_PRICING, ResourcePricing
from shardrun_core.errors import BackendError, ConfigurationError, LaunchError
from shardrun_core.types.common import TaskId
from shardrun_core.types.tasks import LaunchSpec, TaskDescription, TaskHandle, TaskState

logger = logging.getLogger(__name__)


class LocalProcessBackend:
    """ComputeBackend that runs each shard as a local subprocess.

    describe() reports an exited task once and then drops it, so a long-lived
    backend does not keep finished processes or their logs around.

    Args:
        command: Worker command line; the worker reads its shard from the
            environment (RUN_ID, SHARD_ID, S3_BUCKET, ...).
        log_dir: Directory for per-shard stdout/stderr logs, or None to discard.
        stop_grace: Seconds between SIGTERM and SIGKILL when stopping.
        region: Region reported in the task manifest.
    """

    def __init__(
        self,
        command: Sequence[str],
        log_dir: str | Path | None = None,
        stop_grace: float = 5.0,
        region: str = "local",
    ) -> None:
        self._command = list(command)
        self._log_dir = Path(log_dir) if log_dir is not None else None
        self._stop_grace = stop_grace
        self._region = region
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._shards: dict[str, int] = {}
        self._logs: dict[str, IO[bytes]] = {}

    @property
    def name(self) -> str:
        return "local"

    @property
    def cluster(self) -> str:
        return "local"

    @property
    def region(self) -> str:
        return self._region

    @property
    def pricing(self) -> ResourcePricing:
        return FREE_PRICING

    def check_prerequisites(self) -> None:
        if not self._command:
            raise ConfigurationError("Local backend requires a worker command")
        if shutil.which(self._command[0]) is None:
            raise ConfigurationError(f"Worker command not found: {self._command[0]}")

    async def launch(self, spec: LaunchSpec) -> TaskHandle:
        env = {**os.environ, **spec.environment()}
        output: IO[bytes] | int = asyncio.subprocess.DEVNULL
        log = None
        if self._log_dir is not None:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            log = open(self._log_dir / f"{spec.run_id}-shard-{spec.shard_id}.log", "wb")
            output = log
        try:
            process = await asyncio.create_subprocess_exec(
                *self._command,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=output,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            if log is not None:
                log.close()
            raise LaunchError(
                f"Failed to start worker for shard {spec.shard_id}: {e}", spec.shard_id
            ) from e

        task_id = f"local/{spec.run_id}/{spec.shard_id}/{process.pid}"
        self._processes[task_id] = process
        self._shards[task_id] = spec.shard_id
        if log is not None:
            self._logs[task_id] = log
        logger.info("Started worker for shard %d (pid %d)", spec.shard_id, process.pid)
        return TaskHandle(task_id=TaskId(task_id), shard_id=spec.shard_id)

    async def describe(self, handles: Sequence[TaskHandle]) -> list[TaskDescription]:
        descriptions = []
        for handle in handles:
            process = self._processes.get(handle.task_id)
            if process is None:
                continue
            code = process.returncode
            state = TaskState.RUNNING if code is None else TaskState.STOPPED
            descriptions.append(
                TaskDescription(
                    handle=TaskHandle(handle.task_id, self._shards[handle.task_id]),
                    state=state,
                    exit_code=code,
                    status=state.value.upper(),
                )
            )
            if code is not None:
                # Exit reported once; later lookups treat the task as unknown
                self._forget(handle.task_id)
        return descriptions

    async def stop(self, handle: TaskHandle, reason: str) -> None:
        process = self._processes.get(handle.task_id)
        if process is None:
            return
        if process.returncode is not None:
            self._forget(handle.task_id)
            return
        logger.info("Stopping %s: %s", handle.task_id, reason)
        try:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self._stop_grace)
            except asyncio.TimeoutError:
                logger.warning("Worker %s ignored SIGTERM, killing", handle.task_id)
                process.kill()
                await process.wait()
        except ProcessLookupError:
            pass
        except OSError as e:
            raise BackendError(f"Failed to stop {handle.task_id}: {e}") from e
        finally:
            self._forget(handle.task_id)

    def _forget(self, task_id: str) -> None:
        self._processes.pop(task_id, None)
        self._shards.pop(task_id, None)
        log = self._logs.pop(task_id, None)
        if log is not None:
            log.close()
