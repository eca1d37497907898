"""Configuration loading for shardrun.

A config file describes where tests live, how big each worker is, which
compute backend and durable store to use, and how the orchestrator polls.
Every section is optional; missing keys take the defaults below. Keys may be
written in snake_case or in the camelCase used by older config files
(``taskDefinition``, ``securityGroups``, ``retentionDays``).

Example YAML:
    version: 1
    backend: ecs

    aws:
      region: "eu-west-1"
      cluster: "shardrun-cluster"
      task_definition: "shardrun-runner"
      subnets: ["subnet-0a1b2c"]
      security_groups: ["sg-0d4e5f"]

    tests:
      directory: "./e2e"
      framework: playwright

    execution:
      cpu: 1024
      memory: 2048
      timeout: 30          # minutes per run, before the safety multiplier
      parallel: 10
      strategy: duration-balanced

    storage:
      type: s3
      bucket: "shardrun-storage"

    orchestrator:
      poll_interval: 5
"""

from __future__ import annotations

import logging
import os
import shlex
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from shardrun_core.errors import ConfigurationError, InvalidArgumentError
from shardrun_core.sharding import ShardStrategy
from shardrun_core.types.common import TestFramework
from shardrun_core.types.tasks import ResourceSpec

logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = (".shardrun.yml", ".shardrun.yaml", "shardrun.yml", "shardrun.yaml")

BACKENDS = ("ecs", "local", "stub")
STORE_TYPES = ("s3", "filesystem")


def _default_region() -> str:
    return os.environ.get("AWS_REGION", "us-east-1")


@dataclass(frozen=True)
class AwsConfig:
    """AWS placement for the ECS backend and S3 store.

    Attributes:
        region: AWS region of the cluster and bucket.
        cluster: ECS cluster name.
        task_definition: Worker task definition.
        subnets: Subnets for the task network configuration.
        security_groups: Security groups for the tasks.
        container_name: Worker container name inside the task definition.
        assign_public_ip: Whether tasks get a public IP.
    """

    region: str = field(default_factory=_default_region)
    cluster: str = "shardrun-cluster"
    task_definition: str = "shardrun-runner"
    subnets: tuple[str, ...] = ()
    security_groups: tuple[str, ...] = ()
    container_name: str = "shardrun-worker"
    assign_public_ip: bool = True


@dataclass(frozen=True)
class TestsConfig:
    """Where the tests live.

    Attributes:
        directory: Test directory, packed as the workload.
        framework: Test framework the worker drives.
        pattern: Glob overriding the framework's default patterns; empty for defaults.
        exclude: Extra glob patterns to exclude from discovery.
    """

    directory: str = "./e2e"
    framework: TestFramework = TestFramework.PLAYWRIGHT
    pattern: str = ""
    exclude: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExecutionConfig:
    """Worker size and run limits.

    Attributes:
        cpu: CPU units per worker (1024 = 1 vCPU).
        memory: Memory per worker in MiB.
        timeout: Run timeout in minutes; the orchestrator applies its safety
            multiplier on top.
        parallel: Maximum number of shards.
        strategy: Shard planning strategy.
    """

    cpu: int = 1024
    memory: int = 2048
    timeout: float = 30
    parallel: int = 10
    strategy: str = ShardStrategy.DURATION_BALANCED.value

    @property
    def timeout_seconds(self) -> float:
        """Return the run timeout in seconds."""
        return self.timeout * 60

    @property
    def resources(self) -> ResourceSpec:
        """Return the worker size."""
        return ResourceSpec(cpu=self.cpu, memory=self.memory)


@dataclass(frozen=True)
class StorageConfig:
    """Durable store selection.

    Attributes:
        type: ``s3`` or ``filesystem``.
        bucket: S3 bucket name.
        root: Root directory of the filesystem store.
        retention_days: Informational retention period of run artifacts.
    """

    type: str = "s3"
    bucket: str = "shardrun-storage"
    root: str = "./.shardrun/store"
    retention_days: int = 30


@dataclass(frozen=True)
class LocalConfig:
    """Local process backend settings.

    Attributes:
        command: Worker command line run once per shard.
        log_dir: Directory for per-shard worker logs.
    """

    command: tuple[str, ...] = ()
    log_dir: str | None = None


@dataclass(frozen=True)
class OrchestratorConfig:
    """Run supervision settings.

    Attributes:
        poll_interval: Seconds between describe calls.
        launch_delay: Seconds between task launches.
        timeout_multiplier: Safety multiplier applied to the run timeout.
        result_attempts: Attempts per shard result fetch.
        result_base_delay: First result-fetch backoff in seconds.
        result_max_delay: Cap of the result-fetch backoff in seconds.
    """

    poll_interval: float = 5.0
    launch_delay: float = 0.1
    timeout_multiplier: float = 1.5
    result_attempts: int = 3
    result_base_delay: float = 1.0
    result_max_delay: float = 30.0


@dataclass(frozen=True)
class ShardrunConfig:
    """Complete shardrun configuration.

    Attributes:
        version: Config file format version.
        backend: Compute backend name (``ecs``, ``local`` or ``stub``).
        aws: AWS settings.
        tests: Test location settings.
        execution: Worker size and run limits.
        storage: Durable store settings.
        local: Local process backend settings.
        orchestrator: Run supervision settings.
    """

    version: int = 1
    backend: str = "ecs"
    aws: AwsConfig = field(default_factory=AwsConfig)
    tests: TestsConfig = field(default_factory=TestsConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    local: LocalConfig = field(default_factory=LocalConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)

    def validate(self) -> list[str]:
        """Return a list of configuration problems; empty if valid."""
        errors: list[str] = []
        if self.backend not in BACKENDS:
            errors.append(f"Unknown backend {self.backend!r} (choose from: {', '.join(BACKENDS)})")
        if self.storage.type not in STORE_TYPES:
            errors.append(
                f"Unknown storage type {self.storage.type!r} "
                f"(choose from: {', '.join(STORE_TYPES)})"
            )
        if (self.backend == "ecs" or self.storage.type == "s3") and not self.aws.region:
            errors.append("AWS region is required")
        if self.backend == "ecs" and not self.aws.cluster:
            errors.append("ECS cluster name is required")
        if self.storage.type == "s3" and not self.storage.bucket:
            errors.append("S3 bucket is required")
        if self.storage.type == "filesystem" and not self.storage.root:
            errors.append("Filesystem store root is required")
        if self.backend == "local" and not self.local.command:
            errors.append("Local backend requires local.command")
        if self.execution.cpu < 256:
            errors.append("CPU must be at least 256")
        if self.execution.memory < 512:
            errors.append("Memory must be at least 512")
        if self.execution.timeout <= 0:
            errors.append("Timeout must be positive")
        if self.execution.parallel < 1:
            errors.append("Parallel must be at least 1")
        try:
            ShardStrategy.parse(self.execution.strategy)
        except InvalidArgumentError as e:
            errors.append(str(e))
        if self.orchestrator.poll_interval <= 0:
            errors.append("Poll interval must be positive")
        if self.orchestrator.result_attempts < 1:
            errors.append("Result attempts must be at least 1")
        return errors

    def require_valid(self) -> ShardrunConfig:
        """Return self if valid.

        Raises:
            ConfigurationError: Listing every problem found by validate().
        """
        errors = self.validate()
        if errors:
            raise ConfigurationError("Invalid configuration:\n  - " + "\n  - ".join(errors))
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary suitable for YAML."""
        data = asdict(self)
        data["tests"]["framework"] = self.tests.framework.value
        for section in data.values():
            if isinstance(section, dict):
                for key, value in section.items():
                    if isinstance(value, tuple):
                        section[key] = list(value)
        return data


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, Mapping):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return section


def _get(section: Mapping[str, Any], key: str, default: Any, alias: str | None = None) -> Any:
    if key in section:
        return section[key]
    if alias is not None and alias in section:
        return section[alias]
    return default


def _str_tuple(value: Any, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)):
        raise ConfigurationError(f"{where} must be a list of strings")
    return tuple(str(v) for v in value)


def _number(value: Any, where: str, kind: type = float) -> Any:
    if isinstance(value, bool):
        raise ConfigurationError(f"{where} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{where} must be a number, got {value!r}") from e


def config_from_dict(data: Mapping[str, Any]) -> ShardrunConfig:
    """Build a ShardrunConfig from parsed YAML.

    Args:
        data: Parsed YAML mapping.

    Returns:
        The configuration, with defaults for everything missing.

    Raises:
        ConfigurationError: If a section or value has the wrong type.
    """
    aws = _section(data, "aws")
    tests = _section(data, "tests")
    execution = _section(data, "execution")
    storage = _section(data, "storage")
    local = _section(data, "local")
    orchestrator = _section(data, "orchestrator")

    defaults = OrchestratorConfig()
    framework_name = str(_get(tests, "framework", TestFramework.PLAYWRIGHT.value)).lower()
    try:
        framework = TestFramework(framework_name)
    except ValueError as e:
        choices = ", ".join(f.value for f in TestFramework)
        raise ConfigurationError(
            f"Unknown test framework {framework_name!r} (choose from: {choices})"
        ) from e

    command = _get(local, "command", ())
    if isinstance(command, str):
        command = tuple(shlex.split(command))
    else:
        command = _str_tuple(command, "local.command")

    return ShardrunConfig(
        version=_number(data.get("version", 1), "version", int),
        backend=str(data.get("backend", "ecs")).lower(),
        aws=AwsConfig(
            region=str(_get(aws, "region", _default_region())),
            cluster=str(_get(aws, "cluster", AwsConfig.cluster)),
            task_definition=str(
                _get(aws, "task_definition", AwsConfig.task_definition, "taskDefinition")
            ),
            subnets=_str_tuple(_get(aws, "subnets", ()), "aws.subnets"),
            security_groups=_str_tuple(
                _get(aws, "security_groups", (), "securityGroups"), "aws.security_groups"
            ),
            container_name=str(
                _get(aws, "container_name", AwsConfig.container_name, "containerName")
            ),
            assign_public_ip=bool(
                _get(aws, "assign_public_ip", AwsConfig.assign_public_ip, "assignPublicIp")
            ),
        ),
        tests=TestsConfig(
            directory=str(_get(tests, "directory", TestsConfig.directory)),
            framework=framework,
            pattern=str(_get(tests, "pattern", "") or ""),
            exclude=_str_tuple(_get(tests, "exclude", ()), "tests.exclude"),
        ),
        execution=ExecutionConfig(
            cpu=_number(_get(execution, "cpu", ExecutionConfig.cpu), "execution.cpu", int),
            memory=_number(
                _get(execution, "memory", ExecutionConfig.memory), "execution.memory", int
            ),
            timeout=_number(
                _get(execution, "timeout", ExecutionConfig.timeout), "execution.timeout"
            ),
            parallel=_number(
                _get(execution, "parallel", ExecutionConfig.parallel), "execution.parallel", int
            ),
            strategy=str(_get(execution, "strategy", ExecutionConfig.strategy)),
        ),
        storage=StorageConfig(
            type=str(_get(storage, "type", StorageConfig.type)).lower(),
            bucket=str(_get(storage, "bucket", StorageConfig.bucket)),
            root=str(_get(storage, "root", StorageConfig.root)),
            retention_days=_number(
                _get(storage, "retention_days", StorageConfig.retention_days, "retentionDays"),
                "storage.retention_days",
                int,
            ),
        ),
        local=LocalConfig(
            command=command,
            log_dir=_get(local, "log_dir", None, "logDir"),
        ),
        orchestrator=OrchestratorConfig(
            poll_interval=_number(
                _get(orchestrator, "poll_interval", defaults.poll_interval, "pollInterval"),
                "orchestrator.poll_interval",
            ),
            launch_delay=_number(
                _get(orchestrator, "launch_delay", defaults.launch_delay, "launchDelay"),
                "orchestrator.launch_delay",
            ),
            timeout_multiplier=_number(
                _get(
                    orchestrator,
                    "timeout_multiplier",
                    defaults.timeout_multiplier,
                    "timeoutMultiplier",
                ),
                "orchestrator.timeout_multiplier",
            ),
            result_attempts=_number(
                _get(orchestrator, "result_attempts", defaults.result_attempts, "resultAttempts"),
                "orchestrator.result_attempts",
                int,
            ),
            result_base_delay=_number(
                _get(orchestrator, "result_base_delay", defaults.result_base_delay),
                "orchestrator.result_base_delay",
            ),
            result_max_delay=_number(
                _get(orchestrator, "result_max_delay", defaults.result_max_delay),
                "orchestrator.result_max_delay",
            ),
        ),
    )


def find_config_file(directory: str | Path = ".") -> Path | None:
    """Return the first config file found in directory, or None."""
    base = Path(directory)
    for name in CONFIG_FILE_NAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def load_config(path: str | Path | None = None) -> ShardrunConfig:
    """Load configuration from a YAML file.

    Args:
        path: Config file path. If None, the current directory is searched
            for one of CONFIG_FILE_NAMES.

    Returns:
        Parsed ShardrunConfig (not yet validated; see require_valid()).

    Raises:
        ConfigurationError: If the file is missing, unreadable, or malformed.
    """
    if path is None:
        path = find_config_file()
        if path is None:
            raise ConfigurationError(
                "No config file found (looked for "
                + ", ".join(CONFIG_FILE_NAMES)
                + "). Run 'shardrun init' to create one."
            )
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse config {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read config {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {path} must be a YAML mapping")

    logger.debug("Loaded config from %s", path)
    return config_from_dict(data)


def save_config(path: str | Path, config: ShardrunConfig, force: bool = False) -> None:
    """Write a config file.

    Raises:
        ConfigurationError: If the file exists and force is False.
    """
    path = Path(path)
    if path.exists() and not force:
        raise ConfigurationError(f"Config file already exists: {path} (use --force to overwrite)")
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
