"""Store and backend construction from configuration.

The orchestrator, reconciler and cancel coordinator only see the
DurableStore and ComputeBackend protocols; this module is the one place that
maps configuration names to implementations.

Backends:
    ecs: EcsBackend (shardrun-aws)
    local: LocalProcessBackend (shardrun-local)
    stub: StubBackend (shardrun-local); every task succeeds without running

Stores:
    s3: S3Store (shardrun-aws)
    filesystem: FileSystemStore (shardrun-local)
"""

from __future__ import annotations

import logging
from typing import Callable

from shardrun_core.errors import ConfigurationError
from shardrun_core.interfaces import ComputeBackend, DurableStore

from shardrun_orchestrator.config import ShardrunConfig

logger = logging.getLogger(__name__)

# Builds a backend for the (cluster, region) recorded in a task manifest
BackendFactory = Callable[[str, str], ComputeBackend]


def create_store(config: ShardrunConfig) -> DurableStore:
    """Create the durable store selected by config.

    Raises:
        ConfigurationError: If the storage type is unknown.
    """
    if config.storage.type == "s3":
        from shardrun_aws.s3 import S3Store

        return S3Store(bucket=config.storage.bucket, region=config.aws.region)
    if config.storage.type == "filesystem":
        from shardrun_local.filesystem import FileSystemStore

        return FileSystemStore(config.storage.root)
    raise ConfigurationError(f"Unknown storage type: {config.storage.type}")


def create_backend(
    config: ShardrunConfig, cluster: str | None = None, region: str | None = None
) -> ComputeBackend:
    """Create the compute backend selected by config.

    Args:
        config: Configuration.
        cluster: Cluster override, e.g. from a persisted task manifest.
        region: Region override, e.g. from a persisted task manifest.

    Raises:
        ConfigurationError: If the backend name is unknown.
    """
    if config.backend == "ecs":
        from shardrun_aws.ecs import EcsBackend

        return EcsBackend(
            cluster=cluster or config.aws.cluster,
            region=region or config.aws.region,
            task_definition=config.aws.task_definition,
            subnets=config.aws.subnets,
            security_groups=config.aws.security_groups,
            container_name=config.aws.container_name,
            assign_public_ip=config.aws.assign_public_ip,
        )
    if config.backend == "local":
        from shardrun_local.process import LocalProcessBackend

        return LocalProcessBackend(command=config.local.command, log_dir=config.local.log_dir)
    if config.backend == "stub":
        from shardrun_local.stub import StubBackend

        return StubBackend()
    raise ConfigurationError(f"Unknown backend: {config.backend}")


def backend_factory_from_config(config: ShardrunConfig) -> BackendFactory:
    """Return a factory building backends for persisted task manifests."""

    def factory(cluster: str, region: str) -> ComputeBackend:
        logger.debug("Creating %s backend for %s/%s", config.backend, cluster, region)
        return create_backend(config, cluster=cluster, region=region)

    return factory
