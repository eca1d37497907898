"""Run orchestration for shardrun.

This package drives test runs over a compute backend and a durable store:
it discovers test files, shards them, launches one task per shard, follows
the tasks and aggregates their results. It also builds status snapshots and
cancels runs from their persisted artifacts.

Example:
    shardrun --config .shardrun.yml run --shards 8
"""

from shardrun_orchestrator.backends import (
    BackendFactory,
    backend_factory_from_config,
    create_backend,
    create_store,
)
from shardrun_orchestrator.cancel import CancelCoordinator, CancelReport
from shardrun_orchestrator.config import (
    ShardrunConfig,
    config_from_dict,
    find_config_file,
    load_config,
    save_config,
)
from shardrun_orchestrator.discovery import DiscoveryResult, discover
from shardrun_orchestrator.orchestrator import OrchestratorSettings, RunOrchestrator, RunRequest
from shardrun_orchestrator.status import StatusReconciler, overall_status

__all__ = [
    # Backends
    "BackendFactory",
    "backend_factory_from_config",
    "create_backend",
    "create_store",
    # Cancel
    "CancelCoordinator",
    "CancelReport",
    # Config
    "ShardrunConfig",
    "config_from_dict",
    "find_config_file",
    "load_config",
    "save_config",
    # Discovery
    "DiscoveryResult",
    "discover",
    # Orchestration
    "OrchestratorSettings",
    "RunOrchestrator",
    "RunRequest",
    # Status
    "StatusReconciler",
    "overall_status",
]
