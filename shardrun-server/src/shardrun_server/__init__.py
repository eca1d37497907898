"""HTTP service for following and cancelling shardrun runs.

This package provides a FastAPI-based web service exposing the reconciled
status of runs and the cancel operation, for dashboards and CI jobs that do
not use the CLI.

Example:
    shardrun-server .shardrun.yml --port 8000
"""

from shardrun_server.models import (
    CancelResponse,
    HealthModel,
    RunStatusModel,
    ShardStatusModel,
    TotalsModel,
)
from shardrun_server.server import create_app

__all__ = [
    # Server
    "create_app",
    # Models
    "CancelResponse",
    "HealthModel",
    "RunStatusModel",
    "ShardStatusModel",
    "TotalsModel",
]
