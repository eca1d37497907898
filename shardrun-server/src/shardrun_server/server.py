"""FastAPI server for the shardrun run status service.

Exposes the status reconciler and cancel coordinator over HTTP so dashboards
and CI jobs can follow runs without the CLI.

Endpoints:
    GET  /health                 : Health check
    GET  /runs/{run_id}/status   : Reconciled run status
    POST /runs/{run_id}/cancel   : Cancel a run (dry run unless ?force=true)

Example:
    shardrun-server .shardrun.yml --port 8000
"""

from __future__ import annotations

import argparse
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator

from fastapi import FastAPI, HTTPException

from shardrun_core.errors import (
    BackendError,
    CancelUnsupportedError,
    InvalidArgumentError,
    RunNotFoundError,
    SchemaError,
    ShardrunError,
    StoreError,
)
from shardrun_core.interfaces import DurableStore
from shardrun_orchestrator.backends import (
    BackendFactory,
    backend_factory_from_config,
    create_store,
)
from shardrun_orchestrator.cancel import CancelCoordinator
from shardrun_orchestrator.config import ShardrunConfig, load_config
from shardrun_orchestrator.status import StatusReconciler

from shardrun_server.models import CancelResponse, HealthModel, RunStatusModel

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS_CODES: list[tuple[type[ShardrunError], int]] = [
    (RunNotFoundError, 404),
    (CancelUnsupportedError, 409),
    (InvalidArgumentError, 400),
    (SchemaError, 422),
    (StoreError, 502),
    (BackendError, 502),
]

# Global state (set during lifespan)
_config: ShardrunConfig | None = None
_store: DurableStore | None = None
_reconciler: StatusReconciler | None = None
_coordinator: CancelCoordinator | None = None


def _get_store() -> DurableStore:
    if _store is None:
        raise RuntimeError("Store not initialized")
    return _store


def _get_reconciler() -> StatusReconciler:
    if _reconciler is None:
        raise RuntimeError("Status reconciler not initialized")
    return _reconciler


def _http_error(error: ShardrunError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def create_app(
    config_path: str | Path | None = None,
    store: DurableStore | None = None,
    backend_factory: BackendFactory | None = None,
) -> FastAPI:
    """Create a FastAPI application.

    Args:
        config_path: Path to a shardrun config file.
        store: Store to use instead of the configured one.
        backend_factory: Backend factory to use instead of the configured one.

    Returns:
        Configured FastAPI application.
    """
    app_state: dict[str, Any] = {"config_path": config_path}

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        global _config, _store, _reconciler, _coordinator  # pylint: disable=global-statement

        cfg_path = app_state.get("config_path")
        if cfg_path:
            logger.info("Loading configuration from %s", cfg_path)
            _config = load_config(cfg_path).require_valid()
        if store is None and _config is None:
            raise RuntimeError("A config file or a store is required")

        _store = store if store is not None else create_store(_config)
        factory = backend_factory
        if factory is None and _config is not None:
            factory = backend_factory_from_config(_config)
        if factory is None:
            logger.warning("No backend configured; status uses stored results only")

        _reconciler = StatusReconciler(_store, factory)
        _coordinator = CancelCoordinator(_store, factory) if factory is not None else None
        logger.info("Serving runs from %s", _store.location)

        yield

        _coordinator = None
        _reconciler = None
        _store = None
        _config = None

    app = FastAPI(
        title="shardrun",
        description="Run status and cancellation service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_api_route("/health", _health, methods=["GET"], response_model=HealthModel)
    app.add_api_route(
        "/runs/{run_id}/status", _run_status, methods=["GET"], response_model=RunStatusModel
    )
    app.add_api_route(
        "/runs/{run_id}/cancel", _cancel_run, methods=["POST"], response_model=CancelResponse
    )

    return app


# =============================================================================
# Endpoints
# =============================================================================


async def _health() -> HealthModel:
    store = _get_store()
    return HealthModel(
        status="ok",
        backend=_config.backend if _config is not None else "custom",
        store=store.location,
    )


async def _run_status(run_id: str) -> RunStatusModel:
    try:
        status = await _get_reconciler().snapshot(run_id)
    except ShardrunError as exc:
        raise _http_error(exc) from exc
    return RunStatusModel.from_status(status)


async def _cancel_run(run_id: str, force: bool = False) -> CancelResponse:
    coordinator = _coordinator
    if coordinator is None:
        raise HTTPException(status_code=501, detail="No compute backend configured")
    try:
        report = await coordinator.cancel(run_id, force=force)
    except ShardrunError as exc:
        raise _http_error(exc) from exc
    if not report.succeeded:
        logger.warning(
            "Cancel of %s left %d task(s) running", run_id, len(report.failed_to_stop)
        )
    return CancelResponse.from_report(report)


# =============================================================================
# CLI Entry Point
# =============================================================================


def main() -> None:
    """Command-line entry point for the status server."""
    parser = argparse.ArgumentParser(description="Start the shardrun status server")
    parser.add_argument(
        "config",
        type=Path,
        help="Path to shardrun configuration YAML file",
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to listen on (default: 8000)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.config.exists():
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)

    import uvicorn  # pylint: disable=import-outside-toplevel

    app = create_app(args.config)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
