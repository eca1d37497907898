"""Command-line interface for shardrun.

Usage:
    # Write a starter config
    shardrun init --backend ecs

    # Show how the tests would be sharded (no remote calls)
    shardrun plan --shards 4

    # Run the tests
    shardrun run --shards 4 --strategy duration-balanced

    # Follow a run
    shardrun status run-1707600000000-3fa9c1 --watch

    # Stop a run's tasks (dry run without --force)
    shardrun cancel run-1707600000000-3fa9c1 --force
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Sequence

from shardrun_core.errors import EmptyInputError, ShardrunError
from shardrun_core.retry import error_message
from shardrun_core.sharding import ShardPlan, ShardPlanner, describe_plan, optimal_shard_count
from shardrun_core.types.run import OverallStatus, RunStatus, RunSummary

from shardrun_orchestrator.backends import backend_factory_from_config, create_backend, create_store
from shardrun_orchestrator.cancel import CancelCoordinator, CancelReport
from shardrun_orchestrator.config import (
    BACKENDS,
    CONFIG_FILE_NAMES,
    ShardrunConfig,
    load_config,
    save_config,
)
from shardrun_orchestrator.discovery import discover
from shardrun_orchestrator.orchestrator import OrchestratorSettings, RunOrchestrator, RunRequest
from shardrun_orchestrator.status import StatusReconciler

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def setup_logging(level: str = "INFO", debug: bool = False) -> None:
    """Configure logging."""
    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load(args: argparse.Namespace) -> ShardrunConfig:
    return load_config(args.config).require_valid()


def build_plan(config: ShardrunConfig, shards: int | None, strategy: str | None) -> ShardPlan:
    """Discover the configured tests and shard them."""
    found = discover(
        config.tests.directory,
        config.tests.framework,
        pattern=config.tests.pattern,
        exclude=config.tests.exclude,
    )
    if not found.files:
        raise EmptyInputError(f"No test files found in {config.tests.directory}")
    count = shards or optimal_shard_count(found.total_files, config.execution.parallel)
    return ShardPlanner().plan(found.files, count, strategy or config.execution.strategy)


def print_summary(summary: RunSummary) -> None:
    """Print a run summary."""
    print(f"\nRun {summary.run_id}: {summary.outcome.value.upper()}")
    print(f"  Tests:    {summary.total_tests}")
    print(f"  Passed:   {summary.passed}")
    print(f"  Failed:   {summary.failed}")
    print(f"  Skipped:  {summary.skipped}")
    print(f"  Shards:   {summary.shard_count} ({len(summary.results)} reported)")
    print(f"  Duration: {summary.duration / 1000:.1f}s")
    print(f"  Cost:     ${summary.cost:.4f} (estimate)")
    if summary.missing_shards:
        print(f"  Missing results: {', '.join(str(s) for s in summary.missing_shards)}")
    if summary.failed_tasks:
        print(f"  Failed tasks: {', '.join(str(s) for s in summary.failed_tasks)}")
    if not summary.succeeded:
        print(f"  Reason:   {summary.failure_kind.value}")
    for result in summary.results:
        for test in result.failed_tests():
            print(f"    FAIL [shard {result.shard_id}] {test.name}: {test.error or ''}")


def print_status(status: RunStatus) -> None:
    """Print a run status snapshot."""
    totals = status.totals
    print(f"Run {status.run_id}: {status.overall.value.upper()}")
    if status.started_at:
        print(f"  Started:  {status.started_at}")
    print(f"  Progress: {status.completed}/{status.total} shard(s) reported")
    print(f"  Tests:    {totals.passed} passed, {totals.failed} failed, {totals.skipped} skipped")
    if not status.live_state_available:
        print("  (live task state unavailable; showing stored results only)")
    for shard in status.shards:
        detail = ""
        if shard.result is not None:
            detail = f" {shard.result.passed}/{shard.result.total} passed"
        elif shard.backend_status:
            detail = f" ({shard.backend_status})"
        print(f"    Shard {shard.shard_id}: {shard.state.value}{detail}")


def print_cancel_report(report: CancelReport) -> None:
    """Print a cancel report."""
    if report.dry_run:
        print(f"Run {report.run_id}: {len(report.would_stop)} task(s) would be stopped")
        for handle in report.would_stop:
            print(f"    Shard {handle.shard_id}: {handle.short_id}")
        print("Re-run with --force to stop them")
        return
    print(f"Run {report.run_id}:")
    print(f"  Stopped:         {len(report.stopped)}")
    print(f"  Already stopped: {len(report.already_stopped)}")
    print(f"  Failed to stop:  {len(report.failed_to_stop)}")


def cmd_init(args: argparse.Namespace) -> int:
    """Write a starter config file."""
    path = Path(args.output)
    config = ShardrunConfig(backend=args.backend)
    save_config(path, config, force=args.force)
    print(f"Saved config to: {path}")
    print("\nNext steps:")
    print(f"  1. Edit {path} (tests directory, cluster, bucket)")
    print("  2. Preview the shards: shardrun plan")
    print("  3. Run: shardrun run")
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    """Print the shard plan."""
    config = _load(args)
    plan = build_plan(config, args.shards, args.strategy)
    print(describe_plan(plan))
    return 0


async def _run(config: ShardrunConfig, plan: ShardPlan, run_id: str | None) -> RunSummary:
    orchestrator = RunOrchestrator(
        create_store(config),
        create_backend(config),
        OrchestratorSettings.from_config(config),
    )
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform; Ctrl+C then raises KeyboardInterrupt
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, orchestrator.request_cancel)
    return await orchestrator.run(
        RunRequest(
            shards=plan.shards,
            framework=config.tests.framework.value,
            workload=config.tests.directory,
            run_id=run_id,
        )
    )


def cmd_run(args: argparse.Namespace) -> int:
    """Run the tests and print the summary."""
    config = _load(args)
    plan = build_plan(config, args.shards, args.strategy)
    print(f"Running {plan.total_shards} shard(s) on {config.backend}")
    summary = asyncio.run(_run(config, plan, args.run_id))
    print_summary(summary)
    if args.json:
        print(json.dumps(summary.to_dict(), indent=2))
    return summary.exit_code


def cmd_status(args: argparse.Namespace) -> int:
    """Show the status of a run."""
    config = _load(args)
    reconciler = StatusReconciler(create_store(config), backend_factory_from_config(config))

    def show(status: RunStatus) -> None:
        if args.json:
            print(json.dumps(status.to_dict(), indent=2))
        else:
            print_status(status)

    if args.watch:
        try:
            status = asyncio.run(reconciler.watch(args.run_id, args.interval, show))
        except KeyboardInterrupt:
            return 130
    else:
        status = asyncio.run(reconciler.snapshot(args.run_id))
        show(status)
    return 1 if status.overall is OverallStatus.FAILED else 0


def cmd_cancel(args: argparse.Namespace) -> int:
    """Cancel a run."""
    config = _load(args)
    coordinator = CancelCoordinator(create_store(config), backend_factory_from_config(config))
    report = asyncio.run(coordinator.cancel(args.run_id, force=args.force))
    print_cancel_report(report)
    return 0 if report.succeeded else 1


def _add_plan_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--shards", "-n", type=int, help="Number of shards (default: automatic)")
    parser.add_argument(
        "--strategy", "-s",
        help="round-robin, size-balanced or duration-balanced (default: from config)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="shardrun",
        description="Run test suites in parallel shards on remote compute",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config", "-c",
        help=f"Config file (default: first of {', '.join(CONFIG_FILE_NAMES)})",
    )
    parser.add_argument("--log-level", default="INFO", choices=LOG_LEVELS, help="Log level")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    init_parser = subparsers.add_parser("init", help="Write a starter config file")
    init_parser.add_argument("--backend", "-b", default="ecs", choices=BACKENDS)
    init_parser.add_argument("--output", "-o", default=CONFIG_FILE_NAMES[0], help="Output path")
    init_parser.add_argument("--force", "-f", action="store_true", help="Overwrite existing config")

    plan_parser = subparsers.add_parser("plan", help="Show the shard plan without running")
    _add_plan_args(plan_parser)

    run_parser = subparsers.add_parser("run", help="Run the tests")
    _add_plan_args(run_parser)
    run_parser.add_argument("--run-id", help="Run id to use (default: generated)")
    run_parser.add_argument("--json", action="store_true", help="Also print the summary as JSON")

    status_parser = subparsers.add_parser("status", help="Show the status of a run")
    status_parser.add_argument("run_id", help="Run id")
    status_parser.add_argument("--watch", "-w", action="store_true", help="Poll until finished")
    status_parser.add_argument(
        "--interval", type=float, default=5.0, help="Watch interval in seconds (default: 5)"
    )
    status_parser.add_argument("--json", action="store_true", help="Print JSON")

    cancel_parser = subparsers.add_parser("cancel", help="Stop the tasks of a run")
    cancel_parser.add_argument("run_id", help="Run id")
    cancel_parser.add_argument(
        "--force", "-f", action="store_true", help="Stop the tasks (default: dry run)"
    )

    return parser


COMMANDS = {
    "init": cmd_init,
    "plan": cmd_plan,
    "run": cmd_run,
    "status": cmd_status,
    "cancel": cmd_cancel,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.log_level, args.debug)

    try:
        return COMMANDS[args.command](args)
    except ShardrunError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {error_message(e)}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
