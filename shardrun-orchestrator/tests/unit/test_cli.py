"""Tests for the shardrun command line."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from shardrun_orchestrator.cli import build_parser, main
from shardrun_orchestrator.discovery import DiscoveryResult

RUN_ID = "run-1707600000000-abc123"


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create a project with three tests, a filesystem store and the stub backend."""
    suite = tmp_path / "e2e"
    suite.mkdir()
    for name in ("a", "b", "c"):
        (suite / f"{name}.spec.ts").write_text(f"test('{name}', async () => {{}});\n")
    config = {
        "backend": "stub",
        "tests": {"directory": "./e2e", "framework": "playwright"},
        "execution": {"parallel": 2},
        "storage": {"type": "filesystem", "root": "./store"},
        "orchestrator": {
            "poll_interval": 0.01,
            "launch_delay": 0,
            "result_attempts": 1,
            "result_base_delay": 0,
        },
    }
    (tmp_path / ".shardrun.yml").write_text(yaml.safe_dump(config))
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestParser:
    """Tests for the argument parser."""

    def test_cancel_defaults_to_dry_run(self) -> None:
        args = build_parser().parse_args(["cancel", RUN_ID])

        assert args.command == "cancel"
        assert args.force is False

    def test_global_options(self) -> None:
        args = build_parser().parse_args(["-c", "x.yml", "--debug", "plan", "-n", "3"])

        assert args.config == "x.yml"
        assert args.debug
        assert args.shards == 3


class TestMain:
    """Tests for main()."""

    def test_no_command(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_init(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)

        assert main(["init", "--backend", "local"]) == 0

        data = yaml.safe_load((tmp_path / ".shardrun.yml").read_text())
        assert data["backend"] == "local"
        # A second init without --force refuses to overwrite
        assert main(["init"]) == 1
        assert main(["init", "--force"]) == 0

    def test_missing_config(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.chdir(tmp_path)

        assert main(["plan"]) == 1
        assert "No config file found" in capsys.readouterr().err

    def test_plan(self, project: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["plan", "--shards", "2", "--strategy", "round-robin"]) == 0

        out = capsys.readouterr().out
        assert "Shard 0:" in out
        assert "Shard 1:" in out
        assert "Strategy: round-robin" in out

    def test_invalid_strategy(self, project: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["plan", "--strategy", "random"]) == 1
        assert "Error:" in capsys.readouterr().err

    def test_plan_without_files(self, project: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with patch("shardrun_orchestrator.cli.discover", return_value=DiscoveryResult((), 0)):
            assert main(["plan"]) == 1

        err = capsys.readouterr().err
        assert "No test files found" in err
        assert "Shard count" not in err

    def test_run_without_results(self, project: Path, capsys: pytest.CaptureFixture[str]) -> None:
        # Stub tasks finish without a worker, so no shard writes a result
        code = main(["run", "--shards", "2", "--run-id", RUN_ID, "--json"])

        out = capsys.readouterr().out
        assert code == 1
        assert f"Run {RUN_ID}: FAILED" in out
        assert "Missing results: 0, 1" in out
        assert (project / "store" / "runs" / RUN_ID / "shards.json").is_file()

    def test_status_and_cancel_after_run(
        self, project: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        main(["run", "--shards", "2", "--run-id", RUN_ID])
        capsys.readouterr()

        assert main(["status", RUN_ID, "--json"]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["runId"] == RUN_ID
        assert status["progress"]["total"] == 2

        assert main(["cancel", RUN_ID]) == 0
        assert "0 task(s) would be stopped" in capsys.readouterr().out

    def test_status_unknown_run(self, project: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["status", RUN_ID]) == 1
        assert RUN_ID in capsys.readouterr().err
