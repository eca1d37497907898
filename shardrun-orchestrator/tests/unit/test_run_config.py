"""Tests for shardrun configuration loading."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest
import yaml

from shardrun_core.errors import ConfigurationError
from shardrun_core.types.common import TestFramework
from shardrun_core.types.tasks import ResourceSpec
from shardrun_orchestrator.config import (
    ShardrunConfig,
    config_from_dict,
    find_config_file,
    load_config,
    save_config,
)
from shardrun_orchestrator.orchestrator import OrchestratorSettings


@pytest.fixture
def config_yaml(tmp_path: Path) -> Path:
    """Create a valid config YAML file."""
    path = tmp_path / ".shardrun.yml"
    path.write_text(
        textwrap.dedent("""\
        version: 1
        backend: ecs

        aws:
          region: "eu-west-1"
          cluster: "e2e-cluster"
          task_definition: "e2e-runner"
          subnets: ["subnet-1", "subnet-2"]
          security_groups: ["sg-1"]

        tests:
          directory: "./tests/e2e"
          framework: cypress
          exclude: ["**/flaky/**"]

        execution:
          cpu: 2048
          memory: 4096
          timeout: 20
          parallel: 8
          strategy: size-balanced

        storage:
          type: s3
          bucket: "e2e-artifacts"

        orchestrator:
          poll_interval: 2
          result_attempts: 5
        """)
    )
    return path


class TestLoadConfig:
    """Tests for load_config."""

    def test_loads_valid_config(self, config_yaml: Path) -> None:
        config = load_config(config_yaml)

        assert config.backend == "ecs"
        assert config.aws.region == "eu-west-1"
        assert config.aws.cluster == "e2e-cluster"
        assert config.aws.task_definition == "e2e-runner"
        assert config.aws.subnets == ("subnet-1", "subnet-2")
        assert config.aws.security_groups == ("sg-1",)
        assert config.tests.framework is TestFramework.CYPRESS
        assert config.tests.exclude == ("**/flaky/**",)
        assert config.execution.cpu == 2048
        assert config.execution.strategy == "size-balanced"
        assert config.storage.bucket == "e2e-artifacts"
        assert config.orchestrator.poll_interval == 2.0
        assert config.orchestrator.result_attempts == 5
        assert config.validate() == []

    def test_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.yml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yml"
        path.write_text("aws: [unclosed\n")

        with pytest.raises(ConfigurationError, match="parse"):
            load_config(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(path)

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yml"
        path.write_text("")

        config = load_config(path)

        assert config.backend == "ecs"
        assert config.execution.timeout == 30

    def test_searches_current_directory(
        self, config_yaml: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(config_yaml.parent)

        assert load_config().aws.cluster == "e2e-cluster"

    def test_no_config_in_directory(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)

        with pytest.raises(ConfigurationError, match="shardrun init"):
            load_config()


class TestConfigFromDict:
    """Tests for config_from_dict."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AWS_REGION", "ap-south-1")

        config = config_from_dict({})

        assert config.aws.region == "ap-south-1"
        assert config.aws.cluster == "shardrun-cluster"
        assert config.tests.directory == "./e2e"
        assert config.tests.framework is TestFramework.PLAYWRIGHT
        assert config.storage.type == "s3"
        assert config.orchestrator.timeout_multiplier == 1.5

    def test_camel_case_aliases(self) -> None:
        config = config_from_dict(
            {
                "aws": {"taskDefinition": "legacy-runner", "securityGroups": ["sg-9"]},
                "storage": {"retentionDays": 7},
                "orchestrator": {"pollInterval": 1, "launchDelay": 0},
            }
        )

        assert config.aws.task_definition == "legacy-runner"
        assert config.aws.security_groups == ("sg-9",)
        assert config.storage.retention_days == 7
        assert config.orchestrator.poll_interval == 1.0
        assert config.orchestrator.launch_delay == 0.0

    def test_local_command_string_is_split(self) -> None:
        config = config_from_dict({"backend": "local", "local": {"command": "npx playwright test"}})

        assert config.local.command == ("npx", "playwright", "test")

    def test_unknown_framework(self) -> None:
        with pytest.raises(ConfigurationError, match="framework"):
            config_from_dict({"tests": {"framework": "mocha"}})

    def test_section_must_be_mapping(self) -> None:
        with pytest.raises(ConfigurationError, match="execution"):
            config_from_dict({"execution": [1, 2]})

    def test_non_numeric_value(self) -> None:
        with pytest.raises(ConfigurationError, match="execution.cpu"):
            config_from_dict({"execution": {"cpu": "lots"}})


class TestValidate:
    """Tests for ShardrunConfig.validate and require_valid."""

    def test_reports_every_problem(self) -> None:
        config = config_from_dict(
            {
                "backend": "k8s",
                "aws": {"region": "us-east-1"},
                "execution": {"cpu": 128, "memory": 256, "timeout": 0, "parallel": 0},
            }
        )

        errors = config.validate()

        assert any("Unknown backend" in e for e in errors)
        assert "CPU must be at least 256" in errors
        assert "Memory must be at least 512" in errors
        assert "Timeout must be positive" in errors
        assert "Parallel must be at least 1" in errors

    def test_unknown_strategy(self) -> None:
        config = config_from_dict({"aws": {"region": "us-east-1"}, "execution": {"strategy": "x"}})

        assert any("sharding strategy" in e for e in config.validate())

    def test_local_backend_needs_command(self) -> None:
        config = config_from_dict({"backend": "local", "storage": {"type": "filesystem"}})

        assert "Local backend requires local.command" in config.validate()

    def test_require_valid_raises(self) -> None:
        config = config_from_dict({"aws": {"region": "us-east-1"}, "execution": {"cpu": 1}})

        with pytest.raises(ConfigurationError, match="CPU must be at least 256"):
            config.require_valid()


class TestSaveConfig:
    """Tests for save_config and find_config_file."""

    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "shardrun.yml"
        original = ShardrunConfig(backend="stub")

        save_config(path, original)

        data = yaml.safe_load(path.read_text())
        assert data["backend"] == "stub"
        assert data["tests"]["framework"] == "playwright"
        assert load_config(path) == original

    def test_refuses_to_overwrite(self, tmp_path: Path) -> None:
        path = tmp_path / "shardrun.yml"
        path.write_text("backend: ecs\n")

        with pytest.raises(ConfigurationError, match="already exists"):
            save_config(path, ShardrunConfig())

        save_config(path, ShardrunConfig(backend="stub"), force=True)
        assert load_config(path).backend == "stub"

    def test_find_config_file_order(self, tmp_path: Path) -> None:
        (tmp_path / "shardrun.yaml").write_text("")
        (tmp_path / ".shardrun.yml").write_text("")

        assert find_config_file(tmp_path) == tmp_path / ".shardrun.yml"

    def test_find_config_file_none(self, tmp_path: Path) -> None:
        assert find_config_file(tmp_path) is None


class TestOrchestratorSettings:
    """Tests for OrchestratorSettings.from_config."""

    def test_units(self, config_yaml: Path) -> None:
        settings = OrchestratorSettings.from_config(load_config(config_yaml))

        # 20 minutes
        assert settings.shard_timeout == 1200.0
        assert settings.worker_timeout_ms == 1_200_000
        assert settings.run_deadline == 1800.0
        assert settings.poll_interval == 2.0
        assert settings.resources == ResourceSpec(cpu=2048, memory=4096)
        assert settings.result_retry.max_attempts == 5
