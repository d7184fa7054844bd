"""Unit tests for agent_handoff_coordinator.config."""
from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path

import pytest

from agent_handoff_coordinator.config import (
    BudgetConfig,
    CoordinatorConfig,
    HandoffConfig,
    RateLimitConfig,
    load_config,
)
from agent_handoff_coordinator.errors import ConfigError


class TestDefaults:
    def test_named_constants(self) -> None:
        config = CoordinatorConfig()
        assert config.budget.total == 300.0
        assert config.budget.warning_threshold == 0.75
        assert config.budget.critical_threshold == 0.90
        assert config.session_ttl == timedelta(hours=24)
        assert config.analysis_ttl <= config.session_ttl
        assert config.handoff.completion_ratio == 0.6
        assert config.handoff.auto_handoff is False
        assert config.rate_limit.requests_per_window == 60
        assert config.timeouts.generation_seconds == 30.0

    def test_frozen(self) -> None:
        with pytest.raises(Exception):
            CoordinatorConfig().session_ttl = timedelta(hours=1)  # type: ignore[misc]

    def test_to_dict_sections(self) -> None:
        data = CoordinatorConfig().to_dict()
        assert data["budget"]["total"] == 300.0
        assert data["session_ttl_seconds"] == 86400.0


class TestValidation:
    def test_non_positive_budget(self) -> None:
        with pytest.raises(ConfigError, match="budget.total"):
            BudgetConfig(total=0)

    def test_warning_must_be_below_critical(self) -> None:
        with pytest.raises(ConfigError):
            BudgetConfig(warning_threshold=0.9, critical_threshold=0.8)

    def test_threshold_range(self) -> None:
        with pytest.raises(ConfigError):
            BudgetConfig(warning_threshold=1.5)

    def test_completion_ratio_range(self) -> None:
        with pytest.raises(ConfigError):
            HandoffConfig(completion_ratio=0)

    def test_confidence_order(self) -> None:
        with pytest.raises(ConfigError):
            HandoffConfig(min_confidence=0.8, warn_confidence=0.6)

    def test_rate_limit_positive(self) -> None:
        with pytest.raises(ConfigError):
            RateLimitConfig(requests_per_window=0)

    def test_analysis_ttl_not_longer_than_session(self) -> None:
        with pytest.raises(ConfigError, match="analysis_ttl"):
            CoordinatorConfig(session_ttl=timedelta(hours=1), analysis_ttl=timedelta(hours=2))

    def test_config_error_is_value_error(self) -> None:
        assert issubclass(ConfigError, ValueError)


class TestLoadConfig:
    def test_defaults_without_sources(self) -> None:
        assert load_config(env={}) == CoordinatorConfig()

    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "coordinator.yaml"
        path.write_text(
            "budget:\n  total: 150\nhandoff:\n  auto_handoff: true\n"
            "session_ttl_seconds: 3600\nanalysis_ttl_seconds: 1800\n",
            encoding="utf-8",
        )
        config = load_config(path, env={})
        assert config.budget.total == 150.0
        assert config.handoff.auto_handoff is True
        assert config.session_ttl == timedelta(hours=1)
        assert config.analysis_ttl == timedelta(minutes=30)

    def test_env_overrides_file(self, tmp_path: Path) -> None:
        path = tmp_path / "coordinator.yaml"
        path.write_text("budget:\n  total: 150\n", encoding="utf-8")
        config = load_config(path, env={"HANDOFF_BUDGET__TOTAL": "75.5"})
        assert config.budget.total == 75.5

    def test_env_ttl(self) -> None:
        config = load_config(
            env={"HANDOFF_SESSION_TTL_SECONDS": "7200", "HANDOFF_ANALYSIS_TTL_SECONDS": "60"}
        )
        assert config.session_ttl == timedelta(hours=2)
        assert config.analysis_ttl == timedelta(minutes=1)

    def test_env_bool(self) -> None:
        config = load_config(env={"HANDOFF_HANDOFF__AUTO_HANDOFF": "yes"})
        assert config.handoff.auto_handoff is True

    def test_unrecognised_bool_keeps_default(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            config = load_config(env={"HANDOFF_HANDOFF__AUTO_HANDOFF": "maybe"})
        assert config.handoff.auto_handoff is False
        assert "Unrecognised boolean value" in caplog.text

    def test_unrelated_env_ignored(self) -> None:
        assert load_config(env={"PATH": "/usr/bin", "HANDOFF_X": "1"}) == CoordinatorConfig()

    def test_unknown_key_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("colour: blue\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Unknown configuration key"):
            load_config(path, env={})

    def test_unknown_setting_raises(self) -> None:
        with pytest.raises(ConfigError, match="Unknown setting"):
            load_config(env={"HANDOFF_BUDGET__CEILING": "10"})

    def test_invalid_number_raises(self) -> None:
        with pytest.raises(ConfigError, match="invalid value"):
            load_config(env={"HANDOFF_BUDGET__TOTAL": "lots"})

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Could not read"):
            load_config(tmp_path / "missing.yaml", env={})

    def test_non_mapping_file_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path, env={})
