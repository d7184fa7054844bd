"""Unit tests for agent_handoff_coordinator.cli.main.

Uses Click's test runner (CliRunner).  Single-invocation flows use the
in-memory backend; flows spanning several invocations share a SQLite file
under ``tmp_path``.
"""
from __future__ import annotations

import importlib.util
import json
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from agent_handoff_coordinator.cli.main import _make_backend, cli
from agent_handoff_coordinator.storage.memory import AsyncInMemoryBackend

needs_sqlite = pytest.mark.skipif(
    importlib.util.find_spec("aiosqlite") is None,
    reason="aiosqlite not installed",
)


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _sqlite_args(db_path: Path) -> list[str]:
    return ["session", "--storage", "sqlite", "--db-path", str(db_path)]


# ---------------------------------------------------------------------------
# _make_backend factory
# ---------------------------------------------------------------------------


class TestMakeBackend:
    def test_memory_backend(self) -> None:
        assert isinstance(_make_backend("memory", None), AsyncInMemoryBackend)

    @needs_sqlite
    def test_sqlite_backend_custom_path(self, tmp_path: Path) -> None:
        from agent_handoff_coordinator.storage.sqlite import AsyncSQLiteBackend

        backend = _make_backend("sqlite", str(tmp_path / "custom.db"))
        assert isinstance(backend, AsyncSQLiteBackend)

    def test_unknown_backend_rejected_by_click(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["session", "--storage", "floppy", "status", "x"])
        assert result.exit_code != 0


# ---------------------------------------------------------------------------
# Root commands
# ---------------------------------------------------------------------------


class TestRootCommands:
    def test_version(self, runner: CliRunner) -> None:
        from agent_handoff_coordinator import __version__

        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert f"v{__version__}" in result.output

    def test_config_show_json(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["config", "show", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["budget"]["total"] == 300.0
        assert data["handoff"]["completion_ratio"] == 0.6

    def test_config_show_with_file(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "coordinator.yaml"
        path.write_text("budget:\n  total: 50\n", encoding="utf-8")
        result = runner.invoke(cli, ["--config", str(path), "config", "show"])
        assert result.exit_code == 0
        assert yaml.safe_load(result.output)["budget"]["total"] == 50.0

    def test_invalid_config_file_exits_one(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("colour: blue\n", encoding="utf-8")
        result = runner.invoke(cli, ["--config", str(path), "config", "show"])
        assert result.exit_code == 1
        assert "CONFIG_ERROR" in result.output


# ---------------------------------------------------------------------------
# Session commands
# ---------------------------------------------------------------------------


class TestSessionCommands:
    def test_start_with_memory_storage(self, runner: CliRunner) -> None:
        result = runner.invoke(
            cli, ["session", "--storage", "memory", "start", "--session-id", "cli-1"]
        )
        assert result.exit_code == 0
        assert "Session started" in result.output
        assert "cli-1" in result.output

    def test_missing_session_exits_one(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["session", "--storage", "memory", "status", "ghost"])
        assert result.exit_code == 1
        assert "SESSION_NOT_FOUND" in result.output

    def test_live_without_key_exits_one(self, runner: CliRunner) -> None:
        result = runner.invoke(
            cli,
            ["session", "--storage", "memory", "--live", "start"],
            env={"GEMINI_API_KEY": ""},
        )
        assert result.exit_code == 1
        assert "--live requires" in result.output

    def test_demo(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["session", "--storage", "memory", "demo"])
        assert result.exit_code == 0, result.output
        assert "Premium Wireless Headphones" in result.output
        assert "Handed off to" in result.output
        assert "Creative Director" in result.output

    def test_demo_auto_handoff(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["session", "--storage", "memory", "demo", "--auto-handoff"])
        assert result.exit_code == 0, result.output
        assert result.output.count("Handed off to") == 1


@needs_sqlite
class TestPersistentFlow:
    def test_start_analyze_chat_status(self, runner: CliRunner, tmp_path: Path) -> None:
        args = _sqlite_args(tmp_path / "cli.db")
        assert runner.invoke(cli, args + ["start", "--session-id", "p1"]).exit_code == 0

        analyzed = runner.invoke(cli, args + ["analyze", "p1"])
        assert analyzed.exit_code == 0, analyzed.output
        assert "Premium Wireless Headphones" in analyzed.output

        chat = runner.invoke(cli, args + ["chat", "p1", "Our customers are commuters"])
        assert chat.exit_code == 0, chat.output
        assert "targetAudience" in chat.output

        status = runner.invoke(cli, args + ["status", "p1", "--json-output"])
        assert status.exit_code == 0
        data = json.loads(status.output)
        assert data["status"] == "chatting"
        assert data["currentAgent"] == "product-intelligence"

    def test_history_and_export(self, runner: CliRunner, tmp_path: Path) -> None:
        args = _sqlite_args(tmp_path / "cli.db")
        runner.invoke(cli, args + ["start", "--session-id", "p2"])
        runner.invoke(cli, args + ["analyze", "p2"])
        runner.invoke(cli, args + ["chat", "p2", "The brand is playful"])

        history = runner.invoke(cli, args + ["history", "p2"])
        assert history.exit_code == 0
        assert "The brand is playful" in history.output

        out_file = tmp_path / "export.json"
        exported = runner.invoke(cli, args + ["export", "p2", "-o", str(out_file)])
        assert exported.exit_code == 0
        data = json.loads(out_file.read_text(encoding="utf-8"))
        assert data["session"]["sessionId"] == "p2"
        assert len(data["messages"]) == 3
        assert data["handoffs"] == []

    def test_handoff_rejected_exits_one(self, runner: CliRunner, tmp_path: Path) -> None:
        args = _sqlite_args(tmp_path / "cli.db")
        runner.invoke(cli, args + ["start", "--session-id", "p3"])
        result = runner.invoke(cli, args + ["handoff", "p3"])
        assert result.exit_code == 1
        assert "HANDOFF_VALIDATION_FAILED" in result.output

    def test_complete_requires_final_agent(self, runner: CliRunner, tmp_path: Path) -> None:
        args = _sqlite_args(tmp_path / "cli.db")
        runner.invoke(cli, args + ["start", "--session-id", "p4"])
        result = runner.invoke(cli, args + ["complete", "p4"])
        assert result.exit_code == 1
        assert "INVALID_STATE" in result.output
