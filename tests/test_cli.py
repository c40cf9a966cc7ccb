"""
Tests for biosync/cli.py - command-line front-end.

Runs main() against a tmp_path SQLite cache and the in-memory or offline
replica; no network.
"""

import json
import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from biosync.cli import build_parser, main


@pytest.fixture
def run(tmp_path, capsys):
    """Invoke the CLI for an account unique to this test; returns (code, json)."""
    base = ["--db", str(tmp_path / "cli.db"), "--owner", f"cli-{tmp_path.name}"]

    def _run(*args, remote="memory"):
        code = main(base + ["--remote", remote] + list(args))
        out = capsys.readouterr().out
        return code, (json.loads(out) if out.strip() else None)

    return _run


class TestParser:

    def test_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_memory_remote_documented_as_in_process(self):
        help_text = build_parser().format_help()
        assert "lives only for this process" in " ".join(help_text.split())

    def test_log_override_flag(self):
        args = build_parser().parse_args(["log", "--override"])
        assert args.command == "log"
        assert args.override is True


class TestCommands:

    def test_status_fresh(self, run):
        code, data = run("status")
        assert code == 0
        assert data["events"] == 0
        assert data["metrics"]["integrity"] == 100.0
        assert data["cooldown"] == "GO!"

    def test_log_then_status(self, run):
        code, data = run("log")
        assert code == 0
        assert data["logged"]["kind"] == "normal"
        assert data["synced"] is True

        _, status = run("status")
        assert status["events"] == 1
        assert status["stats"]["countToday"] >= 0

    def test_log_override(self, run):
        _, data = run("log", "--override")
        assert data["logged"]["kind"] == "override"

    def test_undo(self, run):
        run("log")
        _, data = run("undo")
        assert data["undone"] is not None
        _, data = run("undo")
        assert data["undone"] is None

    def test_settings(self, run):
        _, data = run("settings", "--unit-price", "50", "--target-daily-count", "3")
        assert data["settings"]["unitPrice"] == 50.0
        assert data["settings"]["targetDailyCount"] == 3
        _, data = run("settings")
        assert data["settings"]["unitPrice"] == 50.0

    def test_reset_requires_yes(self, run):
        code, data = run("reset")
        assert code == 2
        assert data is None

    def test_reset(self, run):
        run("log")
        code, data = run("reset", "--yes")
        assert code == 0
        assert data["reset"] is True
        _, status = run("status")
        assert status["events"] == 0

    def test_sync(self, run):
        _, data = run("sync")
        assert data["synced"] is True
        assert data["document"]["events"] == []

    def test_offline_still_logs(self, run):
        code, data = run("log", remote="offline")
        assert code == 0
        assert data["logged"] is not None
        assert data["synced"] is False
