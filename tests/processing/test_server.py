#!/usr/bin/env python3
# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for the monitor server: startup validation, status report,
history backfill, live run and command line entry point.
"""

import asyncio
import hashlib
import json
import os
import sys
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

SRC_ROOT = Path(__file__).resolve().parents[2] / "src"
sys.path.insert(0, str(SRC_ROOT))

from claude_langfuse import config as config_module
from claude_langfuse.config import ConfigurationError, MonitorConfig
from claude_langfuse.processing.server import MonitorServer, build_parser, main


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in (
        "LANGFUSE_HOST",
        "LANGFUSE_PUBLIC_KEY",
        "LANGFUSE_SECRET_KEY",
        "CLAUDE_LANGFUSE_USER_ID",
        "CLAUDE_PROJECTS_DIR",
        "LOG_LEVEL",
        "CLAUDE_LANGFUSE_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_DIR", tmp_path / "no-config-here")


@pytest.fixture
def projects_dir(tmp_path):
    root = tmp_path / "projects"
    root.mkdir()
    return root


def _config(projects_dir, *, credentials=False, dry_run=False, **monitor) -> MonitorConfig:
    config = MonitorConfig()
    config.paths.claude_projects_dir = str(projects_dir)
    config.monitor.quiet = True
    config.monitor.dry_run = dry_run
    config.monitor.debounce_seconds = 0.05
    for key, value in monitor.items():
        setattr(config.monitor, key, value)
    if credentials:
        config.langfuse.public_key = "pk-lf-test"
        config.langfuse.secret_key = "sk-lf-test"
    return config


def _write_conversation(projects_dir: Path, project: str, conversation: str, entries, mtime=None) -> Path:
    path = projects_dir / project / f"{conversation}.jsonl"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(json.dumps(e) + "\n" for e in entries))
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


async def _wait_for(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TestCheckStatus:

    def test_missing_projects_dir(self, tmp_path, capsys):
        server = MonitorServer(_config(tmp_path / "missing", credentials=True, dry_run=True))

        assert server.check_status() is False

        out = capsys.readouterr().out
        assert "🔍 Claude Langfuse Monitor Status" in out
        assert "❌ Claude projects directory not found" in out
        assert "credentials" not in out

    def test_missing_credentials(self, projects_dir, capsys):
        server = MonitorServer(_config(projects_dir, dry_run=True))

        assert server.check_status() is False

        out = capsys.readouterr().out
        assert "✅ Claude projects directory found" in out
        assert "❌ Langfuse credentials not configured" in out
        assert "ready to run" not in out

    def test_ready(self, projects_dir, capsys):
        server = MonitorServer(_config(projects_dir, credentials=True, dry_run=True))

        assert server.check_status() is True

        out = capsys.readouterr().out
        assert "✅ Langfuse credentials configured" in out
        assert "   Host: http://localhost:3001" in out
        assert "✅ Monitor ready to run" in out


class TestStartupValidation:

    @pytest.mark.asyncio
    async def test_missing_projects_dir_fails(self, tmp_path):
        server = MonitorServer(_config(tmp_path / "missing", dry_run=True))

        with pytest.raises(ConfigurationError, match="not found"):
            await server.run()

    @pytest.mark.asyncio
    async def test_missing_credentials_fail_outside_dry_run(self, projects_dir):
        server = MonitorServer(_config(projects_dir))

        assert server.sink is None
        with pytest.raises(ConfigurationError, match="credentials"):
            await server.run()


class TestHistoryBackfill:

    @pytest.mark.asyncio
    async def test_recent_conversations_are_forwarded(self, projects_dir):
        now = time.time()
        _write_conversation(
            projects_dir, "-repo", "recent",
            [{"type": "user", "uuid": "u1", "message": "hello"}],
            mtime=now - 60,
        )
        _write_conversation(
            projects_dir, "-repo", "stale",
            [{"type": "user", "uuid": "u-old", "message": "old"}],
            mtime=now - 3 * 86_400,
        )
        sink = MagicMock()
        server = MonitorServer(_config(projects_dir), sink=sink)

        processed = await server.process_history(projects_dir)

        assert [p.name for p in processed] == ["recent.jsonl"]
        record = sink.record_trace.call_args[0][0]
        assert record.id == "u1"
        assert record.session_id == hashlib.md5(b"/repo:recent").hexdigest()

    @pytest.mark.asyncio
    async def test_dry_run_never_touches_sink(self, projects_dir):
        _write_conversation(projects_dir, "-repo", "c", [{"type": "user", "uuid": "u1", "message": "x"}])
        sink = MagicMock()
        server = MonitorServer(_config(projects_dir, dry_run=True), sink=sink)

        await server.process_history(projects_dir)

        assert sink.method_calls == []
        assert server.message_processor.get_stats()["user"] == 1


class TestRun:

    @pytest.mark.asyncio
    async def test_backfill_then_watch_until_stopped(self, projects_dir):
        _write_conversation(projects_dir, "-repo", "c1", [{"type": "user", "uuid": "u1", "message": "first"}])
        sink = MagicMock()
        server = MonitorServer(
            _config(projects_dir, emit_initial_events=False, flush_backoff_seconds=0),
            sink=sink,
        )

        task = asyncio.create_task(server.run())
        await _wait_for(lambda: server.watcher is not None and server.watcher.running)
        assert sink.record_trace.call_count == 1

        _write_conversation(
            projects_dir, "-repo", "c1",
            [
                {"type": "user", "uuid": "u1", "message": "first"},
                {"type": "assistant", "uuid": "a1", "parentUuid": "u1", "message": "reply"},
            ],
        )
        await _wait_for(lambda: sink.record_generation.call_count == 1)

        server.request_stop()
        await asyncio.wait_for(task, 5.0)

        assert sink.record_trace.call_count == 1
        sink.flush.assert_called()
        sink.shutdown.assert_called_once()
        assert server.running is False
        assert server._stop_task is None
        assert server.watcher.running is False

    @pytest.mark.asyncio
    async def test_stop_during_backfill_skips_watching(self, projects_dir):
        _write_conversation(projects_dir, "-repo", "c1", [{"type": "user", "uuid": "u1", "message": "x"}])
        sink = MagicMock()
        server = MonitorServer(_config(projects_dir, flush_backoff_seconds=0), sink=sink)
        server._stop_requested = True

        await asyncio.wait_for(server.run(), 5.0)

        assert server.watcher is None
        sink.record_trace.assert_not_called()
        sink.shutdown.assert_called_once()

    @pytest.mark.asyncio
    async def test_flush_requested_after_ten_messages(self, projects_dir):
        entries = [{"type": "user", "uuid": f"u{i}", "message": f"m{i}"} for i in range(10)]
        _write_conversation(projects_dir, "-repo", "c1", entries)
        sink = MagicMock()
        server = MonitorServer(
            _config(projects_dir, emit_initial_events=False, flush_backoff_seconds=0),
            sink=sink,
        )

        task = asyncio.create_task(server.run())
        await _wait_for(lambda: server.flush_worker.flushes >= 1)
        server.request_stop()
        await asyncio.wait_for(task, 5.0)

        assert server.flush_worker.requests == 1
        assert sink.flush.call_count >= 2


class TestCommandLine:

    def test_parser_start_options(self):
        args = build_parser().parse_args(["start", "--history", "2", "-q", "--dry-run"])

        assert args.command == "start"
        assert args.history == 2.0
        assert args.quiet is True
        assert args.dry_run is True

    def test_parser_defaults_leave_config_untouched(self):
        args = build_parser().parse_args(["start"])

        assert args.history is None
        assert args.quiet is False
        assert args.dry_run is False

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_status_reports_missing_directory(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("CLAUDE_PROJECTS_DIR", str(tmp_path / "missing"))

        assert main(["status"]) == 1
        assert "❌ Claude projects directory not found" in capsys.readouterr().out

    def test_status_ready(self, projects_dir, monkeypatch, capsys):
        monkeypatch.setenv("CLAUDE_PROJECTS_DIR", str(projects_dir))
        monkeypatch.setenv("LANGFUSE_PUBLIC_KEY", "pk-lf-test")
        monkeypatch.setenv("LANGFUSE_SECRET_KEY", "sk-lf-test")

        assert main(["status"]) == 0
        assert "✅ Monitor ready to run" in capsys.readouterr().out

    def test_start_fails_on_missing_directory(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CLAUDE_PROJECTS_DIR", str(tmp_path / "missing"))

        assert main(["start", "--dry-run"]) == 1

    def test_start_fails_without_credentials(self, projects_dir, monkeypatch):
        monkeypatch.setenv("CLAUDE_PROJECTS_DIR", str(projects_dir))

        assert main(["start", "--history", "0"]) == 1

    def test_invalid_config_file(self, tmp_path, capsys):
        bad = tmp_path / "bad.yaml"
        bad.write_text("monitor:\n  nope: 1\n")

        assert main(["--config", str(bad), "status"]) == 1
        assert "Invalid configuration" in capsys.readouterr().err
