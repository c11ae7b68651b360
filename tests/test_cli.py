"""Tests for the `grounded-agent` CLI commands that need no network."""

from __future__ import annotations

import subprocess
import sys
from datetime import datetime, timezone

import pytest
import yaml

from grounded_agent.storage.sqlite import SQLiteMemoryStore
from grounded_agent.types import ConversationTurn, MemoryScope, QuotaRecord, RollingSummary, UserProfile


@pytest.fixture()
def tmp_cwd(tmp_path, monkeypatch):
    """Run test in a clean temporary directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _run_cli(*args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "grounded_agent.cli.main", *args],
        capture_output=True,
        text=True,
    )


def _write_config(path, **raw):
    raw.setdefault("storage", {"sqlite_path": str(path / "store.db")})
    (path / "grounded-agent.yaml").write_text(yaml.safe_dump(raw))


def test_init_creates_config(tmp_cwd):
    result = _run_cli("init")
    assert result.returncode == 0
    content = (tmp_cwd / "grounded-agent.yaml").read_text()
    raw = yaml.safe_load(content)
    assert raw["crawl"]["profiles"]["standard"]["max_calls_per_day"] == 5
    assert raw["quota"]["timezone"] == "Asia/Tokyo"
    assert "providers" in raw


def test_init_refuses_overwrite(tmp_cwd):
    (tmp_cwd / "grounded-agent.yaml").write_text("existing content")
    result = _run_cli("init")
    assert result.returncode != 0
    assert "already exists" in result.stderr
    assert (tmp_cwd / "grounded-agent.yaml").read_text() == "existing content"


def test_init_force_overwrites(tmp_cwd):
    (tmp_cwd / "grounded-agent.yaml").write_text("existing content")
    result = _run_cli("init", "--force")
    assert result.returncode == 0
    assert "crawl:" in (tmp_cwd / "grounded-agent.yaml").read_text()


def test_init_then_validate(tmp_cwd):
    assert _run_cli("init").returncode == 0
    result = _run_cli("config", "validate")
    assert result.returncode == 0, result.stdout + result.stderr
    assert "Config is valid." in result.stdout
    assert "depth 2, links 10, calls 10/request, 5/day" in result.stdout


def test_validate_reports_errors(tmp_cwd):
    _write_config(tmp_cwd, intervention={"level": 42})
    result = _run_cli("config", "validate")
    assert result.returncode == 1
    assert "intervention.level" in result.stdout


def test_quota_reports_stored_usage(tmp_cwd):
    _write_config(tmp_cwd, quota={"timezone": "UTC"})
    store = SQLiteMemoryStore(tmp_cwd / "store.db")
    store.save_quota_record(QuotaRecord("alice", datetime.now(timezone.utc).date(), 3))
    store.close()

    result = _run_cli("quota", "alice")
    assert result.returncode == 0
    # the subprocess clock can cross midnight; accept either day
    assert "Used:      3/5" in result.stdout or "Used:      0/5" in result.stdout


def test_history(tmp_cwd):
    _write_config(tmp_cwd)
    store = SQLiteMemoryStore(tmp_cwd / "store.db")
    scope = MemoryScope.thread("alice", "t1")
    store.append_turn(scope, ConversationTurn(role="user", text="hello"))
    store.append_turn(scope, ConversationTurn(role="assistant", text="hi there"))
    store.save_summary(scope, RollingSummary(summary="They greeted each other.", covers_turns=0))
    store.close()

    result = _run_cli("history", "alice", "t1", "--limit", "1")
    assert result.returncode == 0
    assert "They greeted each other." in result.stdout
    assert "assistant: hi there" in result.stdout
    assert "user: hello" not in result.stdout


def test_profile(tmp_cwd):
    _write_config(tmp_cwd)
    store = SQLiteMemoryStore(tmp_cwd / "store.db")
    store.save_profile(UserProfile(
        identity="alice", group_id="g1", profile_summary="Likes trains.",
        preferences={"food": "ramen"}, affinity=0.8, exchanges=12,
    ))
    store.close()

    result = _run_cli("profile", "alice", "--group", "g1")
    assert result.returncode == 0
    assert "Likes trains." in result.stdout
    assert "food: ramen" in result.stdout
    assert "(close)" in result.stdout

    missing = _run_cli("profile", "alice")
    assert "No profile stored" in missing.stdout


def test_no_command_prints_help(tmp_cwd):
    result = _run_cli()
    assert result.returncode == 1
    assert "usage" in result.stdout.lower()
