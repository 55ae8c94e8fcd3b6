"""CLI smoke tests -- commands run in-process against a temporary store."""
import json
import sys

import pytest

from continuum import bridge
from continuum.cli import main
from continuum.protocol import USAGE_GUIDE


def run_cli(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["continuum", *argv])
    main()


def test_status_json(engine, monkeypatch, capsys):
    bridge.store_single("Counted once")
    run_cli(monkeypatch, "status", "--json")
    info = json.loads(capsys.readouterr().out)
    assert info["session_id"] == "test-session"
    assert info["counts"]["episodic"] == 1


def test_session_flag_overrides_environment(engine, monkeypatch, capsys):
    run_cli(monkeypatch, "--session-id", "cli-session", "status", "--json")
    assert json.loads(capsys.readouterr().out)["session_id"] == "cli-session"


def test_retrieve_prints_narrative(engine, monkeypatch, capsys):
    run_cli(monkeypatch, "retrieve")
    assert capsys.readouterr().out.startswith("# CONTINUITY BRIEFING")


def test_cleanup_lists_candidates(engine, monkeypatch, capsys):
    key = bridge.store_single("Left hanging...")["memory_id"]
    run_cli(monkeypatch, "cleanup")
    out = capsys.readouterr().out
    assert "1 candidate(s) for review" in out
    assert key in out


def test_template_guide(monkeypatch, capsys):
    run_cli(monkeypatch, "template", "--guide")
    assert capsys.readouterr().out.strip() == USAGE_GUIDE


def test_endpoints_override(monkeypatch, capsys):
    run_cli(monkeypatch, "endpoints", "--endpoints", "local=http://localhost:1234/v1:qwen")
    assert capsys.readouterr().out.strip() == "local: http://localhost:1234/v1 (default model: qwen)"


def test_status_reports_unready_storage(tmp_continuum_home, monkeypatch, capsys):
    empty = tmp_continuum_home / "empty.db"
    empty.touch()
    monkeypatch.setenv("CONTINUUM_DB_PATH", str(empty))
    bridge.reset_memory()
    with pytest.raises(SystemExit) as exc:
        run_cli(monkeypatch, "status")
    assert exc.value.code == 1
    assert "Database not initialized" in capsys.readouterr().err
    bridge.reset_memory()
