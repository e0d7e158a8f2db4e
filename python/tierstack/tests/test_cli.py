"""
Tests for the tierctl dispatcher.
"""

import sys

import pytest

from tierstack.cli import tierctl


@pytest.mark.parametrize("argv", [["tierctl"], ["tierctl", "os"]])
def test_unknown_or_missing_subcommand_is_rejected(argv, monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", argv)
    monkeypatch.setattr(
        tierctl.subprocess, "call", lambda cmd: pytest.fail(f"spawned {cmd}")
    )
    with pytest.raises(SystemExit) as excinfo:
        tierctl.main()
    assert excinfo.value.code == 1
    assert "Subcommands: stack" in capsys.readouterr().out


def test_subcommand_runs_as_module(monkeypatch):
    calls = []
    monkeypatch.setattr(sys, "argv", ["tierctl", "stack", "plan", "--config", "s.yaml"])
    monkeypatch.setattr(tierctl.subprocess, "call", lambda cmd: calls.append(cmd) or 3)
    with pytest.raises(SystemExit) as excinfo:
        tierctl.main()
    assert excinfo.value.code == 3
    assert calls == [
        [sys.executable, "-m", "tierstack.cli.stack", "plan", "--config", "s.yaml"]
    ]
