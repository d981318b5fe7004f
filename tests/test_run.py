"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest

pytest.importorskip("typer")

from typer.testing import CliRunner

import run
from mediawall.bootstrap import BootstrapError
from mediawall.services.ledger import LikeEntry, LikesLedger


def _setup_serve(monkeypatch, config, **options):
    captured = {}

    monkeypatch.setattr(run, "initialize_app", lambda: config)
    monkeypatch.setattr(
        run,
        "_prepare_logging",
        lambda data_root, level: captured.update(log_root=data_root, log_level=level),
    )

    dummy_app = SimpleNamespace(state=SimpleNamespace())
    monkeypatch.setattr(run, "create_app", lambda app_config: dummy_app)

    class DummyConfig:
        def __init__(self, app, **kwargs):
            captured["app"] = app
            captured["config_kwargs"] = kwargs

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config

        def run(self):
            captured["server_run"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)

    run.serve(**{"host": None, "port": None, "log_level": "info", **options})

    captured["dummy_app"] = dummy_app
    return captured


def test_serve_uses_configured_bind_address(monkeypatch, temp_config):
    captured = _setup_serve(monkeypatch, temp_config)

    assert captured["config_kwargs"]["host"] == temp_config.host
    assert captured["config_kwargs"]["port"] == temp_config.port
    assert captured["config_kwargs"]["log_config"] is None
    assert captured["server_run"] is True
    assert captured["dummy_app"].state.server is not None
    assert captured["log_root"] == temp_config.data_root
    assert captured["log_level"] == logging.INFO


def test_serve_options_override_configuration(monkeypatch, temp_config):
    captured = _setup_serve(monkeypatch, temp_config, host="127.0.0.1", port=9000, log_level="debug")

    assert captured["config_kwargs"]["host"] == "127.0.0.1"
    assert captured["config_kwargs"]["port"] == 9000
    assert captured["log_level"] == logging.DEBUG


def test_media_command_lists_playlist(monkeypatch, temp_config):
    for name in ("b.mp4", "a.jpg", "notes.txt"):
        (temp_config.media_root / name).write_bytes(b"x")
    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)

    result = CliRunner().invoke(run.cli, ["media"])

    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines == ["image  a.jpg", "video  b.mp4"]


def test_media_command_reports_empty_directory(monkeypatch, temp_config):
    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)

    result = CliRunner().invoke(run.cli, ["media"])

    assert result.exit_code == 0
    assert "No media found" in result.output


def test_stats_command_prints_totals(monkeypatch, temp_config):
    ledger = LikesLedger(temp_config.likes_file)
    ledger.record(LikeEntry.build(ip="1.1.1.1", user_agent=None))
    ledger.record(LikeEntry.build(ip="2.2.2.2", user_agent=None))
    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)

    result = CliRunner().invoke(run.cli, ["stats"])

    assert result.exit_code == 0
    assert "Likes: 2" in result.output
    assert "Suggestions: 0" in result.output


def test_bootstrap_failure_exits_with_error(monkeypatch):
    def _fail():
        raise BootstrapError("Data directory is not writable")

    monkeypatch.setattr(run, "initialize_app", _fail)

    result = CliRunner().invoke(run.cli, ["stats"])

    assert result.exit_code == 1
