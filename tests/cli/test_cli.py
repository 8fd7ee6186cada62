"""Tests for the a22-ingestor command line interface."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml
from click.testing import CliRunner

from a22_ingestor.cli import main as cli_main
from a22_ingestor.exceptions import ConfigurationError
from a22_ingestor.models.base import session_scope
from a22_ingestor.models.tables import WebserviceRecord
from a22_ingestor.sync.bulk import BulkLoadReport, WorkerResult
from a22_ingestor.sync.windows import SyncWindow
from a22_ingestor.utils.config import get_settings


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def configured_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "settings.base.yaml").write_text(
        yaml.safe_dump({"version": 1, "required_env": ["A22_DATABASE_URL"]})
    )
    monkeypatch.setenv("A22_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("A22_WEBSERVICE__URL", "https://a22.example.test")
    monkeypatch.setenv("A22_WEBSERVICE__USERNAME", "a22-user")
    monkeypatch.setenv("A22_WEBSERVICE__PASSWORD", "a22-secret")
    get_settings(reload=True)


class _FakeClient:
    def __enter__(self) -> _FakeClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        return None


@pytest.fixture
def captured_bulk(monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
    captured: dict[str, Any] = {}

    def _fake_open(webservice, *, sync=None, **kwargs):
        captured["webservice"] = webservice
        return _FakeClient()

    def _fake_run_bulk_load(window, *, client, sync, session_factory):
        captured["window"] = window
        captured["workers"] = sync.worker_count
        return BulkLoadReport(
            window=window,
            workers=[WorkerResult(index=0, window=window, events_written=12)],
            bounds={},
            stations=3,
        )

    monkeypatch.setattr(cli_main.SourceClient, "open", _fake_open)
    monkeypatch.setattr(cli_main, "run_bulk_load", _fake_run_bulk_load)
    return captured


def test_month_runs_bulk_load_for_utc_month(runner, configured_env, captured_bulk) -> None:
    result = runner.invoke(cli_main.cli, ["month", "2023", "6"])

    assert result.exit_code == 0, result.output
    assert captured_bulk["window"] == SyncWindow(1685577600, 1688169600)
    assert captured_bulk["workers"] == 8
    assert captured_bulk["webservice"].username == "a22-user"
    assert "Loaded 12 events for 3 stations" in result.output


def test_interval_runs_bulk_load(runner, configured_env, captured_bulk) -> None:
    result = runner.invoke(cli_main.cli, ["interval", "1700000000", "1700086400"])

    assert result.exit_code == 0, result.output
    assert captured_bulk["window"] == SyncWindow(1700000000, 1700086400)


@pytest.mark.parametrize(
    "args",
    [
        ["month", "1989", "12"],
        ["month", "2023", "13"],
        ["interval", "100", "200"],
        ["interval", "1700000100", "1700000000"],
        ["month", "june", "2023"],
    ],
)
def test_invalid_windows_are_rejected_before_connecting(
    runner, configured_env, captured_bulk, args: list[str]
) -> None:
    result = runner.invoke(cli_main.cli, args)

    assert result.exit_code == 2
    assert captured_bulk == {}


def test_failed_workers_set_exit_code(
    runner, configured_env, captured_bulk, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _failing_run_bulk_load(window, *, client, sync, session_factory):
        return BulkLoadReport(
            window=window,
            workers=[WorkerResult(index=0, window=window, error="StorageError: disk full")],
            bounds={},
            stations=3,
        )

    monkeypatch.setattr(cli_main, "run_bulk_load", _failing_run_bulk_load)

    result = runner.invoke(cli_main.cli, ["month", "2023", "6"])

    assert result.exit_code == 1
    assert "1 of 1 workers failed" in result.output


def test_credentials_fall_back_to_webservice_table(
    monkeypatch: pytest.MonkeyPatch, configured_env
) -> None:
    for name in ("URL", "USERNAME", "PASSWORD"):
        monkeypatch.delenv(f"A22_WEBSERVICE__{name}")
    settings = get_settings(reload=True)

    with session_scope() as session:
        session.add(
            WebserviceRecord(id=1, url="https://db.example.test/", username="db-user", password="db-pw")
        )

    webservice = cli_main.resolve_webservice_settings(settings)

    assert webservice.url == "https://db.example.test"
    assert webservice.username == "db-user"
    assert webservice.password == "db-pw"
    assert webservice.events_path == "/traffico/transiti"


def test_missing_credentials_are_reported(monkeypatch: pytest.MonkeyPatch, configured_env) -> None:
    for name in ("URL", "USERNAME", "PASSWORD"):
        monkeypatch.delenv(f"A22_WEBSERVICE__{name}")
    settings = get_settings(reload=True)

    with pytest.raises(ConfigurationError, match="No web service credentials"):
        cli_main.resolve_webservice_settings(settings)


def test_follow_runs_follower_until_stopped(
    runner, configured_env, monkeypatch: pytest.MonkeyPatch
) -> None:
    started: dict[str, Any] = {}

    class _FakeFollower:
        def __init__(self, webservice, *, sync):
            started["webservice"] = webservice

        def run_forever(self, stop_event):
            started["stop_event"] = stop_event

    monkeypatch.setattr(cli_main, "IncrementalFollower", _FakeFollower)
    monkeypatch.setattr(cli_main, "install_signal_handlers", lambda shutdown: None)

    result = runner.invoke(cli_main.cli, ["follow"])

    assert result.exit_code == 0, result.output
    assert started["webservice"].url == "https://a22.example.test"
    assert started["stop_event"].is_set()


def test_metrics_port_starts_exporter(
    runner, configured_env, captured_bulk, monkeypatch: pytest.MonkeyPatch
) -> None:
    ports: list[int] = []
    monkeypatch.setattr(cli_main, "start_http_server", ports.append)

    result = runner.invoke(cli_main.cli, ["--metrics-port", "9102", "month", "2023", "6"])

    assert result.exit_code == 0, result.output
    assert ports == [9102]
