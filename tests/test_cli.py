from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest
from typer.testing import CliRunner

from cli.app import app
from cli.config import load_config


class StubClient:
    def __init__(self, config, session_id: str = "session-123") -> None:
        self.config = config
        self.session_id = session_id
        self.started: List[tuple[str, int]] = []
        self.poll_calls: List[tuple[str, float, float]] = []
        self.aggregate_calls: List[tuple[str, list, int, float]] = []
        self.session_payload: Dict[str, Any] = {
            "session_id": session_id,
            "location": "laboratory",
            "state": "completed",
            "max_count": 50,
            "inserted_count": 50,
            "skipped_count": 0,
            "per_partition": {"temp_lt_0": 20, "temp_gte_20": 30},
            "created_at": "2024-01-01T00:00:00Z",
            "finished_at": "2024-01-01T00:00:01Z",
            "error": None,
        }
        self.closed = False

    def start_session(self, location: str, max_count: Optional[int] = None) -> str:
        self.started.append((location, max_count))
        return self.session_id

    def poll_session(self, session_id: str, interval: float, timeout: float) -> Dict[str, Any]:
        self.poll_calls.append((session_id, interval, timeout))
        return self.session_payload

    def get_session(self, session_id: str) -> Dict[str, Any]:
        payload = self.session_payload.copy()
        payload["session_id"] = session_id
        return payload

    def cancel_session(self, session_id: str) -> Dict[str, Any]:
        payload = self.get_session(session_id)
        payload["state"] = "cancelled"
        return payload

    def list_partitions(self) -> Dict[str, int]:
        return {"temp_gte_20": 30, "temp_lt_0": 20}

    def latest(self, partition: str, limit: int) -> List[Dict[str, Any]]:
        return [
            {"_id": "abc", "location": "laboratory", "value": 31.5, "observed_at": "2024-01-01T00:00:01Z"}
        ][:limit]

    def aggregate(self, partition, boundaries, result_limit, min_value) -> List[Dict[str, Any]]:
        self.aggregate_calls.append((partition, list(boundaries), result_limit, min_value))
        return [
            {"label": "[20, 25)", "count": 2, "documents": []},
            {"label": "other", "count": 1, "documents": []},
        ]

    def classify(self, value: float) -> Dict[str, Any]:
        return {"value": value, "label": "gte_20", "partition": "temp_gte_20"}

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub(monkeypatch) -> StubClient:
    client = StubClient(config=None)

    def factory(config):
        client.config = config
        return client

    monkeypatch.setattr("cli.app.ApiClient", factory)
    return client


def test_ingest_without_wait(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["ingest", "--location", "roof", "--count", "10"])

    assert result.exit_code == 0
    assert "Session started" in result.stdout
    assert stub.started == [("roof", 10)]
    assert not stub.poll_calls
    assert stub.closed is True


def test_ingest_with_wait_uses_global_poll_settings(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(
        app, ["--poll-interval", "0.1", "--timeout", "5", "ingest", "--wait"]
    )

    assert result.exit_code == 0
    assert "Ingestion Session" in result.stdout
    assert "temp_gte_20: 30" in result.stdout
    assert stub.started == [("laboratory", None)]
    assert stub.poll_calls == [("session-123", 0.1, 5.0)]


def test_ingest_wait_exits_nonzero_on_failed_session(runner: CliRunner, stub: StubClient) -> None:
    stub.session_payload["state"] = "failed"
    stub.session_payload["error"] = "disk full"

    result = runner.invoke(app, ["ingest", "--wait"])

    assert result.exit_code == 1
    assert "disk full" in result.stdout


def test_session_and_cancel_commands(runner: CliRunner, stub: StubClient) -> None:
    shown = runner.invoke(app, ["session", "session-999"])
    cancelled = runner.invoke(app, ["cancel", "session-999"])

    assert shown.exit_code == 0
    assert "session_id: session-999" in shown.stdout
    assert cancelled.exit_code == 0
    assert "state: cancelled" in cancelled.stdout


def test_partitions_and_latest_commands(runner: CliRunner, stub: StubClient) -> None:
    partitions = runner.invoke(app, ["partitions"])
    latest = runner.invoke(app, ["latest", "temp_gte_20", "--limit", "5"])

    assert partitions.exit_code == 0
    assert "temp_lt_0: 20" in partitions.stdout
    assert latest.exit_code == 0
    assert "value=31.5" in latest.stdout


def test_aggregate_command_passes_repeated_boundaries(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(
        app,
        ["aggregate", "temp_gte_20", "-B", "20", "-B", "25", "--limit", "3", "--min-value", "20"],
    )

    assert result.exit_code == 0
    assert "[20, 25): 2" in result.stdout
    assert "other: 1" in result.stdout
    assert stub.aggregate_calls == [("temp_gte_20", [20.0, 25.0], 3, 20.0)]


def test_classify_command(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["classify", "25"])

    assert result.exit_code == 0
    assert "gte_20 (temp_gte_20)" in result.stdout


def test_load_config_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://example.test:9000/")
    monkeypatch.setenv("CLI_POLL_INTERVAL", "-3")
    monkeypatch.setenv("SENSOR_LOCATION", "greenhouse")

    config = load_config()

    assert config.base_url == "http://example.test:9000"
    assert config.poll_interval == 0.5
    assert config.location == "greenhouse"
