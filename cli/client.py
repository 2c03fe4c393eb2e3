from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Sequence

import httpx
import typer

from cli.config import CLIConfig

_TERMINAL_STATES = {"completed", "cancelled", "failed"}


class ApiClient:
    """Minimal HTTP client for the bucket store service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=30.0)

    def close(self) -> None:
        self._client.close()

    def start_session(self, location: str, max_count: Optional[int] = None) -> str:
        payload: Dict[str, Any] = {"location": location}
        if max_count is not None:
            payload["max_count"] = max_count
        response = self._request("POST", "/sessions", json=payload)
        session_id = response.json().get("session_id")
        if not isinstance(session_id, str):
            raise typer.BadParameter("Unexpected response payload when starting a session.")
        return session_id

    def get_session(self, session_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/sessions/{session_id}", missing=f"Session {session_id}").json()

    def cancel_session(self, session_id: str) -> Dict[str, Any]:
        return self._request(
            "DELETE", f"/sessions/{session_id}", missing=f"Session {session_id}"
        ).json()

    def poll_session(self, session_id: str, interval: float, timeout: float) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        last_payload: Dict[str, Any] | None = None
        while time.monotonic() <= deadline:
            last_payload = self.get_session(session_id)
            if last_payload.get("state") in _TERMINAL_STATES:
                return last_payload
            time.sleep(interval)
        typer.secho(
            (
                f"Timed out waiting for session {session_id}. "
                f"Last state: {last_payload.get('state') if last_payload else 'unknown'}"
            ),
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    def list_partitions(self) -> Dict[str, int]:
        return self._request("GET", "/partitions").json()

    def latest(self, partition: str, limit: int) -> List[Dict[str, Any]]:
        return self._request(
            "GET", f"/partitions/{partition}/latest", params={"limit": limit}
        ).json()

    def aggregate(
        self,
        partition: str,
        boundaries: Sequence[float],
        result_limit: int,
        min_value: float,
    ) -> List[Dict[str, Any]]:
        payload = {
            "boundaries": list(boundaries),
            "result_limit": result_limit,
            "min_value": min_value,
        }
        return self._request("POST", f"/partitions/{partition}/aggregate", json=payload).json()

    def classify(self, value: float) -> Dict[str, Any]:
        return self._request("GET", "/classify", params={"value": value}).json()

    def _request(self, method: str, url: str, missing: str | None = None, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
            if missing is not None and response.status_code == 404:
                raise typer.BadParameter(f"{missing} was not found.")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(f"Could not reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1) from exc
        return response

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
