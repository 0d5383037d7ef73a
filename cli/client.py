from __future__ import annotations

from typing import Any, Dict, List

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the weather monitor service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def get_analytics(self, hours: int) -> Dict[str, Any]:
        return self._get_json("/weather/analytics", params={"hours": hours})

    def get_recent(self, limit: int) -> List[Dict[str, Any]]:
        return self._get_json("/weather/recent", params={"limit": limit})

    def get_city_readings(self, city: str, limit: int) -> List[Dict[str, Any]]:
        return self._get_json(f"/weather/cities/{city}/readings", params={"limit": limit})

    def get_status(self) -> Dict[str, Any]:
        return self._get_json("/ingestion/status")

    def trigger_ingestion(self) -> Dict[str, Any]:
        try:
            response = self._client.post("/ingestion/run")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def _get_json(self, path: str, params: Dict[str, Any] | None = None) -> Any:
        try:
            response = self._client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

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
