"""Results endpoint client for analysis runs."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

from analysis_poller.config import Config
from analysis_poller.exceptions import BackendError, ConfigurationError, MalformedResponseError
from analysis_poller.logging import get_logger
from analysis_poller.subtools import (
    PollingRecommendation,
    RunStatus,
    normalize_recommendation,
    normalize_run_status,
)

log = get_logger(__name__)

_FAILED_ENTRY_STATUSES = {"failed", "error"}


@dataclass
class PollResponse:
    """Normalized body of one results poll."""

    status: RunStatus = RunStatus.RUNNING
    results: dict[str, Any] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    timestamp: str | None = None
    recommendation: PollingRecommendation | None = None
    error: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


def snake_to_camel(value: Any) -> Any:
    """Recursively camelCase dict keys; ``var_95_daily`` becomes ``var95Daily``."""
    if isinstance(value, list):
        return [snake_to_camel(item) for item in value]
    if isinstance(value, dict):
        converted: dict[str, Any] = {}
        for key, item in value.items():
            camel = re.sub(r"_([a-z])", lambda m: m.group(1).upper(), str(key))
            camel = re.sub(r"_(\d)", r"\1", camel)
            converted[camel] = snake_to_camel(item)
        return converted
    return value


def _parse_entry(name: str, entry: Any) -> tuple[Any, str | None]:
    """Return ``(payload, failure_message)`` for one subtool entry."""
    if not isinstance(entry, dict):
        return None, None
    if "status" not in entry:
        return snake_to_camel(entry), None

    status = str(entry.get("status") or "").strip().lower()
    if status in _FAILED_ENTRY_STATUSES:
        message = entry.get("error") or entry.get("message") or "subtool failed"
        return None, str(message)
    if status != "ready" or entry.get("result") in (None, "", False):
        return None, None

    raw = entry["result"]
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            log.debug("skipping unparseable subtool result", subtool=name)
            return None, None
    return snake_to_camel(raw), None


def parse_poll_response(data: Any) -> PollResponse:
    """Normalize a decoded results body."""
    if not isinstance(data, dict):
        raise MalformedResponseError("Results response is not a JSON object")

    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    response = PollResponse(
        status=normalize_run_status(data.get("status")),
        timestamp=str(data["timestamp"]) if data.get("timestamp") else None,
        recommendation=normalize_recommendation(
            metadata.get("pollingRecommendation", metadata.get("polling_recommendation"))
        ),
        error=str(data.get("error") or ""),
        metadata=metadata,
    )

    entries = data.get("results")
    if entries is None:
        return response
    if not isinstance(entries, dict):
        raise MalformedResponseError("Results field is not an object")
    for name, entry in entries.items():
        payload, failure = _parse_entry(name, entry)
        if payload is not None:
            response.results[name] = payload
        elif failure is not None:
            response.failures[name] = failure
    return response


class AnalysisClient:
    """HTTP client for ``GET /session/{run_id}/results``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        auth_token: str = "",
    ):
        self.base_url = (base_url or "").strip().rstrip("/")
        if not self.base_url:
            raise ConfigurationError("Results API base_url is not configured")
        headers = {"Content-Type": "application/json"}
        if auth_token.strip():
            headers["Authorization"] = f"Bearer {auth_token.strip()}"
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers)

    @classmethod
    def from_config(cls, config: Config) -> "AnalysisClient":
        return cls(
            config.api.base_url,
            timeout=config.api.timeout,
            auth_token=config.api.auth_token,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_results(self, run_id: str, since: str | None = None) -> PollResponse:
        """Poll a run's results, optionally only those newer than ``since``."""
        params: dict[str, Any] = {"since": since} if since else {}
        url = f"{self.base_url}/session/{run_id}/results"
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BackendError(
                f"Results request failed with HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise BackendError(f"Results request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError("Results response is not valid JSON") from e
        return parse_poll_response(data)
