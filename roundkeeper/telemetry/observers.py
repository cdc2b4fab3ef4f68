"""Telemetry sinks accepted by the completion pipeline."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Protocol

import httpx

__all__ = [
    "TelemetryObserver",
    "NullObserver",
    "LoggingObserver",
    "HttpAnalyticsObserver",
]

_logger = logging.getLogger("roundkeeper.telemetry")


class TelemetryObserver(Protocol):
    def capture(self, event: str, properties: Mapping[str, object]) -> None: ...


class NullObserver:
    def capture(self, event: str, properties: Mapping[str, object]) -> None:
        return None


class LoggingObserver:
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _logger

    def capture(self, event: str, properties: Mapping[str, object]) -> None:
        self._logger.info("telemetry %s %s", event, dict(properties))


class HttpAnalyticsObserver:
    """Forward events to the analytics endpoint without blocking the caller."""

    def __init__(
        self,
        endpoint: str,
        *,
        distinct_id: str | None = None,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._distinct_id = distinct_id or "anonymous"
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def build_payload(
        self, event: str, properties: Mapping[str, object]
    ) -> Dict[str, Any]:
        distinct_id = properties.get("user_id") or self._distinct_id
        return {
            "event": event,
            "distinct_id": str(distinct_id),
            "properties": dict(properties),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def capture(self, event: str, properties: Mapping[str, object]) -> None:
        payload = self.build_payload(event, properties)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._post(payload)
            return
        loop.run_in_executor(None, self._post, payload)

    def _post(self, payload: Mapping[str, Any]) -> None:
        try:
            response = self._client.post(self._endpoint, json=dict(payload))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            _logger.warning("analytics forward failed for %s: %s", payload["event"], exc)
