"""Prometheus registry and HTTP request metrics.

Requests are labelled by route template (``/api/rounds/{round_id}/complete``)
so round identifiers never become label values.
"""

from __future__ import annotations

import os
import time
from typing import Any, Awaitable, Callable

from fastapi import Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from roundkeeper import __version__

REGISTRY = CollectorRegistry()
REQUESTS = Counter(
    "roundkeeper_requests_total",
    "HTTP requests by route template",
    ["route", "method", "status"],
    registry=REGISTRY,
)
LATENCY = Histogram(
    "roundkeeper_request_latency_seconds",
    "Request latency (seconds)",
    ["route", "method"],
    registry=REGISTRY,
)

BUILD_VERSION = os.getenv("BUILD_VERSION", __version__)
GIT_SHA = os.getenv("GIT_SHA", "unknown")

METRICS_PATH = "/metrics"
UNMATCHED_ROUTE = "<unmatched>"

ASGIApp = Callable[..., Awaitable[Any]]


async def metrics_app(_req: Request | None = None) -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


def route_template(scope: dict[str, Any]) -> str:
    # The router stores the matched route in the scope once dispatch happened.
    route = scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


class MetricsMiddleware:
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: ASGIApp,
        send: ASGIApp,
    ) -> None:
        if scope.get("type") != "http" or scope.get("path") == METRICS_PATH:
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        status_code = 500

        async def _send(message: dict[str, Any]) -> None:
            nonlocal status_code
            if message.get("type") == "http.response.start":
                status_code = message.get("status", 200)
            await send(message)

        try:
            await self.app(scope, receive, _send)
        finally:
            route = route_template(scope)
            method = scope.get("method", "GET")
            LATENCY.labels(route=route, method=method).observe(
                time.perf_counter() - started
            )
            REQUESTS.labels(route=route, method=method, status=str(status_code)).inc()


__all__ = [
    "REGISTRY",
    "REQUESTS",
    "LATENCY",
    "BUILD_VERSION",
    "GIT_SHA",
    "METRICS_PATH",
    "metrics_app",
    "route_template",
    "MetricsMiddleware",
]
