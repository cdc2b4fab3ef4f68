"""Stateless proxy that forwards client analytics events to PostHog."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

import httpx
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from roundkeeper.config import Settings, get_settings

router = APIRouter(prefix="/functions/v1", tags=["analytics"])

_LOG = logging.getLogger("roundkeeper.api.track_analytics")

POSTHOG_CAPTURE_PATH = "/i/v0/e/"

_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "86400",
}
_CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}


def get_analytics_transport() -> httpx.AsyncBaseTransport | None:
    """Transport for upstream calls; tests override this with a mock."""

    return None


def build_posthog_payload(
    payload: Dict[str, Any], api_key: str | None
) -> Dict[str, Any]:
    properties = payload["properties"]
    distinct_id = (
        payload.get("distinct_id")
        or (properties.get("distinct_id") if isinstance(properties, dict) else None)
        or "anonymous"
    )
    body: Dict[str, Any] = {
        "api_key": api_key,
        "event": payload["event"],
        "distinct_id": distinct_id,
        "properties": properties,
    }
    if payload.get("timestamp"):
        body["timestamp"] = payload["timestamp"]
    return body


@router.options("/track-analytics")
async def track_analytics_preflight() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=_PREFLIGHT_HEADERS)


@router.post("/track-analytics")
async def track_analytics(
    request: Request,
    settings: Settings = Depends(get_settings),
    transport: httpx.AsyncBaseTransport | None = Depends(get_analytics_transport),
) -> JSONResponse:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        payload = None
    if (
        not isinstance(payload, dict)
        or not payload.get("event")
        or not payload.get("properties")
    ):
        _LOG.warning("missing required event data")
        return JSONResponse(
            {"error": "Missing required event data"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    if not settings.posthog_api_key:
        _LOG.error("POSTHOG_API_KEY is not configured")

    body = build_posthog_payload(payload, settings.posthog_api_key)
    url = settings.posthog_api_host.rstrip("/") + POSTHOG_CAPTURE_PATH
    _LOG.info("forwarding %s for %s", body["event"], body["distinct_id"])

    try:
        async with httpx.AsyncClient(
            timeout=settings.operation_timeout_s, transport=transport
        ) as client:
            response = await client.post(url, json=body)
        if response.is_error:
            _LOG.error("PostHog API error: %s %s", response.status_code, response.text)
            raise RuntimeError(f"PostHog API error: {response.status_code}")
    except (httpx.HTTPError, RuntimeError) as exc:
        _LOG.error("error processing analytics event: %s", exc)
        return JSONResponse(
            {"error": str(exc)},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            headers=_CORS_HEADERS,
        )

    return JSONResponse({"success": True}, headers=_CORS_HEADERS)


__all__ = ["router", "get_analytics_transport", "build_posthog_payload"]
