from __future__ import annotations

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from roundkeeper.api.routers.track_analytics import get_analytics_transport
from roundkeeper.app import app
from roundkeeper.config import reset_settings_cache


@pytest.fixture
def forward(monkeypatch):
    monkeypatch.setenv("POSTHOG_API_KEY", "phc_test")
    monkeypatch.setenv("POSTHOG_API_HOST", "https://posthog.example")
    reset_settings_cache()
    state: dict = {"status": 200, "requests": []}

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        return httpx.Response(state["status"], text="upstream says no")

    transport = httpx.MockTransport(handler)
    app.dependency_overrides[get_analytics_transport] = lambda: transport
    yield state, TestClient(app)
    app.dependency_overrides.pop(get_analytics_transport, None)


def test_preflight_returns_permissive_cors(forward):
    _, client = forward
    response = client.options("/functions/v1/track-analytics")
    assert response.status_code == 204
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "POST, OPTIONS"


@pytest.mark.parametrize(
    "body",
    [{"properties": {"a": 1}}, {"event": "round_started"}, {"event": "", "properties": {}}],
)
def test_missing_event_data_is_rejected(forward, body):
    state, client = forward
    response = client.post("/functions/v1/track-analytics", json=body)
    assert response.status_code == 400
    assert response.json() == {"error": "Missing required event data"}
    assert state["requests"] == []


def test_event_is_forwarded_to_posthog(forward):
    state, client = forward
    response = client.post(
        "/functions/v1/track-analytics",
        json={
            "event": "round_completion_sequence_started",
            "properties": {"round_id": "r1", "distinct_id": "from-props"},
            "timestamp": "2024-05-01T08:00:00Z",
        },
    )

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert response.headers["access-control-allow-origin"] == "*"

    [upstream] = state["requests"]
    assert str(upstream.url) == "https://posthog.example/i/v0/e/"
    assert json.loads(upstream.content) == {
        "api_key": "phc_test",
        "event": "round_completion_sequence_started",
        "distinct_id": "from-props",
        "properties": {"round_id": "r1", "distinct_id": "from-props"},
        "timestamp": "2024-05-01T08:00:00Z",
    }


def test_top_level_distinct_id_wins_and_defaults_to_anonymous(forward):
    state, client = forward
    client.post(
        "/functions/v1/track-analytics",
        json={"event": "e", "distinct_id": "p1", "properties": {"x": 1}},
    )
    client.post("/functions/v1/track-analytics", json={"event": "e", "properties": {"x": 1}})

    first, second = (json.loads(r.content) for r in state["requests"])
    assert first["distinct_id"] == "p1"
    assert second["distinct_id"] == "anonymous"
    assert "timestamp" not in second


def test_upstream_failure_returns_500(forward):
    state, client = forward
    state["status"] = 503
    response = client.post(
        "/functions/v1/track-analytics", json={"event": "e", "properties": {"x": 1}}
    )
    assert response.status_code == 500
    assert response.json() == {"error": "PostHog API error: 503"}
