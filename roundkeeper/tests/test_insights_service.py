import pytest

from roundkeeper.services.insights import InsightsService


@pytest.mark.anyio
async def test_trigger_schedules_request_without_waiting(insights, repo):
    received = []

    async def _analyze(body):
        received.append(dict(body))
        return {"ok": True}

    repo.functions["analyze-golf-performance"] = _analyze

    assert insights.trigger("player-1", "r1") is True
    assert received == []

    await insights.drain()

    assert received == [{"userId": "player-1", "roundId": "r1"}]
    assert insights.pending == 0


def test_trigger_without_event_loop_reports_false(repo):
    service = InsightsService(repo)
    assert service.trigger("player-1", "r1") is False


@pytest.mark.anyio
async def test_generate_requires_identifiers(insights, repo, caplog):
    assert await insights.generate(None, "r1") is None
    assert repo.call_count("invoke_function") == 0
    assert "validation" in caplog.text


@pytest.mark.anyio
async def test_generate_retries_once_then_gives_up(insights, repo):
    repo.fail_next("invoke_function", RuntimeError("analysis crashed"), times=5)

    assert await insights.generate("player-1", "r1") is None
    assert repo.call_count("invoke_function") == 2


@pytest.mark.anyio
async def test_insight_readers_extract_fields(insights, repo):
    repo.insights.extend(
        [
            {
                "profile_id": "player-1",
                "round_id": "r1",
                "created_at": "2024-05-01T10:00:00Z",
                "insights": {"summary": "old"},
            },
            {
                "profile_id": "player-1",
                "round_id": "r2",
                "created_at": "2024-05-02T10:00:00Z",
                "insights": {"summary": "fresh", "focus": "putting"},
            },
        ]
    )

    assert await insights.latest_insights("player-1") == {"summary": "fresh", "focus": "putting"}
    assert await insights.latest_insights("player-1", "focus") == "putting"
    assert await insights.latest_insights("player-1", "missing") is None
    assert await insights.round_insights("r1", "summary") == "old"
    assert await insights.round_insights("unknown") is None


@pytest.mark.anyio
async def test_insight_readers_swallow_backend_errors(insights, repo):
    repo.fail_next("latest_insight", PermissionError("rls"))
    assert await insights.round_insights("r1") is None
