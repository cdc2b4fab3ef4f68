"""Shared pytest fixtures for roundkeeper tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Mapping, Tuple

import pytest
from fastapi.testclient import TestClient

from roundkeeper.api import deps
from roundkeeper.app import app
from roundkeeper.completion import CheckpointStore, CompletionOrchestrator
from roundkeeper.config import reset_settings_cache
from roundkeeper.repositories import InMemoryRoundsRepository
from roundkeeper.rounds import HoleRecord, RoundTracker, ShotOutcome, ShotType
from roundkeeper.services.insights import InsightsService
from roundkeeper.services.retry import RetryPolicy
from roundkeeper.storage import InMemoryKeyValueStore


class RecordingObserver:
    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, object]]] = []

    def capture(self, event: str, properties: Mapping[str, object]) -> None:
        self.events.append((event, dict(properties)))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def of(self, event: str) -> List[Dict[str, object]]:
        return [props for name, props in self.events if name == event]


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_hole(strokes: int, *, par: int = 4) -> HoleRecord:
    record = HoleRecord(par=par, distance_yards=380, hole_index=7)
    for idx in range(strokes):
        shot_type = ShotType.TEE_SHOT if idx == 0 else ShotType.PUTT
        record = record.with_shot(shot_type, ShotOutcome.ON_TARGET)
    return record


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_settings(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    reset_settings_cache()
    deps.reset_dependencies()
    yield
    reset_settings_cache()
    deps.reset_dependencies()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def repo() -> InMemoryRoundsRepository:
    return InMemoryRoundsRepository()


@pytest.fixture
def tracker(kv_store: InMemoryKeyValueStore) -> RoundTracker:
    return RoundTracker(kv_store)


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(timeout_s=5.0, delay_scale=0.0)


@pytest.fixture
def checkpoints(kv_store: InMemoryKeyValueStore, clock: FakeClock) -> CheckpointStore:
    return CheckpointStore(kv_store, clock=clock)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def insights(repo: InMemoryRoundsRepository, retry_policy: RetryPolicy) -> InsightsService:
    return InsightsService(repo, retry=retry_policy)


@pytest.fixture
def orchestrator(
    tracker: RoundTracker,
    repo: InMemoryRoundsRepository,
    checkpoints: CheckpointStore,
    insights: InsightsService,
    observer: RecordingObserver,
    retry_policy: RetryPolicy,
) -> CompletionOrchestrator:
    return CompletionOrchestrator(
        tracker=tracker,
        repo=repo,
        checkpoints=checkpoints,
        insights=insights,
        observer=observer,
        retry=retry_policy,
    )


@pytest.fixture
def seed_round(
    repo: InMemoryRoundsRepository, tracker: RoundTracker
) -> Callable[..., Awaitable[str]]:
    """Create a remote round and store local holes with the given stroke counts."""

    async def _seed(
        strokes: Mapping[int, int], *, par: int | None = 72, course_id: str = "course-1"
    ) -> str:
        repo.add_course(course_id, par=par)
        record = await repo.create_round(profile_id="player-1", course_id=course_id)
        for hole_number, count in strokes.items():
            await tracker.save_hole(record.id, hole_number, make_hole(count))
        return record.id

    return _seed


@pytest.fixture
def api_client(
    kv_store: InMemoryKeyValueStore,
    repo: InMemoryRoundsRepository,
    tracker: RoundTracker,
    insights: InsightsService,
    orchestrator: CompletionOrchestrator,
):
    app.dependency_overrides[deps.get_tracker] = lambda: tracker
    app.dependency_overrides[deps.get_rounds_repository] = lambda: repo
    app.dependency_overrides[deps.get_insights_service] = lambda: insights
    app.dependency_overrides[deps.get_orchestrator] = lambda: orchestrator
    with TestClient(app) as client:
        yield client
    for dependency in (
        deps.get_tracker,
        deps.get_rounds_repository,
        deps.get_insights_service,
        deps.get_orchestrator,
    ):
        app.dependency_overrides.pop(dependency, None)
