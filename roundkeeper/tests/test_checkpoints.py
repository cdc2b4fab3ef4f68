from __future__ import annotations

import json
from datetime import timedelta

import pytest

from roundkeeper.completion import (
    CheckpointStore,
    FailureSnapshot,
    StepName,
    StepProgress,
    StepStatus,
)
from roundkeeper.errors import StorageError
from roundkeeper.services.session import AuthSnapshot
from roundkeeper.storage import InMemoryKeyValueStore, checkpoint_key


class _BrokenStore(InMemoryKeyValueStore):
    async def put(self, key: str, value: str) -> None:
        raise StorageError("disk full")


@pytest.mark.anyio
async def test_save_and_load_round_trip(checkpoints, kv_store, clock):
    progress = {
        StepName.SAVE_CURRENT_HOLE: StepProgress.completed(),
        StepName.RETRIEVE_ALL_HOLES: StepProgress.failed("boom"),
    }
    failure = FailureSnapshot(
        step=StepName.RETRIEVE_ALL_HOLES,
        error="boom",
        auth=AuthSnapshot(has_valid_token=True, token_age_minutes=-5.0),
    )

    saved = await checkpoints.save("r1", progress, failure)
    loaded = await checkpoints.load("r1")

    assert saved is not None
    assert set(saved.step_progress) == set(progress)
    assert loaded is not None
    assert set(loaded.step_progress) == set(progress)
    assert loaded.status_of(StepName.SAVE_CURRENT_HOLE) is StepStatus.COMPLETED
    assert loaded.status_of(StepName.RETRIEVE_ALL_HOLES) is StepStatus.FAILED
    assert loaded.last_failure is not None
    assert loaded.last_failure.step is StepName.RETRIEVE_ALL_HOLES
    assert loaded.last_failure.auth.has_valid_token is True
    assert loaded.last_failure.auth.token_age_minutes == -5.0
    assert loaded.expires_at == clock.now + timedelta(hours=24)

    stored = json.loads(await kv_store.get(checkpoint_key("r1")))
    assert stored["roundId"] == "r1"
    assert stored["stepProgress"]["saveCurrentHole"]["status"] == "completed"
    assert stored["lastFailure"]["errorCategory"] == "processing"
    assert stored["lastFailure"]["authContext"] == {
        "hasValidToken": True,
        "tokenAgeMinutes": -5.0,
    }


@pytest.mark.anyio
async def test_sliding_policy_extends_expiry_on_every_save(kv_store, clock):
    store = CheckpointStore(kv_store, ttl=timedelta(hours=24), policy="sliding", clock=clock)
    first = await store.save("r1", {StepName.SAVE_CURRENT_HOLE: StepProgress.pending()})

    clock.advance(hours=20)
    second = await store.save("r1", {StepName.SAVE_CURRENT_HOLE: StepProgress.completed()})

    assert second.started_at == first.started_at
    assert second.expires_at == clock.now + timedelta(hours=24)

    clock.advance(hours=10)
    assert await store.load("r1") is not None


@pytest.mark.anyio
async def test_fixed_policy_pins_expiry_at_first_write(kv_store, clock):
    store = CheckpointStore(kv_store, ttl=timedelta(hours=24), policy="fixed", clock=clock)
    first = await store.save("r1", {StepName.SAVE_CURRENT_HOLE: StepProgress.pending()})

    clock.advance(hours=20)
    second = await store.save("r1", {StepName.SAVE_CURRENT_HOLE: StepProgress.completed()})
    assert second.expires_at == first.expires_at

    clock.advance(hours=10)
    assert await store.load("r1") is None
    assert checkpoint_key("r1") not in kv_store.keys()


@pytest.mark.anyio
async def test_expired_checkpoint_is_deleted(checkpoints, kv_store, clock):
    await checkpoints.save("r1", {StepName.SAVE_CURRENT_HOLE: StepProgress.completed()})
    clock.advance(hours=24, seconds=1)

    assert await checkpoints.load("r1") is None
    assert checkpoint_key("r1") not in kv_store.keys()


@pytest.mark.anyio
async def test_corrupt_checkpoint_is_treated_as_absent(checkpoints, kv_store):
    await kv_store.put(checkpoint_key("r1"), '{"roundId": "r1", "stepProgress": 7}')

    assert await checkpoints.load("r1") is None
    assert checkpoint_key("r1") not in kv_store.keys()


@pytest.mark.anyio
async def test_unknown_step_names_are_ignored(checkpoints, kv_store, clock):
    expires = (clock.now + timedelta(hours=1)).isoformat()
    await kv_store.put(
        checkpoint_key("r1"),
        json.dumps(
            {
                "roundId": "r1",
                "startedAt": clock.now.isoformat(),
                "expiresAt": expires,
                "stepProgress": {
                    "saveCurrentHole": {"status": "completed"},
                    "legacyStep": {"status": "failed"},
                },
            }
        ),
    )

    loaded = await checkpoints.load("r1")

    assert loaded is not None
    assert list(loaded.step_progress) == [StepName.SAVE_CURRENT_HOLE]


@pytest.mark.anyio
async def test_save_failure_is_swallowed(clock, caplog):
    store = CheckpointStore(_BrokenStore(), clock=clock)

    result = await store.save("r1", {StepName.CLEANUP: StepProgress.pending()})

    assert result is None
    assert "failed to save checkpoint" in caplog.text


@pytest.mark.anyio
async def test_clear_removes_record(checkpoints, kv_store):
    await checkpoints.save("r1", {StepName.CLEANUP: StepProgress.completed()})
    await checkpoints.clear("r1")
    assert kv_store.keys() == []


def test_unknown_policy_is_rejected(kv_store):
    with pytest.raises(ValueError):
        CheckpointStore(kv_store, policy="forever")  # type: ignore[arg-type]
