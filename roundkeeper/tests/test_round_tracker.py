import pytest

from roundkeeper.errors import StorageError
from roundkeeper.rounds import CurrentRound, HoleRecord, ShotOutcome, ShotType
from roundkeeper.storage import CURRENT_ROUND_KEY, holes_key


@pytest.mark.anyio
async def test_add_and_remove_shots_persist(tracker, kv_store):
    await tracker.add_shot("r1", 1, ShotType.TEE_SHOT, ShotOutcome.ON_TARGET)
    await tracker.add_shot("r1", 1, ShotType.PUTT, ShotOutcome.SLIGHTLY_OFF)
    await tracker.add_shot("r1", 1, ShotType.PUTT, ShotOutcome.SLIGHTLY_OFF)

    hole = await tracker.remove_shot("r1", 1, ShotType.PUTT, ShotOutcome.SLIGHTLY_OFF)

    assert hole.total_strokes == 2
    stored = await tracker.get_hole("r1", 1)
    assert [shot.type for shot in stored.shots] == [ShotType.TEE_SHOT, ShotType.PUTT]
    assert holes_key("r1") in kv_store.keys()


@pytest.mark.anyio
async def test_remove_shot_without_match_does_not_write(tracker, kv_store):
    hole = await tracker.remove_shot("r1", 4, ShotType.CHIP, ShotOutcome.ON_TARGET)
    assert hole == HoleRecord()
    assert holes_key("r1") not in kv_store.keys()


@pytest.mark.anyio
async def test_save_hole_merges_into_collection(tracker):
    await tracker.save_hole("r1", 1, HoleRecord(par=4))
    collection = await tracker.save_hole("r1", 2, HoleRecord(par=3))
    assert sorted(collection.holes) == [1, 2]


@pytest.mark.anyio
async def test_corrupt_hole_data_raises_storage_error(tracker, kv_store):
    await kv_store.put(holes_key("r1"), "{not json")
    with pytest.raises(StorageError):
        await tracker.load_holes("r1")


@pytest.mark.anyio
async def test_current_round_pointer_and_clear(tracker, kv_store):
    await tracker.set_current_round(CurrentRound(round_id="r1", course_id="c1", current_hole=7))
    await tracker.save_hole("r1", 7, HoleRecord(par=4))

    current = await tracker.get_current_round()
    assert current is not None
    assert current.round_id == "r1"
    assert current.current_hole == 7

    await tracker.clear_round("r1")

    assert await tracker.get_current_round() is None
    assert await tracker.load_holes("r1") is None
    assert CURRENT_ROUND_KEY not in kv_store.keys()


@pytest.mark.anyio
async def test_unreadable_current_round_is_ignored(tracker, kv_store):
    await kv_store.put(CURRENT_ROUND_KEY, "garbage")
    assert await tracker.get_current_round() is None


@pytest.mark.anyio
async def test_move_to_hole_only_follows_the_tracked_round(tracker):
    await tracker.set_current_round(CurrentRound(round_id="r1", current_hole=1))

    await tracker.move_to_hole("r1", 4)
    await tracker.move_to_hole("other", 9)

    current = await tracker.get_current_round()
    assert current.round_id == "r1"
    assert current.current_hole == 4


@pytest.mark.anyio
async def test_move_to_hole_without_pointer_is_a_no_op(tracker, kv_store):
    await tracker.move_to_hole("r1", 4)
    assert CURRENT_ROUND_KEY not in kv_store.keys()
