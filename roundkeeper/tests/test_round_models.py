import json
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from roundkeeper.rounds import (
    HoleCollection,
    HoleRecord,
    ShotOutcome,
    ShotType,
    compute_completion_stats,
)
from roundkeeper.tests.conftest import make_hole


def test_hole_record_accepts_device_field_names():
    record = HoleRecord.model_validate(
        {
            "par": 5,
            "distance": 512,
            "index": 3,
            "features": ["water"],
            "shots": [
                {"type": "Tee Shot", "result": "On Target", "timestamp": "2024-05-01T08:00:00Z"},
                {"type": "Putts", "result": "Slightly Off"},
            ],
            "poi": {"green": {"lat": 1.0}},
        }
    )

    assert record.distance_yards == 512
    assert record.hole_index == 3
    assert record.total_strokes == 2
    assert record.shots[1].outcome is ShotOutcome.SLIGHTLY_OFF

    payload = record.to_payload()
    assert payload["distance"] == 512
    assert payload["shots"][0]["result"] == "On Target"
    assert payload["poi"] == {"green": {"lat": 1.0}}


def test_hole_record_treats_null_shots_as_empty():
    record = HoleRecord.model_validate({"par": 3, "shots": None, "features": None})
    assert record.shots == []
    assert not record.is_played


def test_without_shot_removes_most_recent_match():
    early = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)
    late = early + timedelta(minutes=5)
    record = (
        HoleRecord(par=4)
        .with_shot(ShotType.CHIP, ShotOutcome.ON_TARGET, recorded_at=early)
        .with_shot(ShotType.PUTT, ShotOutcome.ON_TARGET)
        .with_shot(ShotType.CHIP, ShotOutcome.ON_TARGET, recorded_at=late)
    )

    updated = record.without_shot(ShotType.CHIP, ShotOutcome.ON_TARGET)

    assert updated.total_strokes == 2
    chips = [shot for shot in updated.shots if shot.type is ShotType.CHIP]
    assert [shot.recorded_at for shot in chips] == [early]
    assert record.total_strokes == 3


def test_without_shot_without_match_is_a_no_op():
    record = HoleRecord().with_shot(ShotType.SAND, ShotOutcome.RECOVERY_NEEDED)
    assert record.without_shot(ShotType.SAND, ShotOutcome.ON_TARGET) is record


def test_shot_counts_cover_every_cell():
    record = make_hole(3)
    counts = record.shot_counts()
    assert set(counts) == {shot_type.value for shot_type in ShotType}
    assert counts["Tee Shot"]["On Target"] == 1
    assert counts["Putts"]["On Target"] == 2
    assert counts["Penalties"] == {outcome.value: 0 for outcome in ShotOutcome}


def test_hole_collection_rejects_out_of_range_holes():
    with pytest.raises(ValidationError):
        HoleCollection(round_id="r1", holes={19: HoleRecord()})
    with pytest.raises(ValidationError):
        HoleCollection(round_id="r1", holes={0: HoleRecord()})


def test_hole_collection_storage_round_trip_keeps_played_subset():
    collection = (
        HoleCollection(round_id="r1")
        .with_hole(2, make_hole(5))
        .with_hole(1, make_hole(4))
        .with_hole(3, HoleRecord(par=3))
    )

    restored = HoleCollection.from_storage("r1", json.loads(collection.to_storage()))

    assert sorted(restored.holes) == [1, 2, 3]
    assert list(restored.played()) == [1, 2]
    assert restored.total_strokes() == 9


def test_completion_stats_relative_to_par():
    stats = compute_completion_stats("r1", 72, [5] * 13 + [4] * 5)
    assert stats.gross_strokes == 85
    assert stats.score_relative_to_par == 13

    partial = compute_completion_stats("r2", 72, [4, 5, 3, None])
    assert partial.gross_strokes == 12
    assert partial.score_relative_to_par == -60
