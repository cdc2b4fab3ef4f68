from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MAX_HOLES = 18


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ShotType(str, Enum):
    TEE_SHOT = "Tee Shot"
    LONG_SHOT = "Long Shot"
    APPROACH = "Approach"
    CHIP = "Chip"
    PUTT = "Putts"
    SAND = "Sand"
    PENALTY = "Penalties"


class ShotOutcome(str, Enum):
    ON_TARGET = "On Target"
    SLIGHTLY_OFF = "Slightly Off"
    RECOVERY_NEEDED = "Recovery Needed"


class Shot(BaseModel):
    type: ShotType
    outcome: ShotOutcome = Field(
        validation_alias=AliasChoices("outcome", "result"),
        serialization_alias="result",
    )
    recorded_at: datetime = Field(
        default_factory=_now,
        validation_alias=AliasChoices("recorded_at", "recordedAt", "timestamp"),
        serialization_alias="timestamp",
    )

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class HoleRecord(BaseModel):
    par: Optional[int] = None
    distance_yards: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("distance_yards", "distanceYards", "distance"),
        serialization_alias="distance",
    )
    hole_index: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("hole_index", "holeIndex", "index"),
        serialization_alias="index",
    )
    features: List[str] = Field(default_factory=list)
    shots: List[Shot] = Field(default_factory=list)
    poi: Any = Field(
        default=None,
        validation_alias=AliasChoices("poi", "points_of_interest", "pointsOfInterest"),
    )

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("features", "shots", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_played(self) -> bool:
        return len(self.shots) > 0

    @property
    def total_strokes(self) -> int:
        return len(self.shots)

    def shot_counts(self) -> Dict[str, Dict[str, int]]:
        """Shots per type and outcome, every cell present."""

        table = {
            shot_type.value: {outcome.value: 0 for outcome in ShotOutcome}
            for shot_type in ShotType
        }
        for shot in self.shots:
            table[shot.type.value][shot.outcome.value] += 1
        return table

    def with_shot(
        self,
        shot_type: ShotType,
        outcome: ShotOutcome,
        *,
        recorded_at: datetime | None = None,
    ) -> "HoleRecord":
        shot = Shot(type=shot_type, outcome=outcome, recorded_at=recorded_at or _now())
        return self.model_copy(update={"shots": [*self.shots, shot]})

    def without_shot(self, shot_type: ShotType, outcome: ShotOutcome) -> "HoleRecord":
        """Drop the most recent shot matching type and outcome, if any."""

        for idx in range(len(self.shots) - 1, -1, -1):
            shot = self.shots[idx]
            if shot.type == shot_type and shot.outcome == outcome:
                remaining = self.shots[:idx] + self.shots[idx + 1 :]
                return self.model_copy(update={"shots": remaining})
        return self

    def to_payload(self) -> Dict[str, Any]:
        """Row payload stored in the remote ``hole_data`` column."""

        return self.model_dump(by_alias=True, mode="json")


class HoleCollection(BaseModel):
    round_id: str = Field(serialization_alias="roundId")
    holes: Dict[int, HoleRecord] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("holes")
    @classmethod
    def _check_hole_numbers(cls, value: Dict[int, HoleRecord]) -> Dict[int, HoleRecord]:
        for hole_number in value:
            if hole_number < 1 or hole_number > MAX_HOLES:
                raise ValueError(f"hole_number must be between 1 and {MAX_HOLES}")
        return value

    def with_hole(self, hole_number: int, record: HoleRecord) -> "HoleCollection":
        holes = dict(self.holes)
        holes[hole_number] = record
        return HoleCollection(round_id=self.round_id, holes=holes)

    def played(self) -> Dict[int, HoleRecord]:
        return {
            number: self.holes[number]
            for number in sorted(self.holes)
            if self.holes[number].is_played
        }

    def total_strokes(self) -> int:
        return sum(record.total_strokes for record in self.holes.values())

    @classmethod
    def from_storage(cls, round_id: str, payload: Mapping[str, Any]) -> "HoleCollection":
        holes: Dict[int, HoleRecord] = {}
        for hole_key, hole_payload in payload.items():
            hole_number = int(hole_key)
            holes[hole_number] = HoleRecord.model_validate(hole_payload or {})
        return cls(round_id=round_id, holes=holes)

    def to_storage(self) -> str:
        payload = {
            str(number): record.model_dump(by_alias=True, mode="json")
            for number, record in sorted(self.holes.items())
        }
        return json.dumps(payload, sort_keys=True)


class RoundRecord(BaseModel):
    id: str
    profile_id: str = Field(
        validation_alias=AliasChoices("profile_id", "profileId"),
        serialization_alias="profileId",
    )
    course_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("course_id", "courseId"),
        serialization_alias="courseId",
    )
    selected_tee_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("selected_tee_id", "teeId"),
        serialization_alias="teeId",
    )
    selected_tee_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("selected_tee_name", "teeName"),
        serialization_alias="teeName",
    )
    is_complete: bool = Field(default=False, serialization_alias="isComplete")
    gross_shots: int | None = Field(default=None, serialization_alias="grossShots")
    score: int | None = None

    model_config = ConfigDict(populate_by_name=True)


class RoundCompletionStats(BaseModel):
    round_id: str = Field(serialization_alias="roundId")
    course_par: int = Field(serialization_alias="coursePar")
    gross_strokes: int = Field(serialization_alias="grossStrokes")
    score_relative_to_par: int = Field(serialization_alias="scoreRelativeToPar")

    model_config = ConfigDict(populate_by_name=True)


def compute_completion_stats(
    round_id: str, course_par: int, hole_totals: List[int | None]
) -> RoundCompletionStats:
    gross = sum(total or 0 for total in hole_totals)
    return RoundCompletionStats(
        round_id=round_id,
        course_par=course_par,
        gross_strokes=gross,
        score_relative_to_par=gross - course_par,
    )
