from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from roundkeeper.errors import RoundkeeperError
from roundkeeper.services.session import AuthSnapshot


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StepName(str, Enum):
    SAVE_CURRENT_HOLE = "saveCurrentHole"
    RETRIEVE_ALL_HOLES = "retrieveAllHoles"
    VALIDATE_DATA = "validateData"
    SAVE_TO_DATABASE = "saveToDatabase"
    MARK_COMPLETE = "markComplete"
    GENERATE_INSIGHTS = "generateInsights"
    CLEANUP = "cleanup"


STEP_ORDER: tuple[StepName, ...] = tuple(StepName)


class StepStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class StepProgress(BaseModel):
    status: StepStatus
    timestamp: datetime = Field(default_factory=_now)
    error: Optional[str] = None

    @classmethod
    def pending(cls) -> "StepProgress":
        return cls(status=StepStatus.PENDING)

    @classmethod
    def completed(cls) -> "StepProgress":
        return cls(status=StepStatus.COMPLETED)

    @classmethod
    def failed(cls, error: str) -> "StepProgress":
        return cls(status=StepStatus.FAILED, error=error)


class FailureSnapshot(BaseModel):
    step: StepName
    error: str
    error_category: str = Field(
        default="processing",
        validation_alias=AliasChoices("error_category", "errorCategory"),
        serialization_alias="errorCategory",
    )
    timestamp: datetime = Field(default_factory=_now)
    auth: AuthSnapshot = Field(
        default_factory=AuthSnapshot,
        validation_alias=AliasChoices("auth", "authContext"),
        serialization_alias="authContext",
    )

    model_config = ConfigDict(populate_by_name=True)


StepProgressMap = Dict[StepName, StepProgress]


def _known_steps(value: Any) -> Any:
    if not isinstance(value, Mapping):
        return value
    known = {step.value for step in StepName}
    # str() of a StepName member is its qualified name, so compare values.
    return {
        key: item
        for key, item in value.items()
        if getattr(key, "value", key) in known
    }


class CompletionCheckpoint(BaseModel):
    round_id: str = Field(
        validation_alias=AliasChoices("round_id", "roundId"),
        serialization_alias="roundId",
    )
    started_at: datetime = Field(
        default_factory=_now,
        validation_alias=AliasChoices("started_at", "startedAt"),
        serialization_alias="startedAt",
    )
    step_progress: StepProgressMap = Field(
        default_factory=dict,
        validation_alias=AliasChoices("step_progress", "stepProgress"),
        serialization_alias="stepProgress",
    )
    last_failure: FailureSnapshot | None = Field(
        default=None,
        validation_alias=AliasChoices("last_failure", "lastFailure"),
        serialization_alias="lastFailure",
    )
    expires_at: datetime = Field(
        validation_alias=AliasChoices("expires_at", "expiresAt"),
        serialization_alias="expiresAt",
    )

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("step_progress", mode="before")
    @classmethod
    def _drop_unknown_steps(cls, value: Any) -> Any:
        return _known_steps(value)

    def status_of(self, step: StepName) -> StepStatus | None:
        progress = self.step_progress.get(step)
        return progress.status if progress else None


class ResumePlan(BaseModel):
    start_from_beginning: bool = True
    resume_from: StepName | None = None
    preserved_failure: FailureSnapshot | None = None
    checkpoint: CompletionCheckpoint | None = None

    @classmethod
    def fresh(cls) -> "ResumePlan":
        return cls(start_from_beginning=True)


class CompletionResult(BaseModel):
    success: bool = True
    round_id: str = Field(serialization_alias="roundId")
    results: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: int = Field(serialization_alias="durationMs")
    resumed_from_checkpoint: bool = Field(serialization_alias="resumedFromCheckpoint")
    steps_executed: int = Field(default=0, serialization_alias="stepsExecuted")

    model_config = ConfigDict(populate_by_name=True)


class StepError(Exception):
    """A step failure tagged with the step that raised it."""

    def __init__(self, step: StepName, error: RoundkeeperError) -> None:
        super().__init__(f"{step.value}: {error.message}")
        self.step = step
        self.error = error


class CompletionFailure(Exception):
    def __init__(
        self,
        *,
        step: StepName,
        description: str,
        error: RoundkeeperError,
        checkpoint: StepProgressMap,
        retryable: bool = True,
    ) -> None:
        super().__init__(f"{description} failed: {error.message}")
        self.step = step
        self.description = description
        self.error = error
        self.checkpoint = dict(checkpoint)
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step.value,
            "description": self.description,
            "error": self.error.message,
            "category": self.error.category.value,
            "retryable": self.retryable,
            "checkpoint": {
                step.value: progress.model_dump(mode="json")
                for step, progress in self.checkpoint.items()
            },
        }


class CompletionInProgress(Exception):
    """Raised when a completion run for the round is already in flight."""
