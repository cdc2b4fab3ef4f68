from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from roundkeeper.api.deps import (
    get_insights_service,
    get_orchestrator,
    get_rounds_repository,
    get_tracker,
)
from roundkeeper.api.user_header import UserIdHeader
from roundkeeper.completion import (
    CompletionFailure,
    CompletionInProgress,
    CompletionOrchestrator,
)
from roundkeeper.repositories import RoundsRepository
from roundkeeper.rounds import (
    CurrentRound,
    HoleRecord,
    RoundTracker,
    ShotOutcome,
    ShotType,
)
from roundkeeper.rounds.models import MAX_HOLES
from roundkeeper.security import require_api_key
from roundkeeper.services.insights import InsightsService

router = APIRouter(
    prefix="/api/rounds", tags=["rounds"], dependencies=[Depends(require_api_key)]
)

logger = logging.getLogger(__name__)


def _derive_actor_id(api_key: str | None, user_id: str | None) -> str:
    return user_id or api_key or "anonymous"


def _check_hole_number(hole_number: int) -> None:
    if not 1 <= hole_number <= MAX_HOLES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"hole number must be between 1 and {MAX_HOLES}",
        )


class StartRoundRequest(BaseModel):
    course_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("course_id", "courseId"),
    )
    tee_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("tee_id", "teeId"),
    )
    tee_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("tee_name", "teeName"),
    )

    model_config = ConfigDict(populate_by_name=True)


class ShotRequest(BaseModel):
    type: ShotType
    outcome: ShotOutcome = Field(validation_alias=AliasChoices("outcome", "result"))

    model_config = ConfigDict(populate_by_name=True)


class CompleteRoundRequest(BaseModel):
    hole: HoleRecord | None = None
    hole_number: int | None = Field(
        default=None,
        ge=1,
        le=MAX_HOLES,
        validation_alias=AliasChoices("hole_number", "holeNumber"),
    )

    model_config = ConfigDict(populate_by_name=True)


def _hole_out(hole_number: int, record: HoleRecord) -> Dict[str, Any]:
    payload = record.to_payload()
    payload["holeNumber"] = hole_number
    payload["totalStrokes"] = record.total_strokes
    payload["shotCounts"] = record.shot_counts()
    return payload


@router.post("", status_code=status.HTTP_201_CREATED)
async def start_round(
    payload: StartRoundRequest,
    api_key: str | None = Depends(require_api_key),
    user_id: UserIdHeader = None,
    repo: RoundsRepository = Depends(get_rounds_repository),
    tracker: RoundTracker = Depends(get_tracker),
) -> Dict[str, Any]:
    actor_id = _derive_actor_id(api_key, user_id)
    try:
        record = await repo.create_round(
            profile_id=actor_id,
            course_id=payload.course_id,
            tee_id=payload.tee_id,
            tee_name=payload.tee_name,
        )
    except Exception as exc:
        logger.exception("failed to create round for %s", actor_id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="failed to create round"
        ) from exc
    await tracker.set_current_round(
        CurrentRound(round_id=record.id, course_id=record.course_id, current_hole=1)
    )
    return record.model_dump(by_alias=True, mode="json")


@router.get("/{round_id}/holes/{hole_number}")
async def get_hole(
    round_id: str,
    hole_number: int,
    tracker: RoundTracker = Depends(get_tracker),
) -> Dict[str, Any]:
    _check_hole_number(hole_number)
    record = await tracker.get_hole(round_id, hole_number)
    return _hole_out(hole_number, record)


@router.put("/{round_id}/holes/{hole_number}")
async def save_hole(
    round_id: str,
    hole_number: int,
    payload: HoleRecord,
    tracker: RoundTracker = Depends(get_tracker),
) -> Dict[str, Any]:
    _check_hole_number(hole_number)
    await tracker.save_hole(round_id, hole_number, payload)
    await tracker.move_to_hole(round_id, hole_number)
    return _hole_out(hole_number, payload)


@router.post("/{round_id}/holes/{hole_number}/shots")
async def add_shot(
    round_id: str,
    hole_number: int,
    payload: ShotRequest,
    tracker: RoundTracker = Depends(get_tracker),
) -> Dict[str, Any]:
    _check_hole_number(hole_number)
    record = await tracker.add_shot(round_id, hole_number, payload.type, payload.outcome)
    await tracker.move_to_hole(round_id, hole_number)
    return _hole_out(hole_number, record)


@router.delete("/{round_id}/holes/{hole_number}/shots")
async def remove_shot(
    round_id: str,
    hole_number: int,
    shot_type: ShotType = Query(alias="type"),
    outcome: ShotOutcome = Query(alias="result"),
    tracker: RoundTracker = Depends(get_tracker),
) -> Dict[str, Any]:
    _check_hole_number(hole_number)
    record = await tracker.remove_shot(round_id, hole_number, shot_type, outcome)
    await tracker.move_to_hole(round_id, hole_number)
    return _hole_out(hole_number, record)


@router.post("/{round_id}/complete")
async def complete_round(
    round_id: str,
    payload: CompleteRoundRequest | None = None,
    api_key: str | None = Depends(require_api_key),
    user_id: UserIdHeader = None,
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    actor_id = _derive_actor_id(api_key, user_id)
    body = payload or CompleteRoundRequest()
    try:
        result = await orchestrator.complete(
            round_id, body.hole, actor_id, hole_number=body.hole_number
        )
    except CompletionInProgress as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except CompletionFailure as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.to_dict()
        ) from exc
    return result.model_dump(by_alias=True, mode="json")


@router.get("/{round_id}/completion")
async def completion_status(
    round_id: str,
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    plan = await orchestrator.plan(round_id)
    checkpoint = plan.checkpoint
    return {
        "roundId": round_id,
        "completing": orchestrator.is_completing(round_id),
        "startFromBeginning": plan.start_from_beginning,
        "resumeFrom": plan.resume_from.value if plan.resume_from else None,
        "lastFailure": (
            plan.preserved_failure.model_dump(by_alias=True, mode="json")
            if plan.preserved_failure
            else None
        ),
        "checkpoint": (
            checkpoint.model_dump(by_alias=True, mode="json") if checkpoint else None
        ),
    }


@router.post("/{round_id}/abandon")
async def abandon_round(
    round_id: str,
    api_key: str | None = Depends(require_api_key),
    user_id: UserIdHeader = None,
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    actor_id = _derive_actor_id(api_key, user_id)
    try:
        remote_deleted = await orchestrator.abandon(round_id, actor_id)
    except CompletionInProgress as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return {"roundId": round_id, "remoteDeleted": remote_deleted}


@router.get("/{round_id}/insights")
async def round_insights(
    round_id: str,
    field: str | None = Query(default=None),
    insights: InsightsService = Depends(get_insights_service),
) -> Dict[str, Any]:
    return {"roundId": round_id, "insights": await insights.round_insights(round_id, field)}


@router.get("/insights/latest")
async def latest_insights(
    field: str | None = Query(default=None),
    api_key: str | None = Depends(require_api_key),
    user_id: UserIdHeader = None,
    insights: InsightsService = Depends(get_insights_service),
) -> Dict[str, Any]:
    actor_id = _derive_actor_id(api_key, user_id)
    return {"profileId": actor_id, "insights": await insights.latest_insights(actor_id, field)}



__all__ = ["router"]
