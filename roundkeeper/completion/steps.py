"""Step registry for the round-completion pipeline.

Steps run in a fixed order and exchange data through a result map keyed by
step name. ``requires`` declares which earlier results a step reads; when a
run resumes past those steps (for example after a process restart) the
orchestrator recomputes them from local storage before running the step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Sequence

from pydantic import BaseModel, ConfigDict, Field

from roundkeeper.errors import RemoteServiceError, ValidationError
from roundkeeper.repositories.rounds_repo import DEFAULT_COURSE_PAR, RoundsRepository
from roundkeeper.rounds.models import (
    MAX_HOLES,
    HoleCollection,
    HoleRecord,
    RoundCompletionStats,
    compute_completion_stats,
)
from roundkeeper.rounds.tracker import RoundTracker
from roundkeeper.services.insights import InsightsService
from roundkeeper.services.retry import RetryHook, RetryPolicy

from .checkpoints import CheckpointStore
from .models import STEP_ORDER, StepName

__all__ = [
    "StepContext",
    "CompletionStep",
    "StepRegistry",
    "CompletionSteps",
    "build_pipeline",
    "SavedCurrentHole",
    "RetrievedHoles",
    "ValidatedHoles",
    "SavedHoles",
    "MarkedComplete",
    "InsightsTriggered",
    "CleanedUp",
]

_LOG = logging.getLogger("roundkeeper.completion.steps")


@dataclass
class StepContext:
    round_id: str
    actor_id: str | None
    latest_hole: HoleRecord | None = None
    hole_number: int | None = None
    results: Dict[StepName, Any] = field(default_factory=dict)
    on_retry: Callable[[StepName], RetryHook | None] = lambda step: None


StepFn = Callable[[StepContext], Awaitable[BaseModel]]


@dataclass(frozen=True)
class CompletionStep:
    name: StepName
    description: str
    run: StepFn
    requires: tuple[StepName, ...] = ()


class StepRegistry:
    def __init__(self, steps: Sequence[CompletionStep]) -> None:
        names = [step.name for step in steps]
        if len(set(names)) != len(names):
            raise ValueError("duplicate step names in pipeline")
        for idx, step in enumerate(steps):
            for dependency in step.requires:
                if dependency not in names[:idx]:
                    raise ValueError(
                        f"{step.name.value} requires {dependency.value}, "
                        "which does not run before it"
                    )
        self._steps = tuple(steps)
        self._by_name = {step.name: step for step in self._steps}

    def __iter__(self) -> Iterator[CompletionStep]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def names(self) -> tuple[StepName, ...]:
        return tuple(step.name for step in self._steps)

    def get(self, name: StepName) -> CompletionStep:
        return self._by_name[name]

    def index_of(self, name: StepName) -> int:
        return self.names.index(name)

    def slice_from(self, name: StepName | None) -> tuple[CompletionStep, ...]:
        if name is None or name not in self._by_name:
            return self._steps
        return self._steps[self.index_of(name) :]


class SavedCurrentHole(BaseModel):
    hole_number: int | None = None
    saved: bool = False
    hole_count: int = 0


class RetrievedHoles(BaseModel):
    collection: HoleCollection
    hole_count: int


class ValidatedHoles(BaseModel):
    valid_holes: List[int]
    errors: List[str] = Field(default_factory=list)
    holes: Dict[int, HoleRecord] = Field(default_factory=dict)

    @property
    def valid_hole_count(self) -> int:
        return len(self.valid_holes)


class SavedHoles(BaseModel):
    saved_holes: List[int]

    @property
    def saved_hole_count(self) -> int:
        return len(self.saved_holes)


class MarkedComplete(BaseModel):
    stats: RoundCompletionStats


class InsightsTriggered(BaseModel):
    triggered: bool
    error: str | None = None


class CleanedUp(BaseModel):
    round_id: str

    model_config = ConfigDict(frozen=True)


class CompletionSteps:
    """The seven completion steps bound to their collaborators."""

    def __init__(
        self,
        *,
        tracker: RoundTracker,
        repo: RoundsRepository,
        insights: InsightsService,
        checkpoints: CheckpointStore,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._tracker = tracker
        self._repo = repo
        self._insights = insights
        self._checkpoints = checkpoints
        self._retry = retry or RetryPolicy()

    def registry(self) -> StepRegistry:
        steps = StepRegistry(
            [
                CompletionStep(
                    StepName.SAVE_CURRENT_HOLE,
                    "Saving current hole data",
                    self.save_current_hole,
                ),
                CompletionStep(
                    StepName.RETRIEVE_ALL_HOLES,
                    "Retrieving all hole data",
                    self.retrieve_all_holes,
                ),
                CompletionStep(
                    StepName.VALIDATE_DATA,
                    "Validating hole data",
                    self.validate_data,
                    requires=(StepName.RETRIEVE_ALL_HOLES,),
                ),
                CompletionStep(
                    StepName.SAVE_TO_DATABASE,
                    "Saving to database",
                    self.save_to_database,
                    requires=(StepName.RETRIEVE_ALL_HOLES, StepName.VALIDATE_DATA),
                ),
                CompletionStep(
                    StepName.MARK_COMPLETE,
                    "Marking round complete",
                    self.mark_complete,
                ),
                CompletionStep(
                    StepName.GENERATE_INSIGHTS,
                    "Generating insights",
                    self.generate_insights,
                ),
                CompletionStep(StepName.CLEANUP, "Cleaning up", self.cleanup),
            ]
        )
        if steps.names != STEP_ORDER:
            raise ValueError("completion steps are out of pipeline order")
        return steps

    async def _remote(
        self, ctx: StepContext, step: StepName, name: str, operation: Callable[[], Awaitable[Any]]
    ) -> Any:
        return await self._retry.run(operation, name=name, on_retry=ctx.on_retry(step))

    async def _resolve_hole_number(self, ctx: StepContext) -> int:
        if ctx.hole_number is not None:
            return ctx.hole_number
        current = await self._tracker.get_current_round()
        if current is not None and current.round_id == ctx.round_id:
            return current.current_hole
        raise ValidationError(
            f"cannot tell which hole the in-progress record for round {ctx.round_id} "
            "belongs to; pass hole_number"
        )

    async def save_current_hole(self, ctx: StepContext) -> SavedCurrentHole:
        if ctx.latest_hole is None:
            _LOG.info("saveCurrentHole: no in-progress hole for round %s", ctx.round_id)
            return SavedCurrentHole()
        hole_number = await self._resolve_hole_number(ctx)
        collection = await self._tracker.save_hole(
            ctx.round_id, hole_number, ctx.latest_hole
        )
        _LOG.info("saveCurrentHole: saved hole %s", hole_number)
        return SavedCurrentHole(
            hole_number=hole_number, saved=True, hole_count=len(collection.holes)
        )

    async def retrieve_all_holes(self, ctx: StepContext) -> RetrievedHoles:
        collection = await self._tracker.load_holes(ctx.round_id)
        if collection is None:
            raise ValidationError("No hole data found in local storage")
        _LOG.info("retrieveAllHoles: retrieved data for %s holes", len(collection.holes))
        return RetrievedHoles(collection=collection, hole_count=len(collection.holes))

    async def validate_data(self, ctx: StepContext) -> ValidatedHoles:
        retrieved: RetrievedHoles = ctx.results[StepName.RETRIEVE_ALL_HOLES]
        errors: List[str] = []
        valid: Dict[int, HoleRecord] = {}
        for hole_number in sorted(retrieved.collection.holes):
            record = retrieved.collection.holes[hole_number]
            if not record.is_played:
                errors.append(f"Hole {hole_number}: No shots recorded")
                continue
            valid[hole_number] = record
        if not valid:
            raise ValidationError("No valid holes found in data")
        _LOG.info(
            "validateData: validated %s holes, %s errors", len(valid), len(errors)
        )
        return ValidatedHoles(valid_holes=list(valid), errors=errors, holes=valid)

    async def save_to_database(self, ctx: StepContext) -> SavedHoles:
        validated: ValidatedHoles = ctx.results[StepName.VALIDATE_DATA]
        saved: List[int] = []
        for hole_number in range(1, MAX_HOLES + 1):
            record = validated.holes.get(hole_number)
            if record is None or not record.is_played:
                continue

            async def _upsert(number: int = hole_number, hole: HoleRecord = record) -> None:
                await self._repo.upsert_hole(
                    ctx.round_id, number, hole.to_payload(), hole.total_strokes
                )

            await self._remote(
                ctx, StepName.SAVE_TO_DATABASE, f"upsertHole[{hole_number}]", _upsert
            )
            saved.append(hole_number)
        _LOG.info("saveToDatabase: saved %s holes", len(saved))
        return SavedHoles(saved_holes=saved)

    async def mark_complete(self, ctx: StepContext) -> MarkedComplete:
        step = StepName.MARK_COMPLETE
        round_record = await self._remote(
            ctx, step, "fetchRound", lambda: self._repo.fetch_round(ctx.round_id)
        )
        if round_record is None:
            raise RemoteServiceError(f"round {ctx.round_id} not found")

        course_par: int | None = None
        if round_record.course_id:
            course_par = await self._remote(
                ctx,
                step,
                "fetchCoursePar",
                lambda: self._repo.fetch_course_par(round_record.course_id),
            )
        if course_par is None:
            _LOG.warning(
                "markComplete: no par for course %s, using %s",
                round_record.course_id,
                DEFAULT_COURSE_PAR,
            )
            course_par = DEFAULT_COURSE_PAR

        rows = await self._remote(
            ctx, step, "listHoleScores", lambda: self._repo.list_hole_scores(ctx.round_id)
        )
        stats = compute_completion_stats(
            ctx.round_id, course_par, [row.get("total_score") for row in rows]
        )
        updated = await self._remote(
            ctx,
            step,
            "updateRound",
            lambda: self._repo.update_round(
                ctx.round_id,
                {
                    "is_complete": True,
                    "gross_shots": stats.gross_strokes,
                    "score": stats.score_relative_to_par,
                },
            ),
        )
        if updated is None:
            raise RemoteServiceError(f"round {ctx.round_id} could not be updated")
        _LOG.info(
            "markComplete: gross %s, to par %+d",
            stats.gross_strokes,
            stats.score_relative_to_par,
        )
        return MarkedComplete(stats=stats)

    async def generate_insights(self, ctx: StepContext) -> InsightsTriggered:
        try:
            triggered = self._insights.trigger(ctx.actor_id, ctx.round_id)
        except Exception as exc:
            _LOG.warning("generateInsights: failed to trigger insights: %s", exc)
            return InsightsTriggered(triggered=False, error=str(exc))
        return InsightsTriggered(triggered=triggered)

    async def cleanup(self, ctx: StepContext) -> CleanedUp:
        await self._tracker.clear_round(ctx.round_id)
        await self._checkpoints.clear(ctx.round_id)
        _LOG.info("cleanup: local storage cleaned up for round %s", ctx.round_id)
        return CleanedUp(round_id=ctx.round_id)


def build_pipeline(
    *,
    tracker: RoundTracker,
    repo: RoundsRepository,
    insights: InsightsService,
    checkpoints: CheckpointStore,
    retry: RetryPolicy | None = None,
) -> StepRegistry:
    return CompletionSteps(
        tracker=tracker,
        repo=repo,
        insights=insights,
        checkpoints=checkpoints,
        retry=retry,
    ).registry()
