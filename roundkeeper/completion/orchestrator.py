"""Checkpointed, resumable round-completion pipeline."""

from __future__ import annotations

import logging
import time
from typing import Any, NoReturn, Set

from roundkeeper.errors import RoundkeeperError, as_roundkeeper_error
from roundkeeper.metrics.completion import observe_run, observe_step
from roundkeeper.repositories.rounds_repo import RoundsRepository
from roundkeeper.rounds.models import HoleRecord
from roundkeeper.rounds.tracker import RoundTracker
from roundkeeper.services.insights import InsightsService
from roundkeeper.services.retry import RetryHook, RetryPolicy
from roundkeeper.services.session import SessionProvider, safe_snapshot
from roundkeeper.telemetry.completion import CompletionTelemetry
from roundkeeper.telemetry.observers import TelemetryObserver

from .checkpoints import CheckpointStore
from .models import (
    CompletionFailure,
    CompletionInProgress,
    CompletionResult,
    FailureSnapshot,
    ResumePlan,
    StepError,
    StepName,
    StepProgress,
    StepProgressMap,
    StepStatus,
)
from .planner import ResumePlanner
from .steps import CompletionStep, StepContext, StepRegistry, build_pipeline

__all__ = ["CompletionOrchestrator"]

_LOG = logging.getLogger("roundkeeper.completion")


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class CompletionOrchestrator:
    """Runs the completion steps in order, checkpointing every transition.

    A failed run leaves a checkpoint behind; calling :meth:`complete` again for
    the same round skips every step already marked completed and resumes at
    the failed one. At most one run per round is accepted at a time.
    """

    def __init__(
        self,
        *,
        tracker: RoundTracker,
        repo: RoundsRepository,
        checkpoints: CheckpointStore,
        insights: InsightsService | None = None,
        observer: TelemetryObserver | None = None,
        session: SessionProvider | None = None,
        retry: RetryPolicy | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._tracker = tracker
        self._repo = repo
        self._checkpoints = checkpoints
        self._retry = retry or RetryPolicy()
        self._insights = insights or InsightsService(repo, retry=self._retry)
        self._telemetry = CompletionTelemetry(observer)
        self._session = session
        self._log = logger or _LOG
        self._planner = ResumePlanner(checkpoints)
        self._steps: StepRegistry = build_pipeline(
            tracker=tracker,
            repo=repo,
            insights=self._insights,
            checkpoints=checkpoints,
            retry=self._retry,
        )
        self._active: Set[str] = set()

    @property
    def steps(self) -> StepRegistry:
        return self._steps

    @property
    def insights(self) -> InsightsService:
        return self._insights

    def is_completing(self, round_id: str) -> bool:
        return round_id in self._active

    async def plan(self, round_id: str) -> ResumePlan:
        return await self._planner.plan(round_id)

    async def complete(
        self,
        round_id: str,
        latest_hole: HoleRecord | None,
        actor_id: str | None,
        hole_number: int | None = None,
    ) -> CompletionResult:
        if round_id in self._active:
            raise CompletionInProgress(f"completion already running for round {round_id}")
        self._active.add(round_id)
        try:
            return await self._run(round_id, latest_hole, actor_id, hole_number)
        finally:
            self._active.discard(round_id)

    async def _run(
        self,
        round_id: str,
        latest_hole: HoleRecord | None,
        actor_id: str | None,
        hole_number: int | None,
    ) -> CompletionResult:
        started = time.perf_counter()
        self._telemetry.sequence_started(round_id, actor_id)
        self._log.info("starting completion for round %s", round_id)

        plan = await self._planner.plan(round_id)
        resumed = not plan.start_from_beginning
        progress: StepProgressMap = {}
        original_step: str | None = None
        if resumed and plan.checkpoint is not None:
            progress = dict(plan.checkpoint.step_progress)
            failure = plan.preserved_failure
            original_step = failure.step.value if failure else None
            resume_step = plan.resume_from.value if plan.resume_from else None
            self._log.info(
                "resuming completion for round %s at %s", round_id, resume_step
            )
            self._telemetry.recovery(
                round_id,
                original_step=original_step,
                resume_step=resume_step,
                success=False,
            )

        ctx = StepContext(
            round_id=round_id,
            actor_id=actor_id,
            latest_hole=latest_hole,
            hole_number=hole_number,
            on_retry=lambda step: self._retry_hook(step, round_id),
        )
        executed = 0

        for step in self._steps.slice_from(plan.resume_from):
            if progress.get(step.name, StepProgress.pending()).status == StepStatus.COMPLETED:
                self._log.debug("skipping completed step %s", step.name.value)
                continue

            progress[step.name] = StepProgress.pending()
            await self._checkpoints.save(round_id, progress)
            self._telemetry.step_started(step.name.value, round_id)
            observe_step(step.name.value, StepStatus.PENDING.value)
            step_started = time.perf_counter()

            try:
                await self._ensure_inputs(step, ctx)
                ctx.results[step.name] = await self._execute(step, ctx)
            except StepError as exc:
                await self._fail(
                    exc,
                    step,
                    ctx,
                    progress,
                    started=started,
                    step_started=step_started,
                )

            executed += 1
            progress[step.name] = StepProgress.completed()
            await self._checkpoints.save(round_id, progress)
            auth = await safe_snapshot(self._session)
            self._telemetry.step_completed(
                step.name.value, round_id, auth=auth.model_dump()
            )
            observe_step(
                step.name.value, StepStatus.COMPLETED.value, _elapsed_ms(step_started)
            )

        await self._checkpoints.clear(round_id)
        duration_ms = _elapsed_ms(started)
        if resumed:
            self._telemetry.recovery(
                round_id,
                original_step=original_step,
                resume_step=plan.resume_from.value if plan.resume_from else None,
                success=True,
            )
        self._telemetry.sequence_completed(
            round_id,
            actor_id,
            duration_ms=duration_ms,
            steps_executed=executed,
            resumed=resumed,
        )
        observe_run("resumed" if resumed else "completed")
        self._log.info(
            "round %s completed in %sms (%s steps)", round_id, duration_ms, executed
        )
        return CompletionResult(
            success=True,
            round_id=round_id,
            results={
                name.value: result.model_dump(mode="json")
                for name, result in ctx.results.items()
            },
            duration_ms=duration_ms,
            resumed_from_checkpoint=resumed,
            steps_executed=executed,
        )

    async def _execute(self, step: CompletionStep, ctx: StepContext) -> Any:
        try:
            return await step.run(ctx)
        except StepError:
            raise
        except Exception as exc:
            raise StepError(step.name, as_roundkeeper_error(exc)) from exc

    async def _ensure_inputs(self, step: CompletionStep, ctx: StepContext) -> None:
        # Inputs are missing after a restart; rebuild them from local storage.
        for dependency in step.requires:
            if dependency in ctx.results:
                continue
            upstream = self._steps.get(dependency)
            await self._ensure_inputs(upstream, ctx)
            self._log.info(
                "recomputing %s for %s", dependency.value, step.name.value
            )
            try:
                ctx.results[dependency] = await upstream.run(ctx)
            except Exception as exc:
                raise StepError(step.name, as_roundkeeper_error(exc)) from exc

    def _retry_hook(self, step: StepName, round_id: str) -> RetryHook:
        def _hook(attempt: int, exc: BaseException) -> None:
            self._telemetry.retry_attempted(
                step.value,
                round_id,
                attempt=attempt,
                error_type=as_roundkeeper_error(exc).category.value,
            )

        return _hook

    async def _fail(
        self,
        exc: StepError,
        step: CompletionStep,
        ctx: StepContext,
        progress: StepProgressMap,
        *,
        started: float,
        step_started: float,
    ) -> NoReturn:
        error: RoundkeeperError = exc.error
        auth = await safe_snapshot(self._session)
        progress[step.name] = StepProgress.failed(error.message)
        await self._checkpoints.save(
            ctx.round_id,
            progress,
            FailureSnapshot(
                step=step.name,
                error=error.message,
                error_category=error.category.value,
                auth=auth,
            ),
        )
        self._log.error(
            "step %s failed for round %s (%s): %s",
            step.name.value,
            ctx.round_id,
            error.category.value,
            error.message,
        )
        self._telemetry.step_failed(
            step.name.value,
            ctx.round_id,
            error_type=error.category.value,
            error_message=error.message,
            auth=auth.model_dump(),
        )
        self._telemetry.sequence_abandoned(
            ctx.round_id,
            ctx.actor_id,
            failure_step=step.name.value,
            duration_ms=_elapsed_ms(started),
            error_message=error.message,
        )
        observe_step(step.name.value, StepStatus.FAILED.value, _elapsed_ms(step_started))
        observe_run("failed")
        raise CompletionFailure(
            step=step.name,
            description=step.description,
            error=error,
            checkpoint=progress,
        ) from exc

    async def abandon(self, round_id: str, actor_id: str | None) -> bool:
        """Delete an unfinished round and its local state.

        Refuses while a completion run is in flight. Remote deletion is
        best-effort: failures are logged and reported through the return
        value, and local state is removed regardless.
        """

        if round_id in self._active:
            raise CompletionInProgress(
                f"cannot abandon round {round_id} while it is being completed"
            )
        started = time.perf_counter()
        self._telemetry.abandonment_started(round_id, actor_id)

        remote_deleted = False
        try:
            remote_deleted = await self._retry.run(
                lambda: self._repo.delete_incomplete_round(round_id),
                name="deleteIncompleteRound",
            )
        except RoundkeeperError as exc:
            self._log.warning(
                "failed to delete round %s remotely (%s): %s",
                round_id,
                exc.category.value,
                exc.message,
            )
            self._telemetry.abandonment_error(
                round_id, actor_id, error_message=exc.message
            )

        try:
            await self._tracker.clear_round(round_id)
        except RoundkeeperError as exc:
            self._log.warning(
                "failed to clear local data for round %s: %s", round_id, exc.message
            )
            self._telemetry.abandonment_error(
                round_id, actor_id, error_message=exc.message
            )
        await self._checkpoints.clear(round_id)

        self._telemetry.abandonment_completed(
            round_id,
            actor_id,
            duration_ms=_elapsed_ms(started),
            remote_deleted=remote_deleted,
        )
        self._log.info(
            "round %s abandoned (remote deleted: %s)", round_id, remote_deleted
        )
        return remote_deleted

