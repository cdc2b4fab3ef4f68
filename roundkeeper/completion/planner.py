from __future__ import annotations

from typing import Sequence

from .checkpoints import CheckpointStore
from .models import (
    STEP_ORDER,
    CompletionCheckpoint,
    ResumePlan,
    StepName,
    StepStatus,
)

__all__ = ["ResumePlanner", "plan_from_checkpoint"]


def plan_from_checkpoint(
    checkpoint: CompletionCheckpoint | None,
    order: Sequence[StepName] = STEP_ORDER,
) -> ResumePlan:
    """Decide where a completion run should pick up.

    A failed step wins over completed ones (first failure in pipeline order).
    Otherwise the run resumes after the last completed step; a checkpoint
    whose last completed step is the final one restarts from the beginning.
    """

    if checkpoint is None:
        return ResumePlan.fresh()

    for step in order:
        if checkpoint.status_of(step) == StepStatus.FAILED:
            return ResumePlan(
                start_from_beginning=False,
                resume_from=step,
                preserved_failure=checkpoint.last_failure,
                checkpoint=checkpoint,
            )

    last_completed: int | None = None
    for idx, step in enumerate(order):
        if checkpoint.status_of(step) == StepStatus.COMPLETED:
            last_completed = idx

    if last_completed is None or last_completed + 1 >= len(order):
        return ResumePlan.fresh()

    return ResumePlan(
        start_from_beginning=False,
        resume_from=order[last_completed + 1],
        checkpoint=checkpoint,
    )


class ResumePlanner:
    def __init__(
        self, checkpoints: CheckpointStore, order: Sequence[StepName] = STEP_ORDER
    ) -> None:
        self._checkpoints = checkpoints
        self._order = tuple(order)

    async def plan(self, round_id: str) -> ResumePlan:
        checkpoint = await self._checkpoints.load(round_id)
        return plan_from_checkpoint(checkpoint, self._order)
