import pytest

from roundkeeper.completion import STEP_ORDER, CompletionStep, StepName, StepRegistry


async def _noop(ctx):
    return None


def _step(name: StepName, *requires: StepName) -> CompletionStep:
    return CompletionStep(name, name.value, _noop, requires=requires)


def test_pipeline_runs_in_declared_order(orchestrator):
    steps = orchestrator.steps

    assert steps.names == STEP_ORDER
    assert len(steps) == 7
    assert steps.get(StepName.VALIDATE_DATA).requires == (StepName.RETRIEVE_ALL_HOLES,)
    assert steps.get(StepName.MARK_COMPLETE).description == "Marking round complete"
    assert steps.index_of(StepName.SAVE_TO_DATABASE) == 3


def test_slice_from_resume_point(orchestrator):
    steps = orchestrator.steps

    tail = steps.slice_from(StepName.MARK_COMPLETE)

    assert [step.name for step in tail] == [
        StepName.MARK_COMPLETE,
        StepName.GENERATE_INSIGHTS,
        StepName.CLEANUP,
    ]
    assert len(steps.slice_from(None)) == 7


def test_duplicate_steps_are_rejected():
    with pytest.raises(ValueError):
        StepRegistry([_step(StepName.CLEANUP), _step(StepName.CLEANUP)])


def test_requires_must_point_backwards():
    with pytest.raises(ValueError, match="does not run before it"):
        StepRegistry(
            [
                _step(StepName.VALIDATE_DATA, StepName.RETRIEVE_ALL_HOLES),
                _step(StepName.RETRIEVE_ALL_HOLES),
            ]
        )
