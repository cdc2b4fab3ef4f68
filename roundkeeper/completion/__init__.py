"""Resumable round-completion pipeline."""

from .checkpoints import DEFAULT_TTL, CheckpointStore
from .models import (
    STEP_ORDER,
    CompletionCheckpoint,
    CompletionFailure,
    CompletionInProgress,
    CompletionResult,
    FailureSnapshot,
    ResumePlan,
    StepError,
    StepName,
    StepProgress,
    StepStatus,
)
from .orchestrator import CompletionOrchestrator
from .planner import ResumePlanner, plan_from_checkpoint
from .steps import CompletionStep, StepContext, StepRegistry, build_pipeline

__all__ = [
    "DEFAULT_TTL",
    "STEP_ORDER",
    "CheckpointStore",
    "CompletionCheckpoint",
    "CompletionFailure",
    "CompletionInProgress",
    "CompletionOrchestrator",
    "CompletionResult",
    "CompletionStep",
    "FailureSnapshot",
    "ResumePlan",
    "ResumePlanner",
    "StepContext",
    "StepError",
    "StepName",
    "StepProgress",
    "StepRegistry",
    "StepStatus",
    "build_pipeline",
    "plan_from_checkpoint",
]
