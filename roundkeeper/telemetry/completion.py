"""Lifecycle telemetry for round completion and abandonment."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Mapping

from .observers import NullObserver, TelemetryObserver

__all__ = ["CompletionEvents", "CompletionTelemetry"]

_logger = logging.getLogger("roundkeeper.telemetry.completion")


class CompletionEvents:
    SEQUENCE_STARTED = "round_completion_sequence_started"
    SEQUENCE_COMPLETED = "round_completion_sequence_completed"
    SEQUENCE_ABANDONED = "round_completion_sequence_abandoned"
    STEP_STARTED = "round_completion_step_started"
    STEP_COMPLETED = "round_completion_step_completed"
    STEP_FAILED = "round_completion_step_failed"
    RECOVERY_INITIATED = "round_completion_recovery_initiated"
    RECOVERY_SUCCESSFUL = "round_completion_recovery_successful"
    RETRY_ATTEMPTED = "round_completion_retry_attempted"
    ABANDONMENT_STARTED = "round_abandonment_started"
    ABANDONMENT_COMPLETED = "round_abandonment_completed"
    ABANDONMENT_ERROR = "round_abandonment_error"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class CompletionTelemetry:
    """Shapes completion events and hands them to an injected observer.

    Observer failures are logged and never reach the pipeline.
    """

    def __init__(self, observer: TelemetryObserver | None = None) -> None:
        self._observer: TelemetryObserver = observer or NullObserver()

    def _emit(self, event: str, payload: Dict[str, object]) -> None:
        payload["timestamp"] = _timestamp()
        try:
            self._observer.capture(event, payload)
        except Exception:
            _logger.exception("failed to emit telemetry event %s", event)

    def sequence_started(self, round_id: str, actor_id: str | None) -> None:
        self._emit(
            CompletionEvents.SEQUENCE_STARTED,
            {"round_id": round_id, "user_id": actor_id},
        )

    def step_started(self, step: str, round_id: str) -> None:
        self._emit(CompletionEvents.STEP_STARTED, {"step": step, "round_id": round_id})

    def step_completed(
        self, step: str, round_id: str, *, auth: Mapping[str, object]
    ) -> None:
        self._emit(
            CompletionEvents.STEP_COMPLETED,
            {
                "step": step,
                "round_id": round_id,
                "auth_state": bool(auth.get("has_valid_token")),
            },
        )

    def step_failed(
        self,
        step: str,
        round_id: str,
        *,
        error_type: str,
        error_message: str,
        auth: Mapping[str, object],
        retry_attempt: int = 0,
    ) -> None:
        self._emit(
            CompletionEvents.STEP_FAILED,
            {
                "step": step,
                "round_id": round_id,
                "error_type": error_type,
                "error_message": error_message,
                "retry_attempt": retry_attempt,
                "auth_state": bool(auth.get("has_valid_token")),
                "auth_token_age": auth.get("token_age_minutes"),
            },
        )

    def retry_attempted(
        self, step: str, round_id: str, *, attempt: int, error_type: str
    ) -> None:
        self._emit(
            CompletionEvents.RETRY_ATTEMPTED,
            {
                "step": step,
                "round_id": round_id,
                "attempt": attempt,
                "error_type": error_type,
            },
        )

    def recovery(
        self,
        round_id: str,
        *,
        original_step: str | None,
        resume_step: str | None,
        success: bool,
    ) -> None:
        event = (
            CompletionEvents.RECOVERY_SUCCESSFUL
            if success
            else CompletionEvents.RECOVERY_INITIATED
        )
        self._emit(
            event,
            {
                "round_id": round_id,
                "original_step": original_step,
                "resume_step": resume_step,
                "success": success,
            },
        )

    def sequence_completed(
        self,
        round_id: str,
        actor_id: str | None,
        *,
        duration_ms: int,
        steps_executed: int,
        resumed: bool,
    ) -> None:
        self._emit(
            CompletionEvents.SEQUENCE_COMPLETED,
            {
                "round_id": round_id,
                "user_id": actor_id,
                "completion_duration_ms": duration_ms,
                "steps_executed": steps_executed,
                "resumed_from_checkpoint": resumed,
            },
        )

    def sequence_abandoned(
        self,
        round_id: str,
        actor_id: str | None,
        *,
        failure_step: str,
        duration_ms: int,
        error_message: str,
    ) -> None:
        self._emit(
            CompletionEvents.SEQUENCE_ABANDONED,
            {
                "round_id": round_id,
                "user_id": actor_id,
                "failure_step": failure_step,
                "completion_duration_ms": duration_ms,
                "error_message": error_message,
            },
        )

    def abandonment_started(self, round_id: str, actor_id: str | None) -> None:
        self._emit(
            CompletionEvents.ABANDONMENT_STARTED,
            {"round_id": round_id, "profile_id": actor_id},
        )

    def abandonment_completed(
        self, round_id: str, actor_id: str | None, *, duration_ms: int, remote_deleted: bool
    ) -> None:
        self._emit(
            CompletionEvents.ABANDONMENT_COMPLETED,
            {
                "round_id": round_id,
                "profile_id": actor_id,
                "abandonment_duration_ms": duration_ms,
                "data_availability": remote_deleted,
            },
        )

    def abandonment_error(
        self, round_id: str, actor_id: str | None, *, error_message: str
    ) -> None:
        self._emit(
            CompletionEvents.ABANDONMENT_ERROR,
            {
                "round_id": round_id,
                "profile_id": actor_id,
                "error_message": error_message,
                "data_availability": False,
            },
        )
