"""Durable per-round completion progress.

Each save replaces the whole checkpoint record, so a reader never sees a
step marked completed without its predecessors. Checkpointing is
best-effort: write failures are logged and swallowed.

Expiry policy:

* ``sliding`` (default) recomputes ``expires_at`` on every save, so a round
  stays resumable for the TTL after its most recent step transition.
* ``fixed`` pins ``expires_at`` at the first write for the round.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from pydantic import ValidationError as PydanticValidationError

from roundkeeper.config import TtlPolicy
from roundkeeper.storage.local import KeyValueStore, checkpoint_key

from .models import CompletionCheckpoint, FailureSnapshot, StepProgressMap

__all__ = ["CheckpointStore", "DEFAULT_TTL"]

DEFAULT_TTL = timedelta(hours=24)

_LOG = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckpointStore:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl: timedelta = DEFAULT_TTL,
        policy: TtlPolicy = "sliding",
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if policy not in ("sliding", "fixed"):
            raise ValueError(f"unknown checkpoint TTL policy: {policy!r}")
        self._store = store
        self._ttl = ttl
        self._policy = policy
        self._clock = clock or _utcnow
        self._log = logger or _LOG

    @property
    def policy(self) -> TtlPolicy:
        return self._policy

    async def save(
        self,
        round_id: str,
        step_progress: StepProgressMap,
        last_failure: FailureSnapshot | None = None,
    ) -> CompletionCheckpoint | None:
        try:
            now = self._clock()
            previous = await self._read(round_id, now=now)
            started_at = previous.started_at if previous else now
            if self._policy == "fixed" and previous is not None:
                expires_at = previous.expires_at
            else:
                expires_at = now + self._ttl
            checkpoint = CompletionCheckpoint(
                round_id=round_id,
                started_at=started_at,
                step_progress=dict(step_progress),
                last_failure=last_failure,
                expires_at=expires_at,
            )
            await self._store.put(
                checkpoint_key(round_id),
                checkpoint.model_dump_json(by_alias=True),
            )
        except Exception:
            self._log.exception("failed to save checkpoint for round %s", round_id)
            return None
        self._log.debug("checkpoint saved for round %s", round_id)
        return checkpoint

    async def load(self, round_id: str) -> CompletionCheckpoint | None:
        try:
            return await self._read(round_id, now=self._clock())
        except Exception:
            self._log.exception("failed to load checkpoint for round %s", round_id)
            return None

    async def clear(self, round_id: str) -> None:
        try:
            await self._store.delete(checkpoint_key(round_id))
        except Exception:
            self._log.exception("failed to clear checkpoint for round %s", round_id)
            return
        self._log.debug("checkpoint cleared for round %s", round_id)

    async def _read(
        self, round_id: str, *, now: datetime
    ) -> CompletionCheckpoint | None:
        key = checkpoint_key(round_id)
        raw = await self._store.get(key)
        if raw is None:
            return None
        try:
            checkpoint = CompletionCheckpoint.model_validate_json(raw)
        except PydanticValidationError:
            self._log.warning("discarding corrupt checkpoint for round %s", round_id)
            await self._store.delete(key)
            return None
        if now > checkpoint.expires_at:
            self._log.info("checkpoint for round %s expired", round_id)
            await self._store.delete(key)
            return None
        return checkpoint
