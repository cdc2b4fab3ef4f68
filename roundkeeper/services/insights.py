"""Insights generation and lookup.

Everything here runs behind an error boundary: failures are categorized,
retried according to the retry policy, logged, and turned into ``None``.
Insight problems never reach round completion.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Set, TypeVar

from roundkeeper.errors import RoundkeeperError, ValidationError
from roundkeeper.repositories.rounds_repo import RoundsRepository

from .retry import RetryPolicy

__all__ = ["InsightsService", "DEFAULT_INSIGHTS_FUNCTION"]

DEFAULT_INSIGHTS_FUNCTION = "analyze-golf-performance"

T = TypeVar("T")

_logger = logging.getLogger("roundkeeper.services.insights")


class InsightsService:
    def __init__(
        self,
        repo: RoundsRepository,
        *,
        function_name: str = DEFAULT_INSIGHTS_FUNCTION,
        retry: RetryPolicy | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._repo = repo
        self._function_name = function_name
        self._retry = retry or RetryPolicy()
        self._log = logger or _logger
        self._pending: Set[asyncio.Task[Any]] = set()

    async def _guarded(
        self,
        name: str,
        operation: Callable[[], Awaitable[T]],
        *,
        max_retries: int,
    ) -> T | None:
        policy = self._retry.with_max_retries(max_retries)
        try:
            return await policy.run(operation, name=name)
        except RoundkeeperError as exc:
            self._log.error(
                "[InsightsService] %s failed (%s): %s",
                name,
                exc.category.value,
                exc.message,
            )
            return None

    async def generate(self, actor_id: str | None, round_id: str | None) -> Any | None:
        """Invoke the analysis function and wait for it (one retry at most)."""

        async def _invoke() -> Any:
            if not actor_id or not round_id:
                raise ValidationError("User ID and Round ID are required")
            return await self._repo.invoke_function(
                self._function_name, {"userId": actor_id, "roundId": round_id}
            )

        result = await self._guarded("triggerInsightsGeneration", _invoke, max_retries=1)
        if result is not None:
            self._log.info("[InsightsService] insights generated for round %s", round_id)
        return result

    def trigger(self, actor_id: str | None, round_id: str | None) -> bool:
        """Schedule insights generation without waiting for it.

        Returns whether the request was scheduled. Never raises.
        """

        try:
            loop = asyncio.get_running_loop()
            task = loop.create_task(self.generate(actor_id, round_id))
        except RuntimeError as exc:
            self._log.warning("[InsightsService] failed to schedule insights: %s", exc)
            return False
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for scheduled insight requests (tests and shutdown)."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def latest_insights(
        self, actor_id: str | None, field: str | None = None
    ) -> Any | None:
        async def _fetch() -> Any:
            if not actor_id:
                raise ValidationError("User ID is required")
            return await self._repo.latest_insight(profile_id=actor_id)

        row = await self._guarded("getLatestInsights", _fetch, max_retries=2)
        return _extract(row, field)

    async def round_insights(
        self, round_id: str | None, field: str | None = None
    ) -> Any | None:
        async def _fetch() -> Any:
            if not round_id:
                raise ValidationError("Round ID is required")
            return await self._repo.latest_insight(round_id=round_id)

        row = await self._guarded("getRoundInsights", _fetch, max_retries=2)
        return _extract(row, field)


def _extract(row: Any, field: str | None) -> Any | None:
    if not row:
        return None
    insights = row.get("insights")
    if field and insights:
        return insights.get(field) or None
    return insights
