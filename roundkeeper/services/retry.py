"""Per-attempt timeouts and category-aware retries for remote operations.

Each error category carries its own retry budget and delay. Permission and
validation failures are never retried. The overall budget of a call site
caps the category budget, so ``max_retries=1`` means at most two attempts.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception

from roundkeeper.errors import ErrorCategory, as_roundkeeper_error, classify_exception

__all__ = ["RetryRule", "RETRY_RULES", "RetryPolicy", "DEFAULT_TIMEOUT_S"]

T = TypeVar("T")

DEFAULT_TIMEOUT_S = 30.0

_logger = logging.getLogger("roundkeeper.services.retry")


@dataclass(frozen=True)
class RetryRule:
    max_retries: int
    delay_s: float


RETRY_RULES: Mapping[ErrorCategory, RetryRule] = {
    ErrorCategory.NETWORK: RetryRule(max_retries=3, delay_s=1.0),
    ErrorCategory.STORAGE: RetryRule(max_retries=2, delay_s=2.0),
    ErrorCategory.REMOTE_SERVICE: RetryRule(max_retries=2, delay_s=2.0),
    ErrorCategory.PERMISSION: RetryRule(max_retries=0, delay_s=0.0),
    ErrorCategory.VALIDATION: RetryRule(max_retries=0, delay_s=0.0),
    ErrorCategory.PROCESSING: RetryRule(max_retries=1, delay_s=5.0),
    ErrorCategory.TIMEOUT: RetryRule(max_retries=2, delay_s=3.0),
}

RetryHook = Callable[[int, BaseException], None]


class RetryPolicy:
    def __init__(
        self,
        *,
        max_retries: int = 2,
        timeout_s: float | None = DEFAULT_TIMEOUT_S,
        delay_scale: float = 1.0,
        rules: Mapping[ErrorCategory, RetryRule] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._max_retries = max(0, int(max_retries))
        self._timeout_s = timeout_s if timeout_s and timeout_s > 0 else None
        self._delay_scale = max(0.0, float(delay_scale))
        self._rules = dict(rules or RETRY_RULES)
        self._sleep = sleep or asyncio.sleep

    def with_max_retries(self, max_retries: int) -> "RetryPolicy":
        return RetryPolicy(
            max_retries=max_retries,
            timeout_s=self._timeout_s,
            delay_scale=self._delay_scale,
            rules=self._rules,
            sleep=self._sleep,
        )

    def rule_for(self, exc: BaseException) -> RetryRule:
        return self._rules.get(classify_exception(exc), RetryRule(0, 0.0))

    def _budget(self, exc: BaseException) -> int:
        return min(self._max_retries, self.rule_for(exc).max_retries)

    def _should_stop(self, state: RetryCallState) -> bool:
        exc = state.outcome.exception() if state.outcome else None
        if exc is None:
            return True
        return state.attempt_number > self._budget(exc)

    def _wait(self, state: RetryCallState) -> float:
        exc = state.outcome.exception() if state.outcome else None
        if exc is None:
            return 0.0
        return self.rule_for(exc).delay_s * self._delay_scale

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        name: str,
        on_retry: RetryHook | None = None,
    ) -> T:
        """Run ``operation`` and raise a taxonomy error once retries run out."""

        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            if exc is None:
                return
            _logger.warning(
                "%s: attempt %s failed (%s), retrying",
                name,
                state.attempt_number,
                classify_exception(exc).value,
            )
            if on_retry is not None:
                on_retry(state.attempt_number, exc)

        retrying = AsyncRetrying(
            retry=retry_if_exception(lambda exc: self._budget(exc) > 0),
            stop=self._should_stop,
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=_before_sleep,
            reraise=True,
        )
        result: T
        try:
            async for attempt in retrying:
                with attempt:
                    result = await asyncio.wait_for(
                        operation(), timeout=self._timeout_s
                    )
        except Exception as exc:
            wrapped = as_roundkeeper_error(exc)
            _logger.error(
                "%s: giving up (%s): %s", name, wrapped.category.value, wrapped.message
            )
            if wrapped is exc:
                raise
            raise wrapped from exc
        return result
