"""Process-wide service wiring for the HTTP layer.

Routes receive these through ``Depends`` so tests can swap them with
``app.dependency_overrides`` or reset them with :func:`reset_dependencies`.
"""

from __future__ import annotations

import os
from datetime import timedelta
from functools import lru_cache

from roundkeeper.completion import CheckpointStore, CompletionOrchestrator
from roundkeeper.config import get_settings
from roundkeeper.repositories import RoundsRepository, build_rounds_repository
from roundkeeper.rounds import RoundTracker
from roundkeeper.services.insights import InsightsService
from roundkeeper.services.retry import RetryPolicy
from roundkeeper.services.session import SessionProvider, session_from_settings
from roundkeeper.storage import FileKeyValueStore, KeyValueStore
from roundkeeper.telemetry import (
    HttpAnalyticsObserver,
    LoggingObserver,
    TelemetryObserver,
)


@lru_cache(maxsize=1)
def get_key_value_store() -> KeyValueStore:
    settings = get_settings()
    return FileKeyValueStore(os.path.expanduser(settings.local_store_dir))


@lru_cache(maxsize=1)
def get_rounds_repository() -> RoundsRepository:
    return build_rounds_repository(get_settings())


@lru_cache(maxsize=1)
def get_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        timeout_s=settings.operation_timeout_s,
        delay_scale=settings.retry_delay_scale,
    )


@lru_cache(maxsize=1)
def get_observer() -> TelemetryObserver:
    settings = get_settings()
    if settings.analytics_endpoint:
        return HttpAnalyticsObserver(settings.analytics_endpoint)
    return LoggingObserver()


def get_tracker() -> RoundTracker:
    return RoundTracker(get_key_value_store())


@lru_cache(maxsize=1)
def get_insights_service() -> InsightsService:
    settings = get_settings()
    return InsightsService(
        get_rounds_repository(),
        function_name=settings.insights_function,
        retry=get_retry_policy(),
    )


@lru_cache(maxsize=1)
def get_session_provider() -> SessionProvider | None:
    return session_from_settings(get_settings())


@lru_cache(maxsize=1)
def get_orchestrator() -> CompletionOrchestrator:
    settings = get_settings()
    checkpoints = CheckpointStore(
        get_key_value_store(),
        ttl=timedelta(hours=settings.checkpoint_ttl_hours),
        policy=settings.checkpoint_ttl_policy,
    )
    return CompletionOrchestrator(
        tracker=get_tracker(),
        repo=get_rounds_repository(),
        checkpoints=checkpoints,
        insights=get_insights_service(),
        observer=get_observer(),
        session=get_session_provider(),
        retry=get_retry_policy(),
    )


def reset_dependencies() -> None:
    """Drop cached services (primarily for tests)."""

    for factory in (
        get_key_value_store,
        get_rounds_repository,
        get_retry_policy,
        get_observer,
        get_insights_service,
        get_session_provider,
        get_orchestrator,
    ):
        factory.cache_clear()


__all__ = [
    "get_insights_service",
    "get_key_value_store",
    "get_observer",
    "get_orchestrator",
    "get_retry_policy",
    "get_rounds_repository",
    "get_session_provider",
    "get_tracker",
    "reset_dependencies",
]
