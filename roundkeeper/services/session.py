"""Auth-session snapshots attached to completion failures."""

from __future__ import annotations

import base64
import json
import logging
from datetime import datetime, timezone
from typing import Callable, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from roundkeeper.config import Settings

__all__ = [
    "AuthSnapshot",
    "SessionProvider",
    "StaticSessionProvider",
    "safe_snapshot",
    "session_from_settings",
    "token_expiry",
]

_logger = logging.getLogger("roundkeeper.services.session")


class AuthSnapshot(BaseModel):
    has_valid_token: bool = Field(
        default=False,
        validation_alias=AliasChoices("has_valid_token", "hasValidToken"),
        serialization_alias="hasValidToken",
    )
    # Minutes elapsed since the token's expiry; negative while still valid.
    token_age_minutes: float | None = Field(
        default=None,
        validation_alias=AliasChoices("token_age_minutes", "tokenAgeMinutes"),
        serialization_alias="tokenAgeMinutes",
    )

    model_config = ConfigDict(populate_by_name=True)


class SessionProvider(Protocol):
    async def snapshot(self) -> AuthSnapshot: ...


def _urlsafe_b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def token_expiry(token: str) -> datetime | None:
    """Read the ``exp`` claim of a JWT without verifying it."""

    parts = token.split(".")
    if len(parts) != 3:
        return None
    try:
        claims = json.loads(_urlsafe_b64decode(parts[1]).decode("utf-8"))
    except ValueError:
        return None
    exp = claims.get("exp") if isinstance(claims, dict) else None
    if not isinstance(exp, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


class StaticSessionProvider:
    def __init__(
        self,
        *,
        access_token: str | None = None,
        expires_at: datetime | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._access_token = access_token
        self._expires_at = expires_at
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_token(
        cls, token: str, *, clock: Callable[[], datetime] | None = None
    ) -> "StaticSessionProvider":
        return cls(access_token=token, expires_at=token_expiry(token), clock=clock)

    async def snapshot(self) -> AuthSnapshot:
        if not self._access_token:
            return AuthSnapshot()
        age: float | None = None
        if self._expires_at is not None:
            age = (self._clock() - self._expires_at).total_seconds() / 60.0
        return AuthSnapshot(has_valid_token=True, token_age_minutes=age)


async def safe_snapshot(provider: SessionProvider | None) -> AuthSnapshot:
    if provider is None:
        return AuthSnapshot()
    try:
        return await provider.snapshot()
    except Exception:
        _logger.warning("failed to read auth session", exc_info=True)
        return AuthSnapshot()


def session_from_settings(settings: Settings) -> SessionProvider | None:
    """Snapshot the bearer token the remote store is called with."""

    if not settings.supabase_url or not settings.supabase_key:
        return None
    return StaticSessionProvider.from_token(settings.supabase_key)
