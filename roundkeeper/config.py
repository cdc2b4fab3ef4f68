"""Configuration helpers for round tracking and completion."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    "Settings",
    "TtlPolicy",
    "env_bool",
    "get_settings",
    "reset_settings_cache",
]

TtlPolicy = Literal["sliding", "fixed"]


class Settings(BaseSettings):
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_key: str | None = Field(default=None, alias="SUPABASE_ANON_KEY")
    local_store_dir: str = Field(
        default="~/.roundkeeper/store", alias="ROUNDKEEPER_STORE_DIR"
    )

    checkpoint_ttl_hours: float = Field(default=24.0, alias="CHECKPOINT_TTL_HOURS")
    # "sliding" recomputes expiry on every save, "fixed" pins it at first write.
    checkpoint_ttl_policy: TtlPolicy = Field(
        default="sliding", alias="CHECKPOINT_TTL_POLICY"
    )

    insights_function: str = Field(
        default="analyze-golf-performance", alias="INSIGHTS_FUNCTION"
    )
    operation_timeout_s: float = Field(default=30.0, alias="OPERATION_TIMEOUT_S")
    retry_delay_scale: float = Field(default=1.0, alias="RETRY_DELAY_SCALE")

    posthog_api_key: str | None = Field(default=None, alias="POSTHOG_API_KEY")
    posthog_api_host: str = Field(
        default="https://eu.i.posthog.com", alias="POSTHOG_API_HOST"
    )
    analytics_endpoint: str | None = Field(default=None, alias="ANALYTICS_ENDPOINT")

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()  # type: ignore[call-arg]


def reset_settings_cache() -> None:
    """Clear cached settings (primarily for tests)."""

    get_settings.cache_clear()


def env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}
