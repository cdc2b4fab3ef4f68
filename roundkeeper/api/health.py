import os
import platform
import time
from typing import Any, Dict

from roundkeeper.api.deps import get_insights_service
from roundkeeper.config import get_settings
from roundkeeper.metrics import BUILD_VERSION, GIT_SHA


async def health() -> Dict[str, Any]:
    settings = get_settings()
    return {
        "status": "ok",
        "version": BUILD_VERSION,
        "git": GIT_SHA,
        "ts": time.time(),
        "env": {
            "remote_store": "supabase" if settings.supabase_url else "memory",
            "checkpoint_ttl_hours": settings.checkpoint_ttl_hours,
            "checkpoint_ttl_policy": settings.checkpoint_ttl_policy,
            "require_api_key": os.getenv("REQUIRE_API_KEY", "0"),
        },
        "completion": {
            "insights_pending": get_insights_service().pending,
        },
        "runtime": {
            "python": platform.python_version(),
        },
    }
