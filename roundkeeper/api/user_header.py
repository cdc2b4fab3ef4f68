from __future__ import annotations

from typing import Annotated, Optional

from fastapi import Header

# x-user-id identifies the acting profile; the API key is the fallback.
UserIdHeader = Annotated[Optional[str], Header(alias="x-user-id")]
