from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from roundkeeper.api.deps import get_insights_service, get_rounds_repository
from roundkeeper.api.health import health as _health_handler
from roundkeeper.api.routers.rounds import router as rounds_router
from roundkeeper.api.routers.track_analytics import router as track_analytics_router
from roundkeeper.errors import ErrorCategory, RoundkeeperError
from roundkeeper.metrics import MetricsMiddleware, metrics_app

_LOG = logging.getLogger("roundkeeper.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        yield
    finally:
        # Let fire-and-forget insight requests finish before the loop closes.
        await get_insights_service().drain()
        repo = get_rounds_repository()
        aclose = getattr(repo, "aclose", None)
        if aclose is not None:
            await aclose()


app = FastAPI(lifespan=lifespan)

allow = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost,http://127.0.0.1").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in allow if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(MetricsMiddleware)


@app.exception_handler(RoundkeeperError)
async def _roundkeeper_error_handler(
    request: Request, exc: RoundkeeperError
) -> JSONResponse:
    if exc.category in (ErrorCategory.VALIDATION, ErrorCategory.PERMISSION):
        code = (
            status.HTTP_422_UNPROCESSABLE_ENTITY
            if exc.category == ErrorCategory.VALIDATION
            else status.HTTP_403_FORBIDDEN
        )
    else:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    _LOG.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"detail": exc.to_dict()}, status_code=code)


app.include_router(rounds_router)
app.include_router(track_analytics_router)
app.add_api_route(
    "/health",
    _health_handler,
    methods=["GET"],
    response_model=None,
    tags=["health"],
)


_metrics_router = APIRouter()


@_metrics_router.get("/metrics", include_in_schema=False)
async def _metrics_endpoint(request: Request):
    return await metrics_app(request)


app.include_router(_metrics_router)
