"""Liveness and readiness probes."""

import os

from fastapi import APIRouter, HTTPException, Request
from starlette import status

from core.database import check_db_connection
from core.ratelimit import limiter
from schemas import HealthResponse

SERVICE_NAME = "certificate-issuer-api"

router = APIRouter(tags=["health"])


def _unavailable(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="healthy", service=SERVICE_NAME)


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"description": "Start-up incomplete or a dependency is down"}},
)
@limiter.limit("30/minute")
async def ready(request: Request) -> HealthResponse:
    """Ready once start-up has finished, the database answers and the
    document store is writable.
    """
    state = request.app.state
    if getattr(state, "init_error", None):
        raise _unavailable(f"Initialization failed: {state.init_error}")
    if not getattr(state, "init_done", False):
        raise _unavailable("Starting")

    try:
        await check_db_connection(state.engine)
    except Exception as e:
        raise _unavailable("Database unavailable") from e

    root = state.storage.root
    if not (root.is_dir() and os.access(root, os.W_OK)):
        raise _unavailable("Storage unavailable")

    return HealthResponse(status="ready", service=SERVICE_NAME)
