"""Request throttling with slowapi.

Public verification is limited per client address. Admin calls are keyed on a
digest of the X-Admin-Key header instead, so an operator running a bulk import
from behind a shared NAT does not starve public verifiers.

memory:// storage is per process; set RATELIMIT_STORAGE_URI to a Redis URL
when running more than one worker.
"""

import hashlib
import logging

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from core.config import Settings, get_settings

logger = logging.getLogger(__name__)

VERIFY_LIMIT = "30/minute"
DOWNLOAD_LIMIT = "20/minute"
GENERATE_LIMIT = "10/minute"

DEFAULT_RETRY_AFTER = 60


def client_key(request: Request) -> str:
    admin_key = request.headers.get("X-Admin-Key")
    if admin_key:
        return "admin:" + hashlib.sha256(admin_key.encode()).hexdigest()[:16]
    return get_remote_address(request)


def build_limiter(settings: Settings) -> Limiter:
    storage_uri = settings.ratelimit_storage_uri
    if storage_uri == "memory://" and not settings.debug:
        logger.warning("ratelimit.memory_storage", extra={"storage_uri": storage_uri})

    return Limiter(
        key_func=client_key,
        default_limits=["100/minute"],
        storage_uri=storage_uri,
        in_memory_fallback_enabled=storage_uri.startswith("redis://"),
        key_prefix="cert:",
    )


limiter = build_limiter(get_settings())


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    retry_after = getattr(exc, "retry_after", None) or DEFAULT_RETRY_AFTER
    logger.warning(
        "ratelimit.exceeded",
        extra={
            "path": request.url.path,
            "client": client_key(request),
            "limit": exc.detail,
        },
    )
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Too many requests, try again later.",
            "retry_after": exc.detail,
        },
        headers={"Retry-After": str(retry_after)},
    )
