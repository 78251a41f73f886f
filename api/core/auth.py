"""Admin authentication for management endpoints.

Admin requests carry the shared ``X-Admin-Key`` header. The key is compared in
constant time against ``ADMIN_API_KEY``; the dependency returns the configured
admin principal, which is recorded as the owner of uploaded templates.
"""

from __future__ import annotations

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from core.config import get_settings
from core.logger import bind_contextvars, get_logger

logger = get_logger(__name__)

ADMIN_KEY_HEADER = "X-Admin-Key"


def require_admin(request: Request) -> str:
    """Raises 401 without a key and 403 for a wrong key."""
    settings = get_settings()
    provided = request.headers.get(ADMIN_KEY_HEADER)

    if not provided:
        raise HTTPException(status_code=401, detail="No admin key provided")

    if not hmac.compare_digest(
        provided.encode("utf-8"), settings.admin_api_key.encode("utf-8")
    ):
        logger.warning("auth.admin.rejected", path=request.url.path)
        raise HTTPException(status_code=403, detail="Admin access required")

    request.state.admin = settings.admin_username
    bind_contextvars(admin=settings.admin_username)
    return settings.admin_username


AdminUser = Annotated[str, Depends(require_admin)]
