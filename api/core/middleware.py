"""ASGI middleware: security headers and request-scoped log context."""

from __future__ import annotations

import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.logger import bind_contextvars, clear_contextvars
from core.storage import PUBLIC_PREFIX


_COMMON_HEADERS: tuple[tuple[bytes, bytes], ...] = (
    (b"x-content-type-options", b"nosniff"),
    (b"x-xss-protection", b"0"),
    (b"referrer-policy", b"strict-origin-when-cross-origin"),
    (b"strict-transport-security", b"max-age=31536000; includeSubDomains"),
    (b"permissions-policy", b"camera=(), microphone=(), geolocation=()"),
)

_API_HEADERS: tuple[tuple[bytes, bytes], ...] = (
    (b"x-frame-options", b"DENY"),
    (
        b"content-security-policy",
        b"default-src 'self'; img-src 'self' data:; frame-ancestors 'none'",
    ),
)


class SecurityHeadersMiddleware:
    """Security headers on every HTTP response.

    API responses may not be framed at all. Stored documents under
    ``files_prefix`` may be framed by ``frame_ancestors`` (the verification
    frontend previews the PDF inline) and are served as immutable.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        files_prefix: str = PUBLIC_PREFIX,
        frame_ancestors: str = "'self'",
    ) -> None:
        self.app = app
        self.files_prefix = files_prefix.rstrip("/") + "/"
        self._file_headers: tuple[tuple[bytes, bytes], ...] = (
            (
                b"content-security-policy",
                f"default-src 'none'; frame-ancestors {frame_ancestors}".encode(),
            ),
            (b"cache-control", b"public, max-age=31536000, immutable"),
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope.get("path", "").startswith(self.files_prefix):
            extra = self._file_headers
        else:
            extra = _API_HEADERS

        async def send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                message["headers"] = [
                    *message.get("headers", []),
                    *_COMMON_HEADERS,
                    *extra,
                ]
            await send(message)

        await self.app(scope, receive, send_wrapper)


class RequestContextMiddleware:
    """Binds a request id to the log context and echoes it as X-Request-Id."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = uuid.uuid4().hex[:16]
        clear_contextvars()
        bind_contextvars(
            request_id=request_id,
            path=scope.get("path", ""),
            method=scope.get("method", ""),
        )

        async def send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers: list[tuple[bytes, bytes]] = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode("ascii")))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_contextvars()
