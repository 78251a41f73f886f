"""FastAPI application for the certificate issuer API."""

import asyncio
import logging
from contextlib import asynccontextmanager

import fastapi
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded

from core.config import Settings, get_settings
from core.database import (
    create_engine,
    create_session_maker,
    dispose_engine,
    init_db,
)
from core.logger import configure_logging
from core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from core.ratelimit import limiter, rate_limit_exceeded_handler
from core.storage import PUBLIC_PREFIX, FileStorage
from rendering.assembler import DocumentAssembler
from rendering.engine import RenderEngine
from routes import (
    certificates_router,
    health_router,
    recipients_router,
    stats_router,
    templates_router,
    verify_router,
)
from services.mail_service import MailService

configure_logging()
logger = logging.getLogger(__name__)

STARTUP_TIMEOUT_SECONDS = 60

ROUTERS = (
    health_router,
    certificates_router,
    verify_router,
    templates_router,
    recipients_router,
    stats_router,
)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled.exception",
        extra={
            "exc_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def invalid_request_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """422 listing each failing field, without echoing submitted values.

    Payloads carry recipient names and addresses, which must not come back in
    error bodies or end up in logs.
    """
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.warning(
        "request.validation_error",
        extra={
            "path": request.url.path,
            "fields": [e["loc"][-1] for e in errors if e["loc"]],
        },
    )
    return JSONResponse(status_code=422, content={"detail": errors})


def _attach_services(app: fastapi.FastAPI, settings: Settings) -> None:
    app.state.engine = create_engine()
    app.state.session_maker = create_session_maker(app.state.engine)
    app.state.storage = FileStorage.from_settings(settings)
    app.state.render_engine = RenderEngine(max_workers=settings.render_workers)
    app.state.assembler = DocumentAssembler(
        app.state.render_engine, page_format=settings.page_format
    )
    app.state.mailer = MailService(settings)
    app.state.init_done = False
    app.state.init_error = None


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    settings = get_settings()
    _attach_services(app, settings)

    try:
        async with asyncio.timeout(STARTUP_TIMEOUT_SECONDS):
            await init_db(app.state.engine)
    except TimeoutError:
        logger.error("init.timeout", extra={"timeout_s": STARTUP_TIMEOUT_SECONDS})
        raise RuntimeError("Application startup timed out")
    except Exception as e:
        app.state.init_error = str(e)
        logger.error("init.failed", extra={"error": str(e)}, exc_info=True)
        raise

    app.state.storage.ensure_layout()
    app.state.render_engine.start()
    app.state.init_done = True
    logger.info(
        "init.complete",
        extra={
            "storage_dir": str(app.state.storage.root),
            "mail_enabled": settings.mail_enabled,
            "sequential_codes": settings.sequential_codes,
        },
    )

    try:
        yield
    finally:
        await app.state.render_engine.shutdown()
        await dispose_engine(app.state.engine)


def create_app() -> fastapi.FastAPI:
    settings = get_settings()
    show_docs = settings.enable_docs or settings.debug

    app = fastapi.FastAPI(
        title="Certificate Issuer API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if show_docs else None,
        redoc_url=None,
        openapi_url="/openapi.json" if show_docs else None,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(RequestValidationError, invalid_request_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        SecurityHeadersMiddleware,
        files_prefix=PUBLIC_PREFIX,
        frame_ancestors=f"'self' {settings.frontend_url}",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Admin-Key"],
        expose_headers=["X-Request-Id"],
        max_age=600,
    )
    # Outermost, so every log line of a request carries its id
    app.add_middleware(RequestContextMiddleware)

    # Rendered documents and QR images are public by location
    app.mount(
        PUBLIC_PREFIX,
        StaticFiles(directory=str(settings.storage_path), check_dir=False),
        name="files",
    )

    for router in ROUTERS:
        app.include_router(router)
    return app


app = create_app()
