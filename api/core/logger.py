"""Structured logging for the certificate issuer.

structlog renders every record, ours and third-party alike:
- LOG_FORMAT=json gives one JSON object per line (production)
- anything else gives coloured console output (local development)
- request-scoped fields come from contextvars (see core.middleware)
- recipient email addresses are masked before rendering

Modules log with the stdlib API and pass structured fields as ``extra``:

    logger = logging.getLogger(__name__)
    logger.info("certificate.generated", extra={"verification_code": code})

``get_logger`` returns a structlog logger for call sites that prefer keyword
fields.
"""

import logging
import os
import sys

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars
from structlog.types import EventDict, Processor

__all__ = [
    "bind_contextvars",
    "clear_contextvars",
    "configure_logging",
    "get_logger",
    "mask_email",
]

# Fields that may carry a recipient address
_EMAIL_FIELDS = ("to", "email", "recipient_email")

_QUIET_LOGGERS = ("uvicorn.access", "fontTools", "PIL", "multipart")


def mask_email(address: str) -> str:
    """``ada@example.com`` -> ``a***@example.com``."""
    local, sep, domain = address.partition("@")
    if not sep or not local:
        return address
    return f"{local[0]}***@{domain}"


def _mask_emails(_logger: object, _method: str, event_dict: EventDict) -> EventDict:
    for key in _EMAIL_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str):
            event_dict[key] = mask_email(value)
    return event_dict


def _log_level() -> int:
    name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _renderer() -> Processor:
    if os.environ.get("LOG_FORMAT", "").lower() == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=True, exception_formatter=structlog.dev.plain_traceback
    )


def configure_logging() -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Safe to call more than once; the root handler is replaced each time.
    """
    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _mask_emails,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                _renderer(),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_log_level())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Structured logger taking keyword fields: ``logger.info("x", key=v)``."""
    return structlog.stdlib.get_logger(name)
