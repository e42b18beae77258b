"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys

import structlog

from .errors import is_transient_tls_error

_ROUTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def setup_logging(*, json: bool = True, level: str = "INFO") -> None:
    """Configure structlog for the relay process.

    The root handler is the only one: uvicorn runs with ``log_config=None``
    (see ``__main__``) and its loggers are stripped of their own handlers
    so server and access lines come out through the same renderer as the
    relay's events.  aioimaplib logs every IMAP line at DEBUG, so it is
    held at INFO or above.

    Parameters
    ----------
    json:
        If *True* (the default, suitable for production), output JSON
        lines.  If *False*, use a human-friendly console renderer.
    level:
        Root log level name (e.g. ``"DEBUG"``, ``"INFO"``).
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _ROUTED_LOGGERS:
        routed = logging.getLogger(name)
        routed.handlers.clear()
        routed.propagate = True
    logging.getLogger("aioimaplib").setLevel(max(root.level, logging.INFO))


def log_protocol_error(
    logger: structlog.typing.FilteringBoundLogger,
    event: str,
    exc: BaseException,
    **context: object,
) -> None:
    """Log a mailbox failure: transient TLS errors as warnings, the rest as errors."""
    if is_transient_tls_error(exc):
        logger.warning(f"{event}_tls_transient", error=str(exc), **context)
    else:
        logger.error(event, error=str(exc), error_type=type(exc).__name__, **context)
