"""Structured logging configuration.

Event fields named like credentials are masked before rendering, so a token
passed to a logger by mistake never reaches the output.
"""

import logging
import sys
from typing import Any

import structlog

from social_link.config import settings

REDACTED = "[redacted]"
SENSITIVE_FIELDS = frozenset(
    {
        "access_token",
        "refresh_token",
        "code",
        "code_verifier",
        "client_secret",
        "authorization",
        "encryption_master_key",
    }
)


def redact_secrets(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor that masks credential fields and shortens OAuth states."""
    for key in SENSITIVE_FIELDS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    if isinstance(event_dict.get("state"), str) and not event_dict["state"].endswith("..."):
        event_dict["state"] = state_prefix(event_dict["state"])
    return event_dict


def setup_logging() -> None:
    """Configure structlog and route stdlib logging through it.

    Safe to call more than once; the root handler is only installed once.
    """
    if settings.log_format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level.upper())
    if any(getattr(h, "_social_link", False) for h in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    handler._social_link = True  # type: ignore[attr-defined]
    root_logger.addHandler(handler)

    # Request logs carry OAuth codes in query strings
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance for a module."""
    return structlog.get_logger(name)


def state_prefix(state: str | None) -> str:
    """Shorten an OAuth state value so it can be logged."""
    if not state:
        return ""
    return f"{state[:8]}..."
