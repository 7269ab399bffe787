"""structlog setup for the relay.

:func:`configure_logging` is called by ``page_relay.api.main`` at import time
and again by ``create_app()`` once the configured level is known.  Library
modules (router, fetchers, extractor) log through ``logging.getLogger``;
their records are rendered by the same structlog formatter as the
``structlog.get_logger`` calls made in the API layer.

Output is one JSON object per line, or coloured console lines at ``DEBUG``.
Every record carries ``timestamp``, ``level``, ``logger`` and ``event``;
records emitted while serving a request also carry ``request_id``.

Scrape-service credentials travel as the ``api_key`` query parameter, so
two processors keep them out of the logs: fields whose name looks
credential-bearing are replaced wholesale, and ``api_key=...`` fragments
inside string values (URLs, exception messages) are masked.
"""

from __future__ import annotations

import logging
import re
import sys
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

REDACTED = "[REDACTED]"

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
"""ID of the request being served; set by the request-logging middleware."""

_SENSITIVE_FIELD_PARTS: tuple[str, ...] = (
    "api_key",
    "apikey",
    "x-api-key",
    "authorization",
    "credential",
    "secret",
    "token",
)

_QUERY_CREDENTIAL = re.compile(r"(?i)\b(api_?key=)[^&\s'\"]+")

#: Loggers that would otherwise echo full upstream URLs at INFO.
_QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "uvicorn.access")


def _is_sensitive(field_name: Any) -> bool:
    lowered = str(field_name).lower()
    return any(part in lowered for part in _SENSITIVE_FIELD_PARTS)


def _mask_query_credentials(value: Any) -> Any:
    if isinstance(value, str):
        return _QUERY_CREDENTIAL.sub(rf"\1{REDACTED}", value)
    return value


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Blank credential-bearing fields, including one level of nested dicts."""
    for name, value in list(event_dict.items()):
        if _is_sensitive(name):
            event_dict[name] = REDACTED
        elif isinstance(value, dict):
            for nested in [key for key in value if _is_sensitive(key)]:
                value[nested] = REDACTED
    return event_dict


def _scrub_urls(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Mask ``api_key=<value>`` inside any top-level string value."""
    for name, value in list(event_dict.items()):
        event_dict[name] = _mask_query_credentials(value)
    return event_dict


def _inject_request_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    request_id = request_id_var.get()
    if request_id is not None:
        event_dict.setdefault("request_id", request_id)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        _inject_request_id,
        _redact_secrets,
        _scrub_urls,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(log_level: str = "INFO") -> None:
    """Route stdlib and structlog records through one structlog renderer.

    Safe to call repeatedly: the root logger's handlers are replaced, never
    appended to.

    Args:
        log_level: Level name, case-insensitive.  Unknown names fall back to
            ``INFO``.  ``DEBUG`` switches to the console renderer.
    """
    level_name = log_level.upper()
    level = getattr(logging, level_name, logging.INFO)
    renderer: Processor = (
        structlog.dev.ConsoleRenderer(colors=True)
        if level_name == "DEBUG"
        else structlog.processors.JSONRenderer()
    )

    processors = _shared_processors()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
