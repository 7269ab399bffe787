"""FastAPI application factory and entry point.

Usage::

    # Development server (from project root)
    uvicorn page_relay.api.main:app --reload

    # Bundled runner (honours HOST / PORT)
    page-relay
"""

from __future__ import annotations

import time
import uuid
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from page_relay.config.settings import Settings, get_settings
from page_relay.core.exceptions import PageRelayError
from page_relay.core.logging_config import configure_logging, request_id_var
from page_relay.scraper.service import RelayService

# Records emitted while the module-level app is built need a handler before
# settings are read; create_app() re-applies the configured level.
configure_logging("INFO")

logger = structlog.get_logger(__name__)

_DESCRIPTION = (
    "Scraping relay that fetches pages through a quota-aware pool of "
    "scrape-service keys and returns normalized structured documents."
)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


async def _log_request(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Tag the request with an ID, then log its outcome and latency."""
    request_id = uuid.uuid4().hex
    request_id_var.set(request_id)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id, method=request.method, path=request.url.path
    )

    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception:
        logger.exception("request_crashed")
        raise
    finally:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        emit = logger.info if status_code < 400 else logger.warning
        emit("request_served", status_code=status_code, duration_ms=duration_ms)

    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _validation_message(exc: RequestValidationError) -> str:
    """Condense pydantic validation errors into one human-readable line."""
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(loc) for loc in error.get("loc", ()) if loc != "body")
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "Invalid request: " + "; ".join(parts) if parts else "Invalid request body"


async def _on_relay_error(request: Request, exc: PageRelayError) -> JSONResponse:
    logger.warning(
        "relay_error",
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        detail=str(exc),
    )
    return JSONResponse({"error": str(exc)}, status_code=exc.status_code)


async def _on_invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Clients expect 400 for malformed bodies, not FastAPI's 422.
    return JSONResponse({"error": _validation_message(exc)}, status_code=400)


async def _on_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("internal_error", exc_info=exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def _install_error_handlers(application: FastAPI) -> None:
    application.add_exception_handler(PageRelayError, _on_relay_error)
    application.add_exception_handler(RequestValidationError, _on_invalid_body)
    application.add_exception_handler(Exception, _on_unexpected_error)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def _install_lifecycle(application: FastAPI, settings: Settings) -> None:
    """Build the relay service on startup unless one was injected."""

    @application.on_event("startup")
    async def startup() -> None:
        if getattr(application.state, "relay_service", None) is None:
            from page_relay.api.dependencies import (  # noqa: PLC0415
                build_http_client,
                build_relay_service,
            )

            client = build_http_client(settings)
            application.state.http_client = client
            application.state.relay_service = build_relay_service(settings, client=client)

        service: RelayService = application.state.relay_service
        logger.info(
            "relay_started",
            app_name=settings.app_name,
            mode="service" if service.uses_service else "direct",
            pool_size=service.router.pool_size if service.router is not None else 0,
            log_level=settings.log_level,
        )

    @application.on_event("shutdown")
    async def shutdown() -> None:
        # Only a client built at startup is ours to close.
        client = getattr(application.state, "http_client", None)
        if client is not None:
            await client.aclose()
        logger.info("relay_stopped")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    relay_service: RelayService | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Args:
        settings: Settings to use; defaults to :func:`get_settings`.
        relay_service: Pre-built service (tests inject one).  When omitted,
            the service, key router and HTTP client are built on startup and
            the client is closed on shutdown.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        description=_DESCRIPTION,
        version="0.1.0",
        debug=settings.debug,
        redirect_slashes=False,
    )
    application.state.settings = settings
    if relay_service is not None:
        application.state.relay_service = relay_service

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.middleware("http")(_log_request)
    _install_error_handlers(application)

    from page_relay.api.routes import health, scrape  # noqa: PLC0415

    application.include_router(health.router)
    application.include_router(scrape.router)

    _install_lifecycle(application, settings)
    return application


app = create_app()
"""ASGI callable served by uvicorn."""


def run() -> None:
    """Console entry point: serve :data:`app` with uvicorn on the configured port."""
    import uvicorn  # noqa: PLC0415

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
