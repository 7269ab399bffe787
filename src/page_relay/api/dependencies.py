"""Application wiring and FastAPI dependencies.

The relay service, its key router and the shared HTTP client are built once
per application and stored on ``app.state``.  Route handlers receive the
service through :func:`get_relay_service`; tests replace ``app.state``
entries (or pass ``relay_service`` to ``create_app``) to inject doubles.
"""

from __future__ import annotations

from collections.abc import Mapping

import httpx
from fastapi import Request

from page_relay.config.settings import Settings
from page_relay.core.key_router import KeyQuotaRouter, discover_env_credentials
from page_relay.core.ledger_store import JsonFileLedgerStore, LedgerStore
from page_relay.scraper.config import USER_AGENT
from page_relay.scraper.service import RelayService


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """Return the shared async HTTP client for upstream calls."""
    return httpx.AsyncClient(
        timeout=settings.upstream_timeout_seconds,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
    )


def build_key_router(
    settings: Settings,
    *,
    env: Mapping[str, str] | None = None,
    store: LedgerStore | None = None,
) -> KeyQuotaRouter:
    """Build the key router from the environment's credential pool.

    Numbered ``SCRAPER_API_KEY_<n>`` entries win; otherwise the single
    ``scraper_api_key`` setting (which also honours ``.env``) is used.
    """
    pool = discover_env_credentials(env)
    if not pool and settings.scraper_api_key.strip():
        pool = (settings.scraper_api_key.strip(),)
    return KeyQuotaRouter(
        pool,
        store if store is not None else JsonFileLedgerStore(settings.usage_state_path),
        cap=settings.monthly_request_cap,
    )


def build_relay_service(
    settings: Settings,
    *,
    client: httpx.AsyncClient,
    env: Mapping[str, str] | None = None,
    store: LedgerStore | None = None,
) -> RelayService:
    router = build_key_router(settings, env=env, store=store)
    return RelayService.from_settings(settings, client=client, router=router)


def get_relay_service(request: Request) -> RelayService:
    """FastAPI dependency returning the application-scoped :class:`RelayService`."""
    return request.app.state.relay_service
