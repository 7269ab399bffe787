"""Shared pytest fixtures for Page Relay tests.

Fixture summary
---------------
fixed_now       The frozen "current time" used by key routers in tests.
clock           Callable returning ``fixed_now``; inject into KeyQuotaRouter.
memory_store    Empty in-memory ledger store.
make_router     Factory building a KeyQuotaRouter on the memory store.
http_client     Plain httpx.AsyncClient for fetcher/service tests (mock with respx).
make_client     Factory yielding an httpx.AsyncClient against a FastAPI app
                wrapping a given RelayService.

No test touches the network: upstream HTTP is mocked with ``respx`` and the
API is exercised in-process through ``httpx.ASGITransport``.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Importing page_relay.api.main builds the module-level app from Settings();
# keep it deterministic regardless of the developer's shell.

os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("UPSTREAM_MODE", "auto")

from page_relay.api.main import create_app  # noqa: E402
from page_relay.config.settings import Settings, get_settings  # noqa: E402
from page_relay.core.key_router import KeyQuotaRouter  # noqa: E402
from page_relay.core.ledger_store import LedgerState, MemoryLedgerStore  # noqa: E402
from page_relay.scraper.service import RelayService  # noqa: E402

get_settings.cache_clear()

#: October 2026; zero-based month 9.
FIXED_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def memory_store() -> MemoryLedgerStore:
    return MemoryLedgerStore()


@pytest.fixture
def make_router(
    memory_store: MemoryLedgerStore, clock: Callable[[], datetime]
) -> Callable[..., KeyQuotaRouter]:
    """Return a factory for routers sharing the test clock.

    ``counts`` pre-seeds the store as if a previous process had persisted
    them during the current month.
    """

    def _make(
        pool: Sequence[str] = ("key-a",),
        *,
        cap: int = 1000,
        counts: Sequence[int] | None = None,
        cursor: int = 0,
        store: MemoryLedgerStore | None = None,
    ) -> KeyQuotaRouter:
        target = store if store is not None else memory_store
        if counts is not None:
            target.state = LedgerState(
                current_index=cursor,
                usage_counts=list(counts),
                last_reset_month=FIXED_NOW.month - 1,
            )
        return KeyQuotaRouter(pool, target, cap=cap, clock=clock)

    return _make


@pytest_asyncio.fixture
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def test_settings() -> Settings:
    return Settings(log_level="WARNING", upstream_timeout_seconds=5.0)


@pytest.fixture
def make_client(test_settings: Settings):
    """Return an async context manager factory: ``async with make_client(service) as ac``.

    Startup handlers are triggered by hand because ``ASGITransport`` does not
    emit lifespan events.
    """

    @asynccontextmanager
    async def _make(service: RelayService) -> AsyncGenerator[AsyncClient, None]:
        app = create_app(test_settings, relay_service=service)
        for handler in app.router.on_startup:
            await handler()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

    return _make
