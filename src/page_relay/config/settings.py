"""Application settings loaded from environment variables.

Uses Pydantic Settings v2 for validated, type-safe configuration.
Scalar settings are accessed exclusively through this module.  The numbered
credential pool (``SCRAPER_API_KEY_1`` .. ``SCRAPER_API_KEY_N``) is the one
exception: its size is open-ended, so it is discovered from the raw
environment by :func:`page_relay.core.key_router.discover_env_credentials`.

Usage::

    from page_relay.config.settings import get_settings

    settings = get_settings()
    cap = settings.monthly_request_cap
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Relay configuration backed by environment variables and an optional .env file.

    Every field has a default so the relay starts with no configuration at
    all; in that state it fetches pages directly and never touches the
    usage ledger.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Application behaviour
    # ------------------------------------------------------------------

    app_name: str = "Page Relay"
    """Human-readable application name shown in the OpenAPI docs."""

    debug: bool = False
    """Enable FastAPI debug mode.  Never True in production."""

    log_level: str = "INFO"
    """Logging verbosity.  One of: DEBUG, INFO, WARNING, ERROR, CRITICAL."""

    host: str = "0.0.0.0"
    """Interface the bundled uvicorn runner binds to."""

    port: int = 3000
    """TCP port the bundled uvicorn runner binds to (env ``PORT``)."""

    allowed_origins: list[str] = ["*"]
    """Origins permitted by the CORS middleware.  The relay is called from
    browser-embedded chat widgets, so every origin is allowed by default."""

    # ------------------------------------------------------------------
    # Upstream scraping service
    # ------------------------------------------------------------------

    scraper_api_key: str = ""
    """Single scrape-service credential.  Used as a one-element pool when no
    numbered ``SCRAPER_API_KEY_<n>`` entries are present."""

    scraper_api_base_url: str = "https://api.scraperapi.com/"
    """Endpoint of the scrape-as-a-service API."""

    upstream_mode: Literal["auto", "service", "direct"] = "auto"
    """``auto`` uses the scrape service when at least one credential is
    configured and fetches directly otherwise.  ``service`` and ``direct``
    force one path."""

    upstream_timeout_seconds: float = 30.0
    """Timeout applied to every upstream request.  Timeouts are not retried."""

    # ------------------------------------------------------------------
    # Usage ledger
    # ------------------------------------------------------------------

    monthly_request_cap: int = 1000
    """Maximum successful requests per credential per calendar month."""

    usage_state_path: str = "scraper_usage.json"
    """JSON file holding the persisted usage ledger."""

    # ------------------------------------------------------------------
    # Extraction tuning
    # ------------------------------------------------------------------

    raw_html_excerpt_chars: int = 2000
    """Length of the raw markup excerpt returned for debugging."""

    min_paragraph_chars: int = 50
    """Paragraphs must be strictly longer than this to be kept."""

    deep_min_paragraph_chars: int = 20
    """Looser paragraph threshold used when ``autoparse``/``deepSearch`` is set."""

    batch_concurrency: int = 5
    """Maximum number of concurrent fetches for ``/scrape-multi``."""


@lru_cache
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    In tests, call ``get_settings.cache_clear()`` after patching environment
    variables.

    Returns:
        Settings: The validated settings object.
    """
    return Settings()
