"""Request-handling core of the relay.

:class:`RelayService` is the single entry point used by the HTTP routes.
For each page it:

1. validates the URL (before any network call);
2. picks the fetch path: the scrape service with a credential leased from
   the :class:`~page_relay.core.key_router.KeyQuotaRouter`, or a direct
   fetch when no credential is configured;
3. translates fetch failures into the :mod:`page_relay.core.exceptions`
   taxonomy;
4. runs the extraction pipeline.

Usage is recorded against a credential only when the upstream fetch
succeeded; a failed fetch releases its reservation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Literal
from urllib.parse import urlsplit

import httpx

from page_relay.config.settings import Settings
from page_relay.core.exceptions import (
    InvalidInputError,
    NoCredentialsConfiguredError,
    PageRelayError,
    UpstreamAuthRejectedError,
    UpstreamError,
)
from page_relay.core.key_router import KeyQuotaRouter
from page_relay.scraper.config import (
    AUTH_REJECTED_STATUSES,
    DEEP_MIN_PARAGRAPH_CHARS,
    DEFAULT_TIMEOUT,
    MIN_PARAGRAPH_CHARS,
    RAW_HTML_EXCERPT_CHARS,
)
from page_relay.scraper.content_extractor import extract_from_html
from page_relay.scraper.http_fetcher import FetchResult, fetch_direct, fetch_via_service
from page_relay.scraper.listing_extractor import extract_listing
from page_relay.scraper.models import ExtractionResult
from page_relay.scraper.site_overrides import match_override

logger = logging.getLogger(__name__)

UpstreamMode = Literal["auto", "service", "direct"]


@dataclass(frozen=True)
class ScrapeOptions:
    """Per-request scrape options.

    Attributes:
        url: Page URL (validated by the service).
        autoparse: Ask the scrape service for pre-parsed JSON and run the
            deep extraction pass.
        render_js: Ask the scrape service to render JavaScript.
        deep: Run the deep extraction pass (``deepSearch``).
    """

    url: str
    autoparse: bool = False
    render_js: bool = True
    deep: bool = False


def validate_url(value: Any, field_name: str = "query") -> str:
    """Return the stripped URL or raise :class:`InvalidInputError`.

    Only absolute ``http``/``https`` URLs with a well-formed host (and port,
    when one is given) are accepted.
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f'A valid URL is required in the "{field_name}" field')
    url = value.strip()
    rejected = InvalidInputError(
        f"Invalid URL: {url!r}. Only absolute http(s) URLs are supported."
    )
    try:
        parts = urlsplit(url)
        # Out-of-range or non-numeric ports only surface on access.
        parts.port  # noqa: B018
    except ValueError as exc:
        raise rejected from exc
    host = parts.hostname
    if parts.scheme not in ("http", "https") or not host or any(c.isspace() for c in host):
        raise rejected
    return url


class RelayService:
    """Fetch-and-extract orchestration over a shared HTTP client.

    Args:
        client: Shared :class:`httpx.AsyncClient`.
        router: Key router owning the credential pool, or ``None`` when the
            scrape service is never used.
        mode: ``auto``, ``service`` or ``direct``; see :attr:`uses_service`.
        service_base_url: Scrape service endpoint.
        timeout: Upstream timeout in seconds.
        min_paragraph_chars: Generic paragraph threshold.
        deep_min_paragraph_chars: Deep-pass paragraph threshold.
        excerpt_chars: Raw markup excerpt length.
        batch_concurrency: Concurrent fetches for :meth:`scrape_many`.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        router: KeyQuotaRouter | None,
        mode: UpstreamMode = "auto",
        service_base_url: str = "https://api.scraperapi.com/",
        timeout: float = DEFAULT_TIMEOUT,
        min_paragraph_chars: int = MIN_PARAGRAPH_CHARS,
        deep_min_paragraph_chars: int = DEEP_MIN_PARAGRAPH_CHARS,
        excerpt_chars: int = RAW_HTML_EXCERPT_CHARS,
        batch_concurrency: int = 5,
    ) -> None:
        self._client = client
        self._router = router
        self._mode = mode
        self._service_base_url = service_base_url
        self._timeout = timeout
        self._min_paragraph_chars = min_paragraph_chars
        self._deep_min_paragraph_chars = deep_min_paragraph_chars
        self._excerpt_chars = excerpt_chars
        self._batch_concurrency = max(1, batch_concurrency)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: httpx.AsyncClient,
        router: KeyQuotaRouter | None,
    ) -> RelayService:
        return cls(
            client=client,
            router=router,
            mode=settings.upstream_mode,
            service_base_url=settings.scraper_api_base_url,
            timeout=settings.upstream_timeout_seconds,
            min_paragraph_chars=settings.min_paragraph_chars,
            deep_min_paragraph_chars=settings.deep_min_paragraph_chars,
            excerpt_chars=settings.raw_html_excerpt_chars,
            batch_concurrency=settings.batch_concurrency,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def router(self) -> KeyQuotaRouter | None:
        return self._router

    @property
    def uses_service(self) -> bool:
        """Whether fetches go through the scrape service.

        ``service`` mode always does (and fails without credentials);
        ``auto`` does when the pool holds at least one credential.
        """
        if self._mode == "direct":
            return False
        if self._mode == "service":
            return True
        return self._router is not None and self._router.pool_size > 0

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def _fetch(self, url: str, *, autoparse: bool, render_js: bool) -> tuple[FetchResult, str]:
        """Fetch *url* through the configured path and raise on failure.

        Returns:
            ``(fetch_result, source)`` where *source* is ``"service"`` or ``"direct"``.
        """
        if not self.uses_service:
            fetched = await fetch_direct(url, client=self._client, timeout=self._timeout)
            if not fetched.ok:
                raise UpstreamError(
                    f"Failed to scrape with fetch: {fetched.error}",
                    url=url,
                    upstream_status=fetched.status_code,
                )
            return fetched, "direct"

        if self._router is None:
            raise NoCredentialsConfiguredError()

        override = match_override(url)
        extra = dict(override.upstream_params) if override is not None else None

        async with self._router.lease() as credential:
            fetched = await fetch_via_service(
                url,
                api_key=credential.key,
                client=self._client,
                base_url=self._service_base_url,
                autoparse=autoparse,
                render_js=render_js,
                extra_params=extra,
                timeout=self._timeout,
            )
            if not fetched.ok:
                if fetched.status_code in AUTH_REJECTED_STATUSES:
                    logger.error("relay: scrape service rejected key #%d", credential.index)
                    raise UpstreamAuthRejectedError(
                        "Scraping service rejected the API key",
                        url=url,
                        upstream_status=fetched.status_code,
                    )
                raise UpstreamError(
                    f"Scraping service failed: {fetched.error}",
                    url=url,
                    upstream_status=fetched.status_code,
                )
            if fetched.html is None and not fetched.data:
                raise UpstreamError("Scraping service returned an empty payload", url=url)
            logger.info("relay: fetched %s via scrape service with key #%d", url, credential.index)
        return fetched, "service"

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def scrape(self, options: ScrapeOptions) -> ExtractionResult:
        """Fetch one page and return its structured extraction.

        Raises:
            InvalidInputError: Missing or malformed URL.
            QuotaExhaustedError: Every credential is at its monthly cap.
            NoCredentialsConfiguredError: Service mode without credentials.
            UpstreamAuthRejectedError: The scrape service rejected the key.
            UpstreamError: Any other fetch failure.
        """
        url = validate_url(options.url)
        fetched, source = await self._fetch(
            url, autoparse=options.autoparse, render_js=options.render_js
        )
        result = extract_from_html(
            fetched.html,
            url,
            deep=options.deep or options.autoparse,
            parsed=fetched.data,
            min_paragraph_chars=self._min_paragraph_chars,
            deep_min_paragraph_chars=self._deep_min_paragraph_chars,
            excerpt_chars=self._excerpt_chars,
        )
        result.source = source
        return result

    async def scrape_many(
        self,
        urls: list[str],
        options: ScrapeOptions | None = None,
    ) -> list[dict[str, Any]]:
        """Scrape several pages concurrently, reporting failures per URL.

        Each entry is ``{"url", "result"}`` on success or ``{"url", "error"}``
        on failure; one failing URL never aborts the others.  Order follows
        *urls*.
        """
        template = options or ScrapeOptions(url="")
        semaphore = asyncio.Semaphore(self._batch_concurrency)

        async def _one(url: str) -> dict[str, Any]:
            async with semaphore:
                try:
                    result = await self.scrape(replace(template, url=url))
                except PageRelayError as exc:
                    logger.warning("relay: batch entry %s failed: %s", url, exc)
                    return {"url": url, "error": str(exc)}
                return {"url": url, "result": result.to_dict()}

        return list(await asyncio.gather(*(_one(url) for url in urls)))

    async def scrape_listing(self, url: str, query: str = "", *, render_js: bool = True) -> dict[str, Any]:
        """Fetch a search-result/listing page and extract its entries.

        Returns:
            ``{"results": [...], "images": [...]}``; see
            :func:`~page_relay.scraper.listing_extractor.extract_listing`.
        """
        page_url = validate_url(url, field_name="url")
        fetched, _source = await self._fetch(page_url, autoparse=False, render_js=render_js)
        return extract_listing(fetched.html, page_url, query or "")
