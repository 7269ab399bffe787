"""Async page fetchers: direct HTTP and the scrape-as-a-service API.

Both fetchers use a shared ``httpx.AsyncClient`` and never raise for
network or HTTP problems.  Failures are reported on the returned
:class:`FetchResult` so that the caller can decide how to surface them.

The scrape service answers either with raw HTML or, when ``autoparse`` is
on, with a JSON envelope of pre-parsed fields (which may itself embed the
page HTML under ``html`` or ``body``).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from page_relay.scraper.config import BINARY_CONTENT_TYPES, DEFAULT_TIMEOUT, USER_AGENT

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------


@dataclass
class FetchResult:
    """Outcome of one upstream request.

    Attributes:
        html: Page markup, or ``None`` when the upstream returned none.
        status_code: Upstream HTTP status; ``None`` when no response arrived.
        final_url: URL after redirects (direct fetch) or the requested page
            URL (service fetch).
        error: Why the fetch is unusable; ``None`` on success.
        data: Decoded JSON envelope from the scrape service, if any.
        timed_out: The request hit the timeout.
    """

    html: str | None
    status_code: int | None
    final_url: str | None
    error: str | None
    data: dict[str, Any] | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(
        cls,
        error: str,
        *,
        final_url: str | None,
        status_code: int | None = None,
        data: dict[str, Any] | None = None,
        timed_out: bool = False,
    ) -> FetchResult:
        return cls(
            html=None,
            status_code=status_code,
            final_url=final_url,
            error=error,
            data=data,
            timed_out=timed_out,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def _is_binary_content_type(content_type: str) -> bool:
    """Whether *content_type* names a non-text resource (PDF, image, archive...)."""
    media_type = _media_type(content_type)
    return media_type.startswith(tuple(BINARY_CONTENT_TYPES))


def _is_json_content_type(content_type: str) -> bool:
    media_type = _media_type(content_type)
    return media_type == "application/json" or media_type.endswith("+json")


async def _get(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: dict[str, str] | None,
    timeout: float,
    page_url: str,
) -> httpx.Response | FetchResult:
    """Issue a GET; transport errors come back as a failed :class:`FetchResult`.

    *page_url* is the page being scraped.  It is what gets logged, so the
    scrape-service URL (which carries the credential) never is.
    """
    try:
        return await client.get(
            url,
            params=params,
            headers={"User-Agent": USER_AGENT},
            timeout=timeout,
            follow_redirects=True,
        )
    except httpx.TimeoutException:
        logger.warning("fetcher: no response from upstream for %s within %gs", page_url, timeout)
        return FetchResult.failure(
            f"timeout after {timeout:g}s", final_url=page_url, timed_out=True
        )
    except httpx.TooManyRedirects:
        logger.warning("fetcher: redirect loop for %s", page_url)
        return FetchResult.failure("too many redirects", final_url=page_url)
    except httpx.RequestError as exc:
        reason = type(exc).__name__
        logger.warning("fetcher: %s while fetching %s", reason, page_url)
        return FetchResult.failure(f"request error: {reason}", final_url=page_url)


def _http_error(status: int) -> str:
    return f"HTTP error! status: {status}"


# ---------------------------------------------------------------------------
# Direct fetch
# ---------------------------------------------------------------------------


async def fetch_direct(
    url: str,
    *,
    client: httpx.AsyncClient,
    timeout: float = DEFAULT_TIMEOUT,
) -> FetchResult:
    """Fetch a page ourselves, with a browser-like user agent.

    Used when no scrape-service credential is configured (or the relay runs
    in ``direct`` mode).  Redirects are followed; 4xx/5xx statuses and
    binary content types come back as failures.
    """
    outcome = await _get(client, url, params=None, timeout=timeout, page_url=url)
    if isinstance(outcome, FetchResult):
        return outcome

    status = outcome.status_code
    landed_on = str(outcome.url)
    if status >= 400:
        logger.info("fetcher: %s answered HTTP %d", url, status)
        return FetchResult.failure(_http_error(status), final_url=landed_on, status_code=status)

    content_type = outcome.headers.get("content-type", "")
    if _is_binary_content_type(content_type):
        logger.info("fetcher: %s is %s, not a page", url, content_type)
        return FetchResult.failure(
            f"binary content-type: {content_type}", final_url=landed_on, status_code=status
        )

    try:
        markup = outcome.text
    except (UnicodeDecodeError, LookupError) as exc:
        logger.warning("fetcher: cannot decode %s: %s", url, exc)
        return FetchResult.failure(
            f"decode error: {exc}", final_url=landed_on, status_code=status
        )
    return FetchResult(html=markup, status_code=status, final_url=landed_on, error=None)


# ---------------------------------------------------------------------------
# Scrape-service fetch
# ---------------------------------------------------------------------------


def build_service_params(
    url: str,
    api_key: str,
    *,
    autoparse: bool,
    render_js: bool,
    extra: dict[str, Any] | None = None,
) -> dict[str, str]:
    """Build the query string for the scrape service.

    Booleans are rendered as lowercase ``"true"``/``"false"``.  Entries in
    *extra* (domain-override parameters) win over the defaults.
    """
    params: dict[str, Any] = {
        "api_key": api_key,
        "url": url,
        "render": render_js,
        "autoparse": autoparse,
    }
    if extra:
        params.update(extra)
    return {
        key: (str(value).lower() if isinstance(value, bool) else str(value))
        for key, value in params.items()
    }


def _decode_envelope(response: httpx.Response, url: str) -> FetchResult:
    """Interpret a 2xx scrape-service body as raw HTML or a JSON envelope."""
    status = response.status_code
    body = response.text
    declared_json = _is_json_content_type(response.headers.get("content-type", ""))
    if not declared_json and not body.lstrip().startswith("{"):
        return FetchResult(html=body, status_code=status, final_url=url, error=None)

    try:
        envelope = json.loads(body)
    except ValueError:
        if not declared_json:
            # Markup that happens to start with a brace.
            return FetchResult(html=body, status_code=status, final_url=url, error=None)
        logger.warning("fetcher: scrape service sent unparsable JSON for %s", url)
        return FetchResult.failure("malformed upstream payload", final_url=url, status_code=status)

    if not isinstance(envelope, dict):
        return FetchResult.failure("malformed upstream payload", final_url=url, status_code=status)
    if envelope.get("error"):
        return FetchResult.failure(
            str(envelope["error"]), final_url=url, status_code=status, data=envelope
        )

    embedded = envelope.get("html") or envelope.get("body")
    return FetchResult(
        html=embedded if isinstance(embedded, str) else None,
        status_code=status,
        final_url=url,
        error=None,
        data=envelope,
    )


async def fetch_via_service(
    url: str,
    *,
    api_key: str,
    client: httpx.AsyncClient,
    base_url: str,
    autoparse: bool = True,
    render_js: bool = True,
    extra_params: dict[str, Any] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> FetchResult:
    """Fetch a page through the scrape-as-a-service API.

    Performs the following steps:

    1. **HTTP GET** against *base_url* with the credential and page URL as
       query parameters.
    2. **Status check**: any status >= 400 is reported as an error with the
       upstream status preserved (401/403 mean the key was rejected).
    3. **Payload decode**: JSON responses are decoded into ``data``; an
       ``error`` member in the envelope is reported as an error.  Any
       ``html``/``body`` string member is lifted into ``html``.  Non-JSON
       responses are taken as raw HTML.

    Args:
        url: Page URL to scrape.
        api_key: Credential selected by the key router.
        client: Shared :class:`httpx.AsyncClient` instance.
        base_url: Scrape service endpoint.
        autoparse: Ask the service for pre-parsed JSON.
        render_js: Ask the service to render JavaScript.
        extra_params: Domain-specific parameters (e.g. ``premium``).
        timeout: Seconds before the request is abandoned.

    Returns:
        A :class:`FetchResult`.
    """
    params = build_service_params(
        url, api_key, autoparse=autoparse, render_js=render_js, extra=extra_params
    )
    outcome = await _get(client, base_url, params=params, timeout=timeout, page_url=url)
    if isinstance(outcome, FetchResult):
        return outcome

    if outcome.status_code >= 400:
        logger.info("fetcher: scrape service answered HTTP %d for %s", outcome.status_code, url)
        return FetchResult.failure(
            _http_error(outcome.status_code), final_url=url, status_code=outcome.status_code
        )
    return _decode_envelope(outcome, url)
