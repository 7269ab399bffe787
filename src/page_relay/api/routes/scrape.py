"""Scrape route handlers.

Routes:
    POST /scrape         scrape one URL into a structured document
    POST /scrape-multi   scrape several URLs; failures reported per URL
    POST /scrape-spider  extract entries from a search/listing page

Errors raised by the relay service are subclasses of
:class:`~page_relay.core.exceptions.PageRelayError`; the application's
exception handler turns them into ``{"error": ...}`` bodies with the
matching status code.
"""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends

from page_relay.api.dependencies import get_relay_service
from page_relay.core.schemas.scraping import (
    ExtractionResultRead,
    MultiScrapeRequest,
    ScrapeRequest,
    ScrapeResponse,
    SpiderRequest,
)
from page_relay.scraper.service import RelayService, ScrapeOptions, validate_url

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["scrape"])


@router.post("/scrape", response_model=ScrapeResponse)
async def scrape(
    payload: ScrapeRequest,
    service: Annotated[RelayService, Depends(get_relay_service)],
) -> ScrapeResponse:
    """Scrape a single URL.

    Returns:
        ``{"result": ExtractionResult}``.

    Raises:
        InvalidInputError (400), QuotaExhaustedError /
        NoCredentialsConfiguredError (429), UpstreamAuthRejectedError (401),
        UpstreamError (500).
    """
    logger.info("scrape_requested", url=payload.query, autoparse=payload.autoparse)
    result = await service.scrape(
        ScrapeOptions(
            url=payload.query or "",
            autoparse=payload.autoparse,
            render_js=payload.render_js,
            deep=payload.deep_search,
        )
    )
    logger.info("scrape_complete", url=result.url, source=result.source, site=result.site)
    return ScrapeResponse(result=ExtractionResultRead.model_validate(result))


@router.post("/scrape-multi")
async def scrape_multi(
    payload: MultiScrapeRequest,
    service: Annotated[RelayService, Depends(get_relay_service)],
) -> dict[str, Any]:
    """Scrape several URLs concurrently.

    Every URL is validated before any fetch starts; one invalid URL rejects
    the whole request with 400.  After that, per-URL failures are reported
    inline as ``{"url", "error"}`` entries.
    """
    urls = [validate_url(query, field_name="queries") for query in payload.queries]
    logger.info("scrape_multi_requested", url_count=len(urls))
    results = await service.scrape_many(
        urls,
        ScrapeOptions(
            url="",
            autoparse=payload.autoparse,
            render_js=payload.render_js,
            deep=payload.deep_search,
        ),
    )
    failed = sum(1 for entry in results if "error" in entry)
    logger.info("scrape_multi_complete", url_count=len(urls), failed=failed)
    return {"results": results}


@router.post("/scrape-spider")
async def scrape_spider(
    payload: SpiderRequest,
    service: Annotated[RelayService, Depends(get_relay_service)],
) -> dict[str, Any]:
    """Extract result entries and images from a search or listing page."""
    listing = await service.scrape_listing(
        payload.url or "", payload.query, render_js=payload.render_js
    )
    logger.info(
        "scrape_spider_complete",
        url=payload.url,
        result_count=len(listing["results"]),
        image_count=len(listing["images"]),
    )
    return listing
