"""Pydantic request/response schemas for the relay API.

Used by the route handlers for validation, serialisation, and OpenAPI
documentation generation.  URL fields are declared as plain optional
strings: a missing or malformed URL is reported as HTTP 400 by the relay
service rather than as a schema error.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ScrapeRequest(BaseModel):
    """Payload for ``POST /scrape``.

    Attributes:
        query: Absolute http(s) URL of the page to scrape.
        autoparse: Ask the scrape service for pre-parsed JSON and run the
            deep extraction pass.
        render_js: Ask the scrape service to render JavaScript.
        deep_search: Run the deep extraction pass (JSON key ``deepSearch``).
    """

    model_config = ConfigDict(populate_by_name=True)

    query: Optional[str] = None
    autoparse: bool = False
    render_js: bool = True
    deep_search: bool = Field(default=False, alias="deepSearch")


class MultiScrapeRequest(BaseModel):
    """Payload for ``POST /scrape-multi``."""

    model_config = ConfigDict(populate_by_name=True)

    queries: List[Optional[str]] = Field(min_length=1)
    autoparse: bool = False
    render_js: bool = True
    deep_search: bool = Field(default=False, alias="deepSearch")


class SpiderRequest(BaseModel):
    """Payload for ``POST /scrape-spider``.

    Attributes:
        url: Listing or search-result page to scrape.
        query: Terms an entry must mention to be returned; empty keeps all.
    """

    url: Optional[str] = None
    query: str = ""
    render_js: bool = True


class ImageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    src: str
    alt: str


class ExtractionResultRead(BaseModel):
    """Serialised :class:`~page_relay.scraper.models.ExtractionResult`."""

    model_config = ConfigDict(from_attributes=True)

    url: str
    html: str
    title: str
    description: str
    intro: str
    headings: List[str]
    sections: List[str]
    paragraphs: List[str]
    list_items: List[str]
    images: List[ImageRead]
    tables: List[str]
    site: Optional[str]
    site_fields: Dict[str, str]
    source: str


class ScrapeResponse(BaseModel):
    result: ExtractionResultRead
