"""Host-specific extraction rules applied after the generic pass.

Overrides are an ordered table of :class:`SiteOverride` entries.  The first
entry whose ``host_pattern`` matches the page's host is applied; its
``apply`` callable only replaces a field when its own lookup succeeds, so
the generic value survives whenever the site's markup has moved on.

An override may also carry ``upstream_params`` that are merged into the
scrape-service request for matching URLs (e.g. retail pages need the
premium proxy pool and must not be autoparsed).

To add a site, write an ``apply`` function and append an entry to
:data:`SITE_OVERRIDES`.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, Tag

from page_relay.scraper._helpers import first_text, node_text
from page_relay.scraper.models import ExtractionResult


@dataclass(frozen=True)
class SiteOverride:
    """One row of the override table.

    Attributes:
        name: Short identifier reported as ``ExtractionResult.site``.
        host_pattern: Regex searched against the lower-cased host name.
        apply: Mutates the result using site-specific selectors.
        upstream_params: Extra scrape-service parameters for this site.
    """

    name: str
    host_pattern: re.Pattern[str]
    apply: Callable[[BeautifulSoup, ExtractionResult], None]
    upstream_params: Mapping[str, Any] = field(default_factory=dict)

    def matches(self, url: str) -> bool:
        host = (urlsplit(url).hostname or "").lower()
        return bool(host) and bool(self.host_pattern.search(host))


# ---------------------------------------------------------------------------
# Encyclopedia pages
# ---------------------------------------------------------------------------


def _wikipedia_heading(child: Tag) -> Tag | None:
    """Return the ``h2`` for a direct child of the article body, if it is one.

    Current markup wraps headings as ``<div class="mw-heading"><h2>``; older
    markup has bare ``<h2>`` children.
    """
    if child.name == "h2":
        return child
    if child.name == "div" and "mw-heading" in (child.get("class") or []):
        return child.find("h2", recursive=False)
    return None


def apply_wikipedia(soup: BeautifulSoup, result: ExtractionResult) -> None:
    """Intro from the first non-empty paragraph, sections from top-level ``h2``s."""
    container = soup.select_one("#mw-content-text .mw-parser-output") or soup.select_one(
        "#mw-content-text"
    )
    if container is None:
        return

    for edit_link in container.select(".mw-editsection"):
        edit_link.decompose()

    for paragraph in container.find_all("p", recursive=False):
        text = node_text(paragraph)
        if text:
            result.intro = text
            break

    sections: list[str] = []
    for child in container.find_all(True, recursive=False):
        heading = _wikipedia_heading(child)
        text = node_text(heading)
        if text:
            sections.append(text)
    if sections:
        result.sections = sections


# ---------------------------------------------------------------------------
# Retail product pages
# ---------------------------------------------------------------------------

_AMAZON_PRICE_SELECTORS: tuple[str, ...] = (
    "#corePrice_feature_div .a-price .a-offscreen",
    ".a-price .a-offscreen",
    "#priceblock_ourprice",
    "#priceblock_dealprice",
)


def apply_amazon(soup: BeautifulSoup, result: ExtractionResult) -> None:
    """Title, description, price and rating from product-page element ids."""
    title = first_text(soup, ("#productTitle",))
    if title:
        result.title = title

    description = first_text(soup, ("#productDescription", "#feature-bullets"))
    if description:
        result.description = description

    price = first_text(soup, _AMAZON_PRICE_SELECTORS)
    if price:
        result.site_fields["price"] = price

    rating = ""
    popover = soup.select_one("#acrPopover")
    if popover is not None:
        rating = (popover.get("title") or "").strip()
    if not rating:
        rating = first_text(soup, ("#averageCustomerReviews .a-icon-alt", ".a-icon-star .a-icon-alt"))
    if rating:
        result.site_fields["rating"] = rating


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------

SITE_OVERRIDES: tuple[SiteOverride, ...] = (
    SiteOverride(
        name="wikipedia",
        host_pattern=re.compile(r"(^|\.)wikipedia\.org$"),
        apply=apply_wikipedia,
    ),
    SiteOverride(
        name="amazon",
        host_pattern=re.compile(r"(^|\.)amazon\.(com|[a-z]{2}|co\.[a-z]{2}|com\.[a-z]{2})$"),
        apply=apply_amazon,
        upstream_params={"autoparse": False, "premium": True, "country_code": "us"},
    ),
)


def match_override(
    url: str,
    overrides: Sequence[SiteOverride] = SITE_OVERRIDES,
) -> SiteOverride | None:
    """Return the first override whose host pattern matches *url*, or ``None``."""
    for override in overrides:
        if override.matches(url):
            return override
    return None
