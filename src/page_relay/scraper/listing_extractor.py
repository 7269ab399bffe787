"""Result extraction for search-result and listing pages.

Listing pages do not fit the article-shaped :class:`ExtractionResult`: the
useful content is a list of entries, each a link with a title and a
snippet.  Candidate containers are tried from most to least specific
(:data:`~page_relay.scraper.config.LISTING_ITEM_SELECTORS`); the first
selector that yields any matching entry wins.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any
from urllib.parse import urljoin

from bs4 import Tag

from page_relay.scraper._helpers import collect_images, node_text, parse_html, remove_noise
from page_relay.scraper.config import LISTING_ITEM_SELECTORS, MAX_LISTING_RESULTS


def _entry(item: Tag, page_url: str) -> dict[str, str] | None:
    link = item.find("a", href=True)
    if link is None:
        return None
    href = urljoin(page_url, link["href"].strip())
    if not href.startswith(("http://", "https://")):
        return None
    title = node_text(item.find(["h2", "h3", "h4"])) or node_text(link)
    if not title:
        return None
    return {"title": title, "url": href, "snippet": node_text(item.find("p"))}


def _matches(entry: dict[str, str], terms: list[str]) -> bool:
    if not terms:
        return True
    haystack = f"{entry['title']} {entry['snippet']}".lower()
    return any(term in haystack for term in terms)


def extract_listing(
    html: str | None,
    url: str,
    query: str = "",
    *,
    limit: int = MAX_LISTING_RESULTS,
) -> dict[str, Any]:
    """Extract ``{"results": [...], "images": [...]}`` from a listing page.

    Args:
        html: Raw HTML of the listing page.
        url: Page URL, used to absolutize links and image sources.
        query: Whitespace-separated terms; an entry is kept when its title or
            snippet contains any of them (case-insensitive).  Empty keeps all.
        limit: Maximum number of results and of images.

    Returns:
        Dict with ``results`` (``{title, url, snippet}`` dicts) and
        ``images`` (``{src, alt}`` dicts).
    """
    soup = parse_html(html)
    remove_noise(soup)
    terms = [term.lower() for term in query.split()]

    results: list[dict[str, str]] = []
    for selector in LISTING_ITEM_SELECTORS:
        seen: set[str] = set()
        for item in soup.select(selector):
            entry = _entry(item, url)
            if entry is None or entry["url"] in seen or not _matches(entry, terms):
                continue
            seen.add(entry["url"])
            results.append(entry)
            if len(results) >= limit:
                break
        if results:
            break

    images = [asdict(image) for image in collect_images(soup, url)[:limit]]
    return {"results": results, "images": images}
