"""Small BeautifulSoup helpers shared by the extraction modules."""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from page_relay.scraper.config import (
    AD_TOKEN_PATTERN,
    DEFAULT_IMAGE_ALT,
    MAIN_CONTENT_SELECTORS,
    NOISE_SELECTORS,
    NOISE_TAGS,
    TAXONOMY_TOKEN_PREFIXES,
)
from page_relay.scraper.models import ImageRef


def parse_html(html: str | None) -> BeautifulSoup:
    """Parse *html* with the stdlib-backed parser.  ``None`` parses as empty."""
    return BeautifulSoup(html or "", "html.parser")


def node_text(node: Tag | None) -> str:
    """Return the visible text of *node* with whitespace runs collapsed."""
    if node is None:
        return ""
    return " ".join(node.get_text(" ", strip=True).split())


def first_text(root: Tag, selectors: Iterable[str]) -> str:
    """Return the text of the first non-empty match among *selectors*, or ``""``."""
    for selector in selectors:
        for node in root.select(selector):
            text = node_text(node)
            if text:
                return text
    return ""


def find_scope(soup: BeautifulSoup) -> Tag:
    """Return the main-content region, falling back to ``<body>`` or the whole tree."""
    for selector in MAIN_CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node is not None:
            return node
    return soup.body or soup


def _is_ad_like(tag: Tag) -> bool:
    tokens: list[str] = [
        token
        for token in tag.get("class") or []
        if not token.lower().startswith(TAXONOMY_TOKEN_PREFIXES)
    ]
    tag_id = tag.get("id")
    if isinstance(tag_id, str):
        tokens.append(tag_id)
    return any(AD_TOKEN_PATTERN.search(token) for token in tokens)


def remove_noise(soup: BeautifulSoup) -> None:
    """Strip boilerplate in place: noise tags and advertisement-like elements.

    The content region :func:`find_scope` picks, and everything enclosing
    it, is never removed as an ad.
    """
    for tag in soup.find_all(list(NOISE_TAGS)):
        tag.decompose()
    for selector in NOISE_SELECTORS:
        for tag in soup.select(selector):
            tag.decompose()

    scope = find_scope(soup)
    kept = {id(scope), *(id(parent) for parent in scope.parents)}

    # Collect first; decomposing a parent invalidates its descendants.
    for tag in soup.find_all(True):
        if tag.decomposed or id(tag) in kept or tag.name in ("html", "body"):
            continue
        if _is_ad_like(tag):
            tag.decompose()


def collect_images(root: Tag, page_url: str) -> list[ImageRef]:
    """Return ``{src, alt}`` pairs for every ``img`` with a source, in order.

    ``data-src`` is used when ``src`` is missing (lazy-loading markup).
    Relative sources are resolved against *page_url*.
    """
    images: list[ImageRef] = []
    for img in root.find_all("img"):
        raw_src = img.get("src") or img.get("data-src") or ""
        src = raw_src.strip() if isinstance(raw_src, str) else ""
        if not src:
            continue
        if page_url:
            src = urljoin(page_url, src)
        alt = img.get("alt")
        alt_text = alt.strip() if isinstance(alt, str) else ""
        images.append(ImageRef(src=src, alt=alt_text or DEFAULT_IMAGE_ALT))
    return images
