"""Structured extraction from raw HTML.

The pipeline runs five stages over a BeautifulSoup tree:

1. **Noise removal**: scripts, styles, navigation, footers and
   advertisement-like elements are dropped so text heuristics see content only.
2. **Scope narrowing**: the first matching main-content container (``main``,
   ``article``, common content ids/classes, encyclopedia containers) becomes
   the extraction scope; ``<body>`` otherwise.
3. **Generic extraction** of title, description/intro, headings, paragraphs,
   list items, images and tables within the scope.
4. **Domain overrides** from :mod:`page_relay.scraper.site_overrides`.
5. **Deep extraction** (optional): a looser paragraph threshold and a merge
   of the scrape service's pre-parsed JSON, when one was returned.

Missing elements never raise; they degrade to sentinels or empty lists.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from bs4 import BeautifulSoup, Comment, Tag

from page_relay.scraper._helpers import (
    collect_images,
    find_scope,
    node_text,
    parse_html,
    remove_noise,
)
from page_relay.scraper.config import (
    DEEP_MIN_PARAGRAPH_CHARS,
    DEFAULT_IMAGE_ALT,
    MIN_PARAGRAPH_CHARS,
    NO_DESCRIPTION,
    NO_INTRO,
    NO_TITLE,
    RAW_HTML_EXCERPT_CHARS,
)
from page_relay.scraper.models import ExtractionResult, ImageRef
from page_relay.scraper.site_overrides import SITE_OVERRIDES, SiteOverride, match_override

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stage 3: generic fields
# ---------------------------------------------------------------------------


def _meta_description(soup: BeautifulSoup) -> str:
    for attrs in ({"name": "description"}, {"property": "og:description"}):
        meta = soup.find("meta", attrs=attrs)
        if meta is not None:
            content = meta.get("content")
            if isinstance(content, str) and content.strip():
                return " ".join(content.split())
    return ""


def extract_paragraphs(scope: Tag, min_chars: int) -> list[str]:
    """Texts of ``p`` elements strictly longer than *min_chars*."""
    paragraphs: list[str] = []
    for paragraph in scope.find_all("p"):
        text = node_text(paragraph)
        if len(text) > min_chars:
            paragraphs.append(text)
    return paragraphs


def _own_text(item: Tag) -> str:
    """Text of *item* without the text of any list nested inside it."""
    pieces: list[str] = []
    for string in item.find_all(string=True):
        if isinstance(string, Comment):
            continue
        parent = string.parent
        while parent is not item and parent.name not in ("ul", "ol"):
            parent = parent.parent
        if parent is item:
            pieces.append(string)
    return " ".join(" ".join(pieces).split())


def extract_list_items(scope: Tag, *, any_parent: bool = False) -> list[str]:
    """Non-empty ``li`` texts.  Only ``ul``/``ol`` children unless *any_parent*.

    Nested items are reported on their own, not repeated in their parent.
    """
    items: list[str] = []
    for item in scope.find_all("li"):
        if not any_parent and (item.parent is None or item.parent.name not in ("ul", "ol")):
            continue
        text = _own_text(item)
        if text:
            items.append(text)
    return items


def extract_tables(scope: Tag) -> list[str]:
    """Serialize each table as newline-joined rows of ``" | "``-joined cells."""
    tables: list[str] = []
    for table in scope.find_all("table"):
        rows: list[str] = []
        for row in table.find_all("tr"):
            cells = [node_text(cell) for cell in row.find_all(["th", "td"])]
            if any(cells):
                rows.append(" | ".join(cells))
        if rows:
            tables.append("\n".join(rows))
    return tables


def _first_heading(root: Tag, name: str) -> str:
    for heading in root.find_all(name):
        text = node_text(heading)
        if text:
            return text
    return ""


def _generic_pass(
    soup: BeautifulSoup,
    scope: Tag,
    result: ExtractionResult,
    min_paragraph_chars: int,
) -> None:
    # Page headings often sit above the content container.
    document_title = node_text(soup.title) if soup.title is not None else ""
    result.title = _first_heading(soup, "h1") or document_title or NO_TITLE

    meta_description = _meta_description(soup)
    result.paragraphs = extract_paragraphs(scope, min_paragraph_chars)
    first_paragraph = result.paragraphs[0] if result.paragraphs else ""
    # intro prefers body text; description prefers the page's own meta summary.
    result.intro = first_paragraph or meta_description or NO_INTRO
    result.description = meta_description or first_paragraph or NO_DESCRIPTION

    result.headings = [
        text for text in (node_text(h) for h in scope.find_all(["h2", "h3"])) if text
    ]
    result.sections = [text for text in (node_text(h) for h in scope.find_all("h2")) if text]
    result.list_items = extract_list_items(scope)
    result.images = collect_images(scope, result.url)
    result.tables = extract_tables(scope)


# ---------------------------------------------------------------------------
# Stage 5: deep extraction
# ---------------------------------------------------------------------------


def _append_unique(target: list[Any], extra: Sequence[Any]) -> None:
    for value in extra:
        if value not in target:
            target.append(value)


def merge_parsed(result: ExtractionResult, parsed: Mapping[str, Any]) -> None:
    """Merge a pre-parsed structure returned by the scrape service.

    Upstream ``title``/``description`` fill fields still holding a sentinel;
    upstream ``paragraphs`` and ``images`` are appended without duplicates.
    Members of the wrong type are ignored.
    """
    title = parsed.get("title")
    if isinstance(title, str) and title.strip() and result.title == NO_TITLE:
        result.title = title.strip()

    description = parsed.get("description")
    if isinstance(description, str) and description.strip():
        if result.description == NO_DESCRIPTION:
            result.description = description.strip()
        if result.intro == NO_INTRO:
            result.intro = description.strip()

    paragraphs = parsed.get("paragraphs")
    if isinstance(paragraphs, list):
        _append_unique(
            result.paragraphs,
            [p.strip() for p in paragraphs if isinstance(p, str) and p.strip()],
        )

    images = parsed.get("images")
    if isinstance(images, list):
        upstream_images: list[ImageRef] = []
        for image in images:
            if not isinstance(image, Mapping):
                continue
            src = image.get("src")
            if not isinstance(src, str) or not src.strip():
                continue
            alt = image.get("alt")
            upstream_images.append(
                ImageRef(
                    src=src.strip(),
                    alt=alt.strip() if isinstance(alt, str) and alt.strip() else DEFAULT_IMAGE_ALT,
                )
            )
        _append_unique(result.images, upstream_images)


def _deep_pass(scope: Tag, result: ExtractionResult, min_chars: int) -> None:
    _append_unique(result.paragraphs, extract_paragraphs(scope, min_chars))
    _append_unique(result.list_items, extract_list_items(scope, any_parent=True))
    if result.intro == NO_INTRO and result.paragraphs:
        result.intro = result.paragraphs[0]
    if result.description == NO_DESCRIPTION and result.paragraphs:
        result.description = result.paragraphs[0]


# ---------------------------------------------------------------------------
# Public extraction function
# ---------------------------------------------------------------------------


def extract_from_html(
    html: str | None,
    url: str,
    *,
    deep: bool = False,
    parsed: Mapping[str, Any] | None = None,
    min_paragraph_chars: int = MIN_PARAGRAPH_CHARS,
    deep_min_paragraph_chars: int = DEEP_MIN_PARAGRAPH_CHARS,
    excerpt_chars: int = RAW_HTML_EXCERPT_CHARS,
    overrides: Sequence[SiteOverride] = SITE_OVERRIDES,
) -> ExtractionResult:
    """Build an :class:`ExtractionResult` from raw HTML.

    Args:
        html: Raw HTML (may be partial, malformed, empty or ``None``).
        url: Page URL; used to resolve image sources and pick overrides.
        deep: Run the deep pass (looser paragraph threshold, any ``li``).
        parsed: Pre-parsed JSON from the scrape service, merged when given.
        min_paragraph_chars: Generic paragraph threshold (exclusive).
        deep_min_paragraph_chars: Deep-pass paragraph threshold (exclusive).
        excerpt_chars: Length of the raw markup excerpt.
        overrides: Override table to consult.

    Returns:
        A fully populated :class:`ExtractionResult`.
    """
    raw = html or ""
    result = ExtractionResult(url=url, html=raw[:excerpt_chars])

    soup = parse_html(raw)
    remove_noise(soup)
    scope = find_scope(soup)
    _generic_pass(soup, scope, result, min_paragraph_chars)

    override = match_override(url, overrides)
    if override is not None:
        result.site = override.name
        override.apply(soup, result)
        logger.debug("extractor: applied '%s' override for %s", override.name, url)

    if deep:
        _deep_pass(scope, result, deep_min_paragraph_chars)
    if parsed:
        merge_parsed(result, parsed)

    return result
