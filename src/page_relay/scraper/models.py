"""Output dataclasses shared by the extraction modules."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from page_relay.scraper.config import NO_DESCRIPTION, NO_INTRO, NO_TITLE


@dataclass
class ImageRef:
    """An image found on the page.

    Attributes:
        src: Absolute image URL.
        alt: Alt text, ``"Image"`` when the page gave none.
    """

    src: str
    alt: str


@dataclass
class ExtractionResult:
    """Normalized structured view of one fetched page.

    Built fresh per request.  Every field has a usable default, so a page
    missing any element type still produces a complete record.

    Attributes:
        url: Page URL the result was extracted from.
        html: Bounded excerpt of the original markup (for debugging).
        title: First ``h1``, else ``<title>``, else ``"No title"``.
        description: Meta description, else the intro paragraph, else
            ``"No description"``.
        intro: First paragraph above the length threshold, else the meta
            description, else ``"No intro"``.
        headings: ``h2``/``h3`` texts in document order.
        sections: Section headings (``h2``); replaced by site overrides.
        paragraphs: Paragraph texts above the length threshold.
        list_items: Texts of ``ul``/``ol`` entries.
        images: Images with absolute ``src``.
        tables: One string per table; rows on separate lines, cells joined
            with ``" | "``.
        site: Name of the domain override that matched, if any.
        site_fields: Extra fields contributed by the domain override.
        source: ``"service"`` or ``"direct"``; which fetch path was used.
    """

    url: str
    html: str = ""
    title: str = NO_TITLE
    description: str = NO_DESCRIPTION
    intro: str = NO_INTRO
    headings: list[str] = field(default_factory=list)
    sections: list[str] = field(default_factory=list)
    paragraphs: list[str] = field(default_factory=list)
    list_items: list[str] = field(default_factory=list)
    images: list[ImageRef] = field(default_factory=list)
    tables: list[str] = field(default_factory=list)
    site: str | None = None
    site_fields: dict[str, str] = field(default_factory=dict)
    source: str = "direct"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
