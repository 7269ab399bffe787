"""Constants and tuning parameters for fetching and extraction."""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

#: Default upstream request timeout in seconds.
DEFAULT_TIMEOUT: float = 30.0

#: User-agent string sent on direct fetches.  A browser-like string; many
#: sites serve an error page to unknown agents.
USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

#: Content-Type prefixes that indicate binary/non-text resources.
BINARY_CONTENT_TYPES: frozenset[str] = frozenset(
    {
        "application/pdf",
        "application/zip",
        "application/octet-stream",
        "application/vnd.",
        "image/",
        "video/",
        "audio/",
        "font/",
    }
)

#: Upstream statuses that mean the scrape service refused the credential.
AUTH_REJECTED_STATUSES: frozenset[int] = frozenset({401, 403})

# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

#: Length of the raw markup excerpt included in every result.
RAW_HTML_EXCERPT_CHARS: int = 2000

#: Paragraphs must be strictly longer than this (stripped) to be kept.
MIN_PARAGRAPH_CHARS: int = 50

#: Looser threshold used by the deep (autoparse) pass.
DEEP_MIN_PARAGRAPH_CHARS: int = 20

NO_TITLE: str = "No title"
NO_DESCRIPTION: str = "No description"
NO_INTRO: str = "No intro"
DEFAULT_IMAGE_ALT: str = "Image"

#: Tags removed before any text heuristic runs.
NOISE_TAGS: tuple[str, ...] = ("script", "style", "noscript", "nav", "footer", "iframe")

#: Elements removed by selector alongside :data:`NOISE_TAGS` (encyclopedia edit links).
NOISE_SELECTORS: tuple[str, ...] = (".mw-editsection",)

#: Matches a single id/class token that looks like an advertisement slot.
AD_TOKEN_PATTERN: re.Pattern[str] = re.compile(
    r"^(ad|ads|adv|advert\w*|sponsor\w*|banner|promo\w*)$"
    r"|^ad[-_]|[-_]ad$|[-_]ads$|[-_]ad[-_]",
    re.IGNORECASE,
)

#: Class prefixes CMSs use for taxonomy terms (``tag-ads``, ``category-promo``);
#: such tokens name the post's topic and never mark an ad slot.
TAXONOMY_TOKEN_PREFIXES: tuple[str, ...] = ("tag-", "category-")

#: Main-content containers, tried in priority order.
MAIN_CONTENT_SELECTORS: tuple[str, ...] = (
    "main",
    "article",
    "[role=main]",
    "#content",
    "#main-content",
    ".main-content",
    ".content",
    ".post-content",
    ".entry-content",
    "#mw-content-text",
    ".mw-parser-output",
)

# ---------------------------------------------------------------------------
# Listing ("spider") extraction
# ---------------------------------------------------------------------------

#: Containers that typically wrap one search result / listing entry.
LISTING_ITEM_SELECTORS: tuple[str, ...] = (
    "[data-component-type=s-search-result]",
    ".s-result-item",
    ".search-result",
    ".result",
    "article",
    "li",
)

#: Maximum number of listing entries returned.
MAX_LISTING_RESULTS: int = 50
