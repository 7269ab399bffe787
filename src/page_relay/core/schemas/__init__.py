"""Pydantic schemas for request/response validation.

Sub-modules:
    scraping - ScrapeRequest, MultiScrapeRequest, SpiderRequest, ScrapeResponse
"""

from __future__ import annotations
