"""Page fetching and structured extraction.

Sub-modules:
- ``config``             constants and tuning parameters
- ``models``             ``ExtractionResult`` / ``ImageRef`` dataclasses
- ``http_fetcher``       async httpx fetchers (direct and scrape service)
- ``content_extractor``  BeautifulSoup extraction pipeline
- ``site_overrides``     host-specific extraction rules
- ``listing_extractor``  search-result / listing page extraction
- ``service``            ``RelayService``, the request-handling core
"""
