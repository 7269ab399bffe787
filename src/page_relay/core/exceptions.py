"""Application-wide exception hierarchy for Page Relay.

All custom exceptions subclass ``PageRelayError`` and carry the HTTP status
code the API layer answers with, so route handlers never map errors by hand.

Hierarchy::

    PageRelayError
    ├── InvalidInputError               (400)
    ├── CredentialError
    │   ├── QuotaExhaustedError         (429)
    │   └── NoCredentialsConfiguredError (429)
    └── UpstreamError                   (500)
        └── UpstreamAuthRejectedError   (401)
"""

from __future__ import annotations


class PageRelayError(Exception):
    """Base class for all Page Relay exceptions.

    Attributes:
        status_code: HTTP status returned to the caller for this error.
    """

    status_code: int = 500


class InvalidInputError(PageRelayError):
    """Raised when a request carries a missing or malformed URL."""

    status_code = 400


# ---------------------------------------------------------------------------
# Credential exceptions
# ---------------------------------------------------------------------------


class CredentialError(PageRelayError):
    """Base class for credential-pool errors.  Never retried by the router."""

    status_code = 429


class QuotaExhaustedError(CredentialError):
    """Raised when every credential in the pool has reached its monthly cap.

    Args:
        pool_size: Number of credentials that were scanned.
        cap: Per-credential request cap for the current period.
    """

    def __init__(self, pool_size: int, cap: int) -> None:
        super().__init__(
            f"Monthly quota exhausted for all {pool_size} API key(s) "
            f"({cap} requests per key). Try again next month."
        )
        self.pool_size = pool_size
        self.cap = cap


class NoCredentialsConfiguredError(CredentialError):
    """Raised when the scrape service is required but no credential is configured."""

    def __init__(self) -> None:
        super().__init__(
            "No scraping API keys are configured. "
            "Set SCRAPER_API_KEY or SCRAPER_API_KEY_1..N."
        )


# ---------------------------------------------------------------------------
# Upstream exceptions
# ---------------------------------------------------------------------------


class UpstreamError(PageRelayError):
    """Raised when the upstream fetch fails.

    Covers non-2xx responses, network errors, timeouts and malformed
    payloads.

    Args:
        message: Human-readable description of the failure.
        url: The page URL that was being fetched.
        upstream_status: HTTP status returned upstream, if any.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        url: str | None = None,
        upstream_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.upstream_status = upstream_status


class UpstreamAuthRejectedError(UpstreamError):
    """Raised when the scrape service rejects the credential (HTTP 401/403)."""

    status_code = 401
