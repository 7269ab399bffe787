"""Health check route.

``GET /health`` is a shallow liveness check used by load balancers and
uptime monitors.  It performs no network I/O and always returns HTTP 200.
The ledger summary lets operators see how close each key is to its cap;
it never includes key material.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from page_relay.api.dependencies import get_relay_service
from page_relay.scraper.service import RelayService

router = APIRouter(tags=["system"])


@router.get("/health")
async def health(
    service: Annotated[RelayService, Depends(get_relay_service)],
) -> dict[str, Any]:
    """Return process liveness, the active fetch path and the usage ledger.

    Returns:
        ``{"status": "OK", "timestamp": ..., "mode": ..., "ledger": ...}``.
    """
    ledger = service.router.snapshot() if service.router is not None else None
    return {
        "status": "OK",
        "timestamp": datetime.now(tz=UTC).isoformat(),
        "mode": "service" if service.uses_service else "direct",
        "ledger": ledger,
    }
