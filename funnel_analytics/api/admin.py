"""
FastAPI router for cache administration.

Key Endpoints:
- POST /admin/refresh-cache - Invalidate cached results after a warehouse refresh
- GET /admin/cache-stats - Hit/miss counters and current entry count

The refresh endpoint is called by the warehouse sync job. When
ADMIN_REFRESH_SECRET is configured, callers must send it in the
X-Refresh-Secret header.
"""

import hmac
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Header, HTTPException, Query

from funnel_analytics.core.dependencies import CacheDep, DashboardServiceDep, SettingsDep
from funnel_analytics.models.enums import CacheTag
from funnel_analytics.models.schemas import CacheRefreshResponse


# =============================================================================
# Module Configuration
# =============================================================================

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_secret(expected: Optional[str], provided: Optional[str]) -> None:
    if not expected:
        return
    if provided is None or not hmac.compare_digest(expected, provided):
        raise HTTPException(status_code=401, detail="Invalid refresh secret")


# =============================================================================
# POST /admin/refresh-cache
# =============================================================================


@router.post("/refresh-cache", response_model=CacheRefreshResponse)
async def refresh_cache(
    settings: SettingsDep,
    service: DashboardServiceDep,
    tags: Optional[List[CacheTag]] = Query(default=None, description="Tags to invalidate (default: all)"),
    x_refresh_secret: Optional[str] = Header(default=None),
) -> CacheRefreshResponse:
    """
    Invalidate cached dashboard results.

    Computations already in flight for an invalidated tag finish for their
    current callers but are not stored.

    Raises:
        HTTPException 401: If a refresh secret is configured and does not match.
    """
    _check_secret(settings.admin_refresh_secret, x_refresh_secret)
    try:
        evicted = service.invalidate(tags)
        total = sum(evicted.values())
        logger.info(f"Cache refresh: {evicted}")
        return CacheRefreshResponse(
            success=True,
            message=f"Invalidated {total} cached entries",
            tags=list(evicted.keys()),
            evicted=total,
            refreshedAt=datetime.now(timezone.utc),
        )
    except Exception as e:
        logger.error(f"Error refreshing cache: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to refresh cache")


# =============================================================================
# GET /admin/cache-stats
# =============================================================================


@router.get("/cache-stats", response_model=dict)
async def cache_stats(cache: CacheDep) -> dict:
    return {
        **cache.stats.as_dict(),
        "entries": len(cache),
        "inflight": cache.inflight_count,
    }
