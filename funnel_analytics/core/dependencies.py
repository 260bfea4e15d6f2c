"""
FastAPI dependency injection for the funnel analytics API.

The cache store, warehouse client and dashboard service are created once in
the application lifespan and kept on `app.state`; these dependencies hand
them to route handlers. Tests replace them through
`app.dependency_overrides` or by setting `app.state` directly.

Key Dependencies Provided:
- get_settings_dependency / SettingsDep: the cached Settings
- get_db_session / DBSessionDep: an asyncpg connection from the goals pool
- get_cache / CacheDep: the application's CacheStore
- get_dashboard_service / DashboardServiceDep: the DashboardService

Usage Examples:
    @router.post("/funnel-metrics")
    async def funnel_metrics(
        request: FunnelMetricsRequest,
        service: DashboardServiceDep,
    ) -> FunnelMetricsWithGoals:
        return await service.get_funnel_metrics_with_goals(request.filters)
"""

from typing import Annotated, AsyncGenerator

from asyncpg import Connection
from fastapi import Depends, Request

from funnel_analytics.core.cache import CacheStore
from funnel_analytics.core.config import Settings, get_settings
from funnel_analytics.core.database import get_db_pool
from funnel_analytics.services.dashboard import DashboardService


# =============================================================================
# Database Session Dependency
# =============================================================================

async def get_db_session() -> AsyncGenerator[Connection, None]:
    """
    Yield a connection from the goals database pool.

    The connection is released back to the pool when the request completes.

    Raises:
        RuntimeError: If DATABASE_URL is not configured.
        asyncpg.PostgresError: If connection acquisition fails.
    """
    pool = await get_db_pool()
    async with pool.acquire() as connection:
        yield connection


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so tests can override it:

        app.dependency_overrides[get_settings_dependency] = lambda: test_settings
    """
    return get_settings()


# =============================================================================
# Application State Dependencies
# =============================================================================

def get_cache(request: Request) -> CacheStore:
    """The CacheStore created in the application lifespan."""
    return request.app.state.cache


def get_dashboard_service(request: Request) -> DashboardService:
    """The DashboardService created in the application lifespan."""
    return request.app.state.dashboard_service


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

DBSessionDep = Annotated[Connection, Depends(get_db_session)]

CacheDep = Annotated[CacheStore, Depends(get_cache)]

DashboardServiceDep = Annotated[DashboardService, Depends(get_dashboard_service)]
