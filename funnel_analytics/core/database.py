"""
asyncpg pool for the goals store.

Managers' quarterly SQO goals (`sga_quarterly_goal`) and weekly activity
goals (`sga_weekly_goal`) per SGA live in PostgreSQL, outside the warehouse. One pool per process is
opened in the application lifespan; goal lookups and the goal upsert route
borrow connections from it.

Without DATABASE_URL the pool cannot be created. Warehouse-backed endpoints
keep working; quarterly progress reports no goal and setting a goal fails.

Usage:
    await init_db()                       # lifespan startup
    row = await execute_query_one(QUARTERLY_GOAL_SQL, "Jane Smith", "2026-Q2")
    await close_db()                      # lifespan shutdown
"""

import logging
from typing import Any, List, Optional

import asyncpg
from asyncpg import Pool

from funnel_analytics.core.config import get_settings

logger = logging.getLogger(__name__)


# =============================================================================
# Pool Singleton
# =============================================================================

_pool: Optional[Pool] = None


async def init_db() -> Pool:
    """
    Open the goals pool, or return it if it is already open.

    Raises:
        RuntimeError: If DATABASE_URL is not configured.
        asyncpg.PostgresError: If the server rejects the connection.
        OSError: If the host is unreachable.
    """
    global _pool

    if _pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is not configured")
        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=1,
            max_size=settings.goals_pool_max_size,
            command_timeout=settings.goals_command_timeout_seconds,
        )
        logger.info(f"Goals store pool opened (max {settings.goals_pool_max_size} connections)")

    return _pool


async def get_db_pool() -> Pool:
    """The goals pool, opened on first use when the lifespan could not open it."""
    if _pool is None:
        return await init_db()
    return _pool


async def close_db() -> None:
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None


# =============================================================================
# Lookups
# =============================================================================


async def execute_query_one(query: str, *args: Any) -> Optional[asyncpg.Record]:
    """
    Run a single-row lookup against the goals store.

    Args:
        query: SQL with $1, $2, ... placeholders.
        *args: Values for the placeholders.

    Returns:
        The first row, or None when nothing matches.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        return await conn.fetchrow(query, *args)


async def execute_query(query: str, *args: Any) -> List[asyncpg.Record]:
    """Run a multi-row lookup against the goals store."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        return await conn.fetch(query, *args)
