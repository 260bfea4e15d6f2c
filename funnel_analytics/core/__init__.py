"""
Core infrastructure package for the funnel analytics service.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL connectivity via asyncpg (SGA quarterly goals)
- The typed error taxonomy shared by every layer
- The tag-indexed, single-flight CacheStore

Re-exported here for short imports:

    from funnel_analytics.core import get_settings, CacheStore, CompileError

Not re-exported (import directly; they depend on the sql/services layers):
    warehouse: WarehouseClient (BigQuery)
    dependencies: FastAPI dependency functions and Annotated aliases

Usage Examples:
    # Configuration access
    from funnel_analytics.core import get_settings
    settings = get_settings()
    print(settings.funnel_table)

    # Pool lifecycle (in FastAPI lifespan)
    from funnel_analytics.core import init_db, close_db
"""

# =============================================================================
# Re-exports from funnel_analytics.core.config
# =============================================================================
from funnel_analytics.core.config import Settings, get_settings

# =============================================================================
# Re-exports from funnel_analytics.core.database
# =============================================================================
from funnel_analytics.core.database import close_db, get_db_pool, init_db

# =============================================================================
# Re-exports from funnel_analytics.core.errors
# =============================================================================
from funnel_analytics.core.errors import (
    AnalyticsError,
    CompileError,
    ReconciliationError,
    SourceQueryError,
)

# =============================================================================
# Re-exports from funnel_analytics.core.cache
# =============================================================================
from funnel_analytics.core.cache import (
    CacheEntry,
    CacheStats,
    CacheStore,
    cached_query,
    make_cache_key,
)

__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Goals database pool lifecycle (from database.py)
    'init_db',
    'close_db',
    'get_db_pool',
    # Errors (from errors.py)
    'AnalyticsError',
    'CompileError',
    'SourceQueryError',
    'ReconciliationError',
    # Cache (from cache.py)
    'CacheEntry',
    'CacheStats',
    'CacheStore',
    'cached_query',
    'make_cache_key',
]
