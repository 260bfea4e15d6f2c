"""
FastAPI application entry point for the funnel analytics API.

Creates the per-process CacheStore, BigQuery warehouse client and dashboard
service on startup and registers the dashboard, SGA hub and admin routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from funnel_analytics.api.admin import router as admin_router
from funnel_analytics.api.dashboard import router as dashboard_router
from funnel_analytics.api.sga_hub import router as sga_hub_router
from funnel_analytics.core.cache import CacheStore
from funnel_analytics.core.config import get_settings
from funnel_analytics.core.database import close_db, init_db
from funnel_analytics.core.warehouse import WarehouseClient
from funnel_analytics.services.dashboard import DashboardService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown.

    On startup:
        - Create the cache, warehouse client and dashboard service
        - Initialize the goals database pool

    On shutdown:
        - Close the goals database pool
    """
    logger.info("Funnel Analytics API starting")
    settings = get_settings()
    app.state.cache = CacheStore()
    app.state.warehouse = WarehouseClient(settings)
    app.state.dashboard_service = DashboardService(settings, app.state.cache, app.state.warehouse)

    try:
        await init_db()
        logger.info("Database connection pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        # Quarterly goals are unavailable; warehouse-backed endpoints still work

    yield

    logger.info("Funnel Analytics API shutting down")
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


app = FastAPI(
    title="Funnel Analytics API",
    version="1.0.0",
    description=(
        "Cached funnel, conversion, pipeline and SGA hub analytics "
        "compiled to BigQuery."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(dashboard_router, prefix="/dashboard", tags=["dashboard"])
app.include_router(sga_hub_router, prefix="/sga-hub", tags=["sga-hub"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer health checks.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "Funnel Analytics API",
        "version": "1.0.0",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "funnel_analytics.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
