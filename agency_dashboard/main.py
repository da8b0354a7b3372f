"""
Agency Dashboard Refresh Core
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from contextlib import asynccontextmanager

from agency_dashboard.config import get_settings
from agency_dashboard.utils.logger import log
from agency_dashboard import __version__

# Import routers
from agency_dashboard.api import health, dashboard, connections

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    # Initialize database
    try:
        from agency_dashboard.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    yield

    # Shutdown
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Client dashboard refresh and reconciliation

    - Serves cached SEO and analytics metrics per client
    - Throttles expensive provider refreshes per client and data kind
    - Runs at most one automatic recovery refresh per client and date range
    - Demotes connections whose credentials the provider rejects

    Providers:
    - Google Analytics 4 (web analytics)
    - DataForSEO (relevant pages, backlinks)
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Gzip compression
app.add_middleware(GZipMiddleware, minimum_size=500)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(dashboard.router)
app.include_router(connections.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "agency_dashboard.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
