"""
ShopSync Order Orchestration
Main FastAPI application
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from shopsync.config import get_settings
from shopsync.utils.errors import ShopSyncError
from shopsync.utils.logger import log
from shopsync import __version__

# Import routers
from shopsync.api import health, sync, sales, picking_lists, integrations

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    from shopsync.models.base import init_db
    init_db()
    log.info("Database initialized")

    from shopsync.services.runtime import get_runtime
    runtime = get_runtime()
    runtime.start()

    # Start the scheduler for automated marketplace syncs
    scheduler_started = False
    if settings.sync_scheduler_enabled:
        try:
            from shopsync.scheduler import start_scheduler
            start_scheduler()
            scheduler_started = True
        except Exception as e:
            log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    if scheduler_started:
        from shopsync.scheduler import stop_scheduler
        stop_scheduler()
    runtime.stop()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Multi-channel order sync and fulfillment orchestration

    - Imports orders from Shopify, Etsy, Amazon and eBay
    - Matches buyers to a single customer record across marketplaces
    - Drives each sale through picking, production, shipping and delivery
    - Reports revenue, fees and order value per channel
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


@app.exception_handler(ShopSyncError)
async def shopsync_error_handler(request: Request, exc: ShopSyncError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(sync.router)
app.include_router(sales.router)
app.include_router(picking_lists.router)
app.include_router(integrations.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": settings.app_name,
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "sync": "POST /sync",
            "sync_history": "GET /sync/history",
            "sales": "GET /sales",
            "transition": "POST /sales/{id}/transition",
            "channel_metrics": "GET /sales/metrics/channels",
            "picking_lists": "POST /picking-lists",
            "integrations": "GET /integrations",
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "shopsync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
