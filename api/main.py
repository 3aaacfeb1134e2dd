"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, imports, sync, integrity
from api.dependencies import get_sync_planner, get_tracker
from core.config import settings
from core.database import async_session_maker
from core.logging import setup_logging
import logging
import uvicorn
from api.middleware import RequestContextMiddleware
from ingestion.scheduler import SyncScheduler

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="League History Import API",
    description="Historical import, incremental sync and integrity auditing for fantasy leagues",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

scheduler = None


# Include routers
app.include_router(health.router)
app.include_router(imports.router)
app.include_router(sync.router)
app.include_router(integrity.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    global scheduler
    logger.info("Starting League History Import API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if settings.SCHEDULER_ENABLED:
        scheduler = SyncScheduler(async_session_maker, get_sync_planner(), get_tracker())
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down League History Import API")
    if scheduler is not None:
        scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "League History Import API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "imports": "/leagues/{league_id}/imports",
            "sync": "/leagues/{league_id}/sync",
            "integrity": "/leagues/{league_id}/integrity"
        }
    }


if __name__ == "__main__":
    uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT)
