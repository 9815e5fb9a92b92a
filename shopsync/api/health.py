"""
Health check and status endpoints
"""
from fastapi import APIRouter, Depends
from datetime import datetime
from sqlalchemy.orm import Session

from shopsync.config import get_settings
from shopsync.models.base import get_db
from shopsync.services.runtime import ServiceRuntime, get_runtime
from shopsync import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status(db: Session = Depends(get_db), runtime: ServiceRuntime = Depends(get_runtime)):
    """Get system status"""
    integrations = runtime.integrations(db)
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "configured_platforms": [p.value for p in integrations.get_configured_platforms()],
        "syncs_in_flight": sorted(runtime.syncs_in_flight),
        "timestamp": datetime.utcnow().isoformat()
    }
