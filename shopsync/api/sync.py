"""
Marketplace order sync endpoints
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from shopsync.models.base import get_db
from shopsync.services.runtime import ServiceRuntime, get_runtime
from shopsync.utils.errors import ValidationError
from shopsync.utils.helpers import calculate_date_range

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("")
async def run_sync(
    days: Optional[int] = Query(None, ge=1, le=365, description="Import orders from the last N days"),
    from_date: Optional[datetime] = Query(None, description="Import orders since this timestamp"),
    platform: Optional[List[str]] = Query(None, description="Limit to these platforms"),
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    """
    Import new orders from every configured marketplace.

    Waits for all platforms and returns the per-platform report. A failing
    platform is reported, it does not fail the request.

    Example: POST /sync?days=3
    """
    if days is not None and from_date is not None:
        raise ValidationError("Pass either days or from_date, not both")
    since = from_date
    if days is not None:
        since, _ = calculate_date_range(days)

    report = await runtime.orchestrator(db).sync(since=since, platforms=platform)
    return report.to_dict()


@router.get("/history")
async def sync_history(
    platform: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    """Recent sync runs, newest first"""
    events = runtime.integrations(db).sync_history(platform=platform, limit=limit)
    return {"events": [event.to_dict() for event in events]}
