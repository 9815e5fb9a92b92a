"""
Marketplace integration endpoints

Credentials are accepted in plaintext here, encrypted before storage and
never returned.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from shopsync.models.base import get_db
from shopsync.services.runtime import ServiceRuntime, get_runtime

router = APIRouter(prefix="/integrations", tags=["integrations"])


class IntegrationRequest(BaseModel):
    shop_name: Optional[str] = None
    store_id: Optional[str] = None
    marketplace_id: Optional[str] = None
    region: Optional[str] = None
    api_key: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    api_secret: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    settings: Optional[Dict[str, Any]] = None
    active: Optional[bool] = None


class ExchangeRequest(BaseModel):
    code: str
    redirect_uri: str
    code_verifier: Optional[str] = None  # Etsy PKCE


@router.get("")
async def list_integrations(db: Session = Depends(get_db), runtime: ServiceRuntime = Depends(get_runtime)):
    return {"integrations": runtime.integrations(db).list_integrations()}


@router.get("/{platform}")
async def platform_info(platform: str, db: Session = Depends(get_db), runtime: ServiceRuntime = Depends(get_runtime)):
    return runtime.integrations(db).get_platform_info(platform)


@router.put("/{platform}")
async def save_integration(
    platform: str,
    body: IntegrationRequest,
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    integration = runtime.integrations(db).save_integration(platform, body.model_dump(exclude_unset=True))
    return integration.to_dict()


@router.delete("/{platform}")
async def remove_integration(platform: str, db: Session = Depends(get_db), runtime: ServiceRuntime = Depends(get_runtime)):
    runtime.integrations(db).remove_integration(platform)
    return {"success": True, "platform": platform}


@router.get("/{platform}/auth-url")
async def auth_url(
    platform: str,
    redirect_uri: str = Query(...),
    scopes: Optional[List[str]] = Query(None),
    state: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    url = runtime.integrations(db).generate_auth_url(platform, redirect_uri, scopes=scopes, state=state)
    return {"platform": platform, "auth_url": url}


@router.post("/{platform}/exchange")
async def exchange_code(
    platform: str,
    body: ExchangeRequest,
    db: Session = Depends(get_db),
    runtime: ServiceRuntime = Depends(get_runtime),
):
    extra = {"code_verifier": body.code_verifier} if body.code_verifier else {}
    integration = await runtime.integrations(db).exchange_auth_code(platform, body.code, body.redirect_uri, **extra)
    return integration.to_dict()
