"""
DealDesk - Routes Auth
Static shared API key for the back office (no login, no sessions).
"""

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from dealdesk.config import Settings, get_settings

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== HELPERS ====================

async def require_api_key(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_api_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Accepts `Authorization: Bearer <key>` or `X-API-Key: <key>`."""
    provided = credentials.credentials if credentials else x_api_key
    if not provided:
        raise HTTPException(status_code=401, detail="Not authenticated")

    # An unset API_KEY locks the back office
    if not settings.api_key or not secrets.compare_digest(provided.encode(), settings.api_key.encode()):
        raise HTTPException(status_code=401, detail="Invalid API key")

    return {"name": "back-office", "auth": "api_key"}


# ==================== ROUTES ====================

@router.get("/check")
async def check(caller: dict = Depends(require_api_key)):
    return {"authenticated": True, "caller": caller["name"]}
