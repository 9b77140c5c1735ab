"""
Admin Authentication

Bearer ADMIN_API_KEY check shared by the direct-trigger and ledger routers.
"""

import hmac
from fastapi import Header, HTTPException
from typing import Optional

from app.config import get_settings


async def verify_admin_key(authorization: Optional[str] = Header(None)):
    """
    Verify admin API key from Authorization header.

    Format: "Bearer <ADMIN_API_KEY>"

    Raises:
        HTTPException: If authentication fails
    """
    settings = get_settings()

    if not settings.ADMIN_API_KEY:
        raise HTTPException(status_code=500, detail="ADMIN_API_KEY not configured")

    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Authorization must be 'Bearer <token>'")

    token = authorization.split(" ", 1)[1]

    if not hmac.compare_digest(token.encode("utf-8"), settings.ADMIN_API_KEY.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Invalid admin API key")

    return True


async def get_services():
    """Pipeline services dependency (overridden by main app)."""
    return None
