"""
Authentication dependencies for FastAPI routes.

Extracts user identity from the X-User-Id / X-User-Email headers set by the
front end's auth layer. Every /api/user route requires X-User-Id.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from app.models.schemas import Identity

logger = logging.getLogger(__name__)

FALLBACK_EMAIL_DOMAIN = "docwriter.local"


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> str:
    """Extract the authenticated user ID from the request header. Raises 401 if missing."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    return x_user_id.strip()


async def get_current_identity(
    user_id: str = Depends(get_current_user_id),
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
) -> Identity:
    """Build the caller's identity; the email doubles as the storage owner key."""
    email = (x_user_email or "").strip() or f"{user_id}@{FALLBACK_EMAIL_DOMAIN}"
    return Identity(user_id=user_id, email=email)
