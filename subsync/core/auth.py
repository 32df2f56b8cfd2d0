"""
API authentication for FastAPI.

- Admin endpoints: static bearer token (ADMIN_API_TOKEN).
- Frontend endpoints: the upstream gateway authenticates the customer and forwards
  their id in X-User-Id; a subscription can only be changed by its owner.

With AUTH_DEV_MODE=true a missing token is accepted and a dev identity is used.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from subsync.core.config import get_settings

logger = logging.getLogger(__name__)

DEV_USER_ID = "1"


@dataclass
class UserInfo:
    """Authenticated caller."""
    uid: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


security = HTTPBearer(auto_error=False)


async def get_current_admin(
    cred: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> UserInfo:
    """FastAPI dependency that requires the admin bearer token."""
    settings = get_settings()

    if cred is None:
        if settings.auth_dev_mode:
            return UserInfo(uid="dev-admin", role="admin")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not settings.admin_api_token:
        logger.error("ADMIN_API_TOKEN is not configured; rejecting admin request")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service not available",
        )

    if not secrets.compare_digest(cred.credentials, settings.admin_api_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )
    return UserInfo(uid="admin", role="admin")


async def get_current_user(request: Request) -> UserInfo:
    """
    FastAPI dependency for frontend calls.

    In dev mode (AUTH_DEV_MODE=true), a missing X-User-Id falls back to a dev user.
    """
    uid = (request.headers.get("X-User-Id") or "").strip()
    if uid:
        return UserInfo(uid=uid)
    if get_settings().auth_dev_mode:
        return UserInfo(uid=DEV_USER_ID)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
    )
