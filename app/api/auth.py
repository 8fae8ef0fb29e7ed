"""
Request guards

- require_management_pin: a valid management PIN session cookie
- require_maintenance_token: Bearer SESSION_MAINTENANCE_TOKEN for cron endpoints
"""
import hmac
import logging
import os
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.services.pin_gate import PIN_REQUIRED_MESSAGE
from app.services.pin_session import COOKIE_NAME, SCOPE_MANAGEMENT, decode_session

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)

UNAUTHORIZED_MESSAGE = "No autorizado."


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


async def require_management_pin(request: Request) -> dict:
    """
    Dependency guarding payroll mutations.

    Raises:
        HTTPException 401 when the cookie is missing, tampered with, expired
        or not a management session
    """
    session = decode_session(request.cookies.get(COOKIE_NAME))
    if session is None or session["scope"] != SCOPE_MANAGEMENT:
        logger.info(f"Management PIN session missing or invalid for {request.url.path}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=PIN_REQUIRED_MESSAGE)
    return session


async def require_maintenance_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> bool:
    """
    Bearer token check for maintenance endpoints.

    When SESSION_MAINTENANCE_TOKEN is unset the endpoints are open (local dev).
    """
    expected = os.getenv("SESSION_MAINTENANCE_TOKEN")
    if not expected:
        return True

    if credentials is None or not hmac.compare_digest(credentials.credentials, expected):
        logger.warning("Rejected maintenance request with missing or invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=UNAUTHORIZED_MESSAGE,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return True
