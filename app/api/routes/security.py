"""
PIN verification

POST /api/security/verify-pin {type: manager|staff, pin}

A valid manager PIN sets the pin_session cookie that unlocks payroll edits.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from redis import asyncio as aioredis

from app.api.auth import get_client_ip
from app.api.common import NO_STORE_HEADERS
from app.database import get_redis
from app.services.pin_session import (
    COOKIE_NAME,
    INVALID_FORMAT_MESSAGE,
    PIN_TYPE_SCOPES,
    SCOPE_MANAGEMENT,
    TOO_MANY_ATTEMPTS_MESSAGE,
    WRONG_PIN_MESSAGE,
    PinAttemptLimiter,
    is_valid_pin_format,
    issue_session,
    verify_pin,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/security", tags=["security"])


class VerifyPinRequest(BaseModel):
    type: str = "manager"
    pin: Optional[str] = None


def get_pin_limiter(redis: aioredis.Redis = Depends(get_redis)) -> PinAttemptLimiter:
    return PinAttemptLimiter(redis)


@router.post("/verify-pin")
async def verify_pin_endpoint(
    payload: VerifyPinRequest,
    request: Request,
    limiter: PinAttemptLimiter = Depends(get_pin_limiter),
):
    pin_type = (payload.type or "").strip().lower()
    if pin_type not in PIN_TYPE_SCOPES:
        raise HTTPException(status_code=400, detail="El tipo de PIN no es válido.", headers=NO_STORE_HEADERS)

    pin = (payload.pin or "").strip()
    if not is_valid_pin_format(pin):
        raise HTTPException(status_code=400, detail=INVALID_FORMAT_MESSAGE, headers=NO_STORE_HEADERS)

    ip = get_client_ip(request)
    if not await limiter.register_attempt(ip, pin_type):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=TOO_MANY_ATTEMPTS_MESSAGE,
            headers=NO_STORE_HEADERS,
        )

    if not verify_pin(pin_type, pin):
        logger.info(f"Wrong {pin_type} PIN from {ip}")
        return JSONResponse(content={"valid": False, "error": WRONG_PIN_MESSAGE}, headers=NO_STORE_HEADERS)

    await limiter.reset(ip, pin_type)
    response = JSONResponse(content={"valid": True, "type": pin_type}, headers=NO_STORE_HEADERS)

    scope = PIN_TYPE_SCOPES[pin_type]
    if scope == SCOPE_MANAGEMENT:
        session = issue_session(scope)
        response.set_cookie(
            COOKIE_NAME,
            session["value"],
            expires=session["expires_at"],
            httponly=True,
            samesite="lax",
            secure=request.url.scheme == "https",
            path="/",
        )
        logger.info(f"Management PIN session issued for {ip}")
    return response
