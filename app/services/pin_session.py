"""
PIN verification and PIN sessions

Management and staff PINs come from the environment. A verified management
PIN earns a short-lived signed cookie ("scope|expires|nonce|signature",
base64url) that gates payroll mutations. Verification attempts are counted in
Redis per client IP and PIN type.
"""
import base64
import hashlib
import hmac
import logging
import os
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

PIN_PATTERN = re.compile(r"^\d{4,8}$")

COOKIE_NAME = "pin_session"
SESSION_TTL_MINUTES = 10

MAX_ATTEMPTS = 5
ATTEMPT_WINDOW_SECONDS = 600

SCOPE_MANAGEMENT = "management"
SCOPE_STAFF = "staff"
PIN_TYPE_SCOPES = {"manager": SCOPE_MANAGEMENT, "staff": SCOPE_STAFF}
PIN_TYPE_ENV = {"manager": "MANAGER_PIN", "staff": "STAFF_PIN"}

INVALID_FORMAT_MESSAGE = "El PIN debe tener entre 4 y 8 dígitos numéricos."
TOO_MANY_ATTEMPTS_MESSAGE = "Demasiados intentos. Inténtalo más tarde."
WRONG_PIN_MESSAGE = "PIN incorrecto."


def get_session_secret() -> str:
    return (
        os.getenv("PIN_SESSION_SECRET")
        or os.getenv("SESSION_MAINTENANCE_TOKEN")
        or "academia-dev-pin"
    )


def is_valid_pin_format(pin: Optional[str]) -> bool:
    return bool(pin) and PIN_PATTERN.match(pin) is not None


def verify_pin(pin_type: str, pin: str) -> bool:
    """Compare a PIN against the configured one in constant time"""
    env_name = PIN_TYPE_ENV.get(pin_type)
    expected = os.getenv(env_name) if env_name else None
    if not expected:
        logger.warning(f"No PIN configured for type '{pin_type}'")
        return False
    return hmac.compare_digest(expected.encode("utf-8"), pin.encode("utf-8"))


def _sign(payload: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def encode_session(scope: str, expires_at: datetime, secret: Optional[str] = None) -> str:
    payload = f"{scope}|{expires_at.isoformat()}|{secrets.token_hex(8)}"
    signature = _sign(payload, secret or get_session_secret())
    token = f"{payload}|{signature}".encode("utf-8")
    return base64.urlsafe_b64encode(token).decode("ascii").rstrip("=")


def decode_session(
    value: Optional[str],
    secret: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, object]]:
    """
    Decode and verify a PIN session cookie.

    Returns:
        {"scope", "expires_at"} or None when the value is malformed, tampered
        with or expired
    """
    if not value:
        return None
    try:
        padded = value + "=" * (-len(value) % 4)
        decoded = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return None

    parts = decoded.split("|")
    if len(parts) != 4 or not all(parts):
        return None
    scope, expires_raw, nonce, signature = parts

    expected = _sign(f"{scope}|{expires_raw}|{nonce}", secret or get_session_secret())
    if not hmac.compare_digest(expected, signature):
        return None
    if scope not in (SCOPE_MANAGEMENT, SCOPE_STAFF):
        return None
    try:
        expires_at = datetime.fromisoformat(expires_raw)
    except ValueError:
        return None
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at <= (now or datetime.now(timezone.utc)):
        return None
    return {"scope": scope, "expires_at": expires_at}


def issue_session(scope: str, now: Optional[datetime] = None) -> Dict[str, object]:
    expires_at = (now or datetime.now(timezone.utc)) + timedelta(minutes=SESSION_TTL_MINUTES)
    return {"value": encode_session(scope, expires_at), "expires_at": expires_at}


class PinAttemptLimiter:
    """Fixed-window attempt counter (INCR + EXPIRE) keyed by IP and PIN type"""

    def __init__(
        self,
        redis: Optional[aioredis.Redis],
        max_attempts: int = MAX_ATTEMPTS,
        window_seconds: int = ATTEMPT_WINDOW_SECONDS,
    ):
        self.redis = redis
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    @staticmethod
    def key(ip: str, pin_type: str) -> str:
        return f"pin-attempts:{pin_type}:{ip}"

    async def register_attempt(self, ip: str, pin_type: str) -> bool:
        """
        Count one attempt.

        An unreachable Redis lets the attempt through unlimited.

        Returns:
            False when the caller is over the limit for the current window
        """
        if self.redis is None:
            logger.warning("Redis unavailable, PIN attempts are not rate limited")
            return True
        key = self.key(ip, pin_type)
        try:
            count = await self.redis.incr(key)
            if count == 1:
                await self.redis.expire(key, self.window_seconds)
        except RedisError as e:
            logger.warning(f"Redis error counting PIN attempt, not rate limited: {e}")
            return True
        if count > self.max_attempts:
            logger.warning(f"PIN attempt limit reached for {pin_type} from {ip}")
            return False
        return True

    async def reset(self, ip: str, pin_type: str) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.delete(self.key(ip, pin_type))
        except RedisError as e:
            logger.warning(f"Redis error resetting PIN attempts for {pin_type} from {ip}: {e}")
