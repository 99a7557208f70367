"""
Security primitives: access-link tokens, one-time passcodes and signed JWTs.

Access-link tokens are 256-bit random values encoded URL-safe without padding.
Only their SHA-256 digest is persisted, so lookups compare digests through a
database index instead of comparing secrets in Python.
"""

import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import UUID

import bcrypt
import jwt

from quotedesk.core.config import settings

ACCESS_TOKEN_BYTES = 32
PORTAL_SESSION_SCOPE = "portal"


def generate_access_token() -> str:
    """Return a fresh unguessable URL-safe token (43 chars, no padding)."""
    return secrets.token_urlsafe(ACCESS_TOKEN_BYTES)


def hash_access_token(token: str) -> str:
    """Digest used to store and look up access tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def mask_token(token: Optional[str], visible: int = 6) -> str:
    """Loggable form of a secret token."""
    if not token:
        return "<none>"
    return f"{token[:visible]}…"


def generate_otp_code(length: int = 6) -> str:
    """Uniformly random numeric code of exactly `length` digits (no leading zero)."""
    lower = 10 ** (length - 1)
    return str(lower + secrets.randbelow(9 * lower))


def hash_otp_code(code: str, rounds: int = 10) -> str:
    """Salted bcrypt hash of a passcode."""
    return bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_otp_code(code: str, code_hash: str) -> bool:
    """Constant-time comparison of a supplied code against its stored hash."""
    try:
        return bcrypt.checkpw(code.encode("utf-8"), code_hash.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(data: Dict[str, Any], now: datetime, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a bearer token for internal users."""
    to_encode = dict(data)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode["exp"] = _naive_utc_timestamp(expire)
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and verify a bearer token. Returns None when invalid or expired."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.PyJWTError:
        return None


def create_portal_session_token(access_link_id: UUID, email: str, now: datetime) -> str:
    """Short-lived token proving OTP verification for one access link and email."""
    expire = now + timedelta(minutes=settings.PORTAL_SESSION_MINUTES)
    payload = {
        "sub": str(access_link_id),
        "email": email,
        "scope": PORTAL_SESSION_SCOPE,
        "exp": _naive_utc_timestamp(expire),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_portal_session_token(token: str, now: datetime) -> Optional[Dict[str, Any]]:
    """
    Verify signature and scope, and check expiry against the injected clock
    rather than the process wall clock.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"verify_exp": False},
        )
    except jwt.PyJWTError:
        return None
    if payload.get("scope") != PORTAL_SESSION_SCOPE:
        return None
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)) or exp < _naive_utc_timestamp(now):
        return None
    return payload


def _naive_utc_timestamp(value: datetime) -> int:
    return int((value - datetime(1970, 1, 1)).total_seconds())
