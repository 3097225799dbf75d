"""
Signed session tokens (HS256 JWT) carried in an HTTP-only cookie.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from jose import JWTError, jwt

from readify import config

logger = logging.getLogger(__name__)


@dataclass
class Session:
    user_id: str
    email: str
    is_admin: bool
    expires: int  # unix seconds

    def to_public(self) -> dict:
        return {"userId": self.user_id, "email": self.email, "isAdmin": self.is_admin, "expires": self.expires}


def encrypt(user_id: str, email: str, is_admin: bool, now: Optional[float] = None) -> Tuple[str, int]:
    """Returns (token, expires) for a fresh 24h session."""
    issued = int(now if now is not None else time.time())
    expires = issued + config.SESSION_TTL_SECONDS
    payload = {
        "userId": user_id,
        "email": email,
        "isAdmin": bool(is_admin),
        "iat": issued,
        "exp": expires,
    }
    token = jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
    return token, expires


def decrypt(token: Optional[str]) -> Optional[Session]:
    """Verifies signature and expiry. Invalid tokens yield None."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError as e:
        logger.info(f"[SESSION] token rejected: {e}")
        return None
    user_id = payload.get("userId")
    if not user_id:
        return None
    return Session(
        user_id=str(user_id),
        email=str(payload.get("email") or ""),
        is_admin=bool(payload.get("isAdmin")),
        expires=int(payload.get("exp") or 0),
    )


def refresh(token: Optional[str], now: Optional[float] = None) -> Optional[Tuple[str, int]]:
    """Re-signs a still-valid token with a new 24h window."""
    session = decrypt(token)
    if session is None:
        return None
    return encrypt(session.user_id, session.email, session.is_admin, now=now)


def set_session_cookie(response, token: str, expires: int):
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=token,
        max_age=max(0, expires - int(time.time())),
        expires=datetime.fromtimestamp(expires, tz=timezone.utc),
        httponly=True,
        samesite="strict",
        secure=config.SESSION_COOKIE_SECURE,
        path="/",
    )


def clear_session_cookie(response):
    response.delete_cookie(key=config.SESSION_COOKIE_NAME, path="/", httponly=True, samesite="strict")
