"""JWT issuing and verification for chat identities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from config import settings


@dataclass(frozen=True)
class Identity:
    """Verified caller identity; fixed for the lifetime of a connection."""

    user_id: str
    role: str = "USER"


class TokenError(Exception):
    """Credential rejected; ``reason`` is safe to send to the client."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def create_access_token(user_id: str, role: str = "USER", expires_delta: timedelta | None = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_EXPIRE_MINUTES))
    payload = {"userId": str(user_id), "role": role, "iat": now, "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Identity:
    """Verify signature and expiry of *token* and extract the identity.

    Raises ``TokenError("Invalid token")`` for a bad signature, an expired or
    malformed token, and ``TokenError("Invalid token payload")`` when the
    claims carry no ``userId``.
    """
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise TokenError("Invalid token")
    if not isinstance(claims, dict) or not claims.get("userId"):
        raise TokenError("Invalid token payload")
    return Identity(user_id=str(claims["userId"]), role=claims.get("role") or "USER")
