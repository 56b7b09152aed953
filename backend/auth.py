"""Bearer token authentication helpers."""

from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.tokens import Identity, TokenError, decode_token

bearer_scheme = HTTPBearer()

BEARER_PREFIX = "Bearer "


def normalize_token(value) -> str | None:
    """Strip an optional ``Bearer `` prefix; anything but a non-empty string is None."""
    if not value or not isinstance(value, str):
        return None
    if value.startswith(BEARER_PREFIX):
        value = value[len(BEARER_PREFIX):]
    return value or None


def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Identity:
    """FastAPI dependency: validate the Bearer JWT and return the caller identity."""
    try:
        return decode_token(credentials.credentials)
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.reason,
        )
