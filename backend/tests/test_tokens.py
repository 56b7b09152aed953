"""Tests for JWT identities and the bearer helpers in auth.py."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from auth import get_current_identity, normalize_token
from config import settings
from services.tokens import Identity, TokenError, create_access_token, decode_token


class TestDecodeToken:
    def test_roundtrip_identity(self):
        token = create_access_token("user-1", "ADMIN")
        assert decode_token(token) == Identity(user_id="user-1", role="ADMIN")

    def test_role_defaults_to_user(self):
        token = jwt.encode({"userId": "user-1"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
        assert decode_token(token).role == "USER"

    def test_expired_token(self):
        token = create_access_token("user-1", expires_delta=timedelta(seconds=-5))
        with pytest.raises(TokenError, match="Invalid token"):
            decode_token(token)

    def test_wrong_signature(self):
        token = jwt.encode({"userId": "user-1"}, "another-secret", algorithm="HS256")
        with pytest.raises(TokenError) as exc_info:
            decode_token(token)
        assert exc_info.value.reason == "Invalid token"

    def test_garbage(self):
        with pytest.raises(TokenError) as exc_info:
            decode_token("not-a-jwt")
        assert exc_info.value.reason == "Invalid token"

    def test_missing_user_id(self):
        token = jwt.encode({"role": "USER"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
        with pytest.raises(TokenError) as exc_info:
            decode_token(token)
        assert exc_info.value.reason == "Invalid token payload"


class TestNormalizeToken:
    def test_strips_bearer_prefix(self):
        assert normalize_token("Bearer abc") == "abc"

    def test_plain_token(self):
        assert normalize_token("abc") == "abc"

    @pytest.mark.parametrize("value", [None, "", "Bearer ", 42])
    def test_empty_values(self, value):
        assert normalize_token(value) is None


class TestGetCurrentIdentity:
    def test_valid(self):
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials=create_access_token("user-1"))
        assert get_current_identity(creds).user_id == "user-1"

    def test_invalid_raises_401(self):
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials="bad")
        with pytest.raises(HTTPException) as exc_info:
            get_current_identity(creds)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid token"
