"""Auth service tests."""

import pytest
from datetime import timedelta
from fastapi import HTTPException

from returndesk.services.auth import create_access_token, decode_token, get_actor


class TestJWT:
    def test_create_and_decode(self):
        token = create_access_token({"sub": "ops@returndesk.test", "role": "admin"})
        payload = decode_token(token)
        assert payload["sub"] == "ops@returndesk.test"
        assert payload["role"] == "admin"

    def test_token_has_expiry(self):
        token = create_access_token({"sub": "test"})
        payload = decode_token(token)
        assert "exp" in payload
        assert "iat" in payload

    def test_custom_expiry(self):
        token = create_access_token(
            {"sub": "test"},
            expires_delta=timedelta(minutes=5),
        )
        payload = decode_token(token)
        assert payload["exp"] - payload["iat"] <= 300 + 1

    def test_expired_token(self):
        token = create_access_token({"sub": "test"}, expires_delta=timedelta(minutes=-1))
        with pytest.raises(HTTPException) as exc_info:
            decode_token(token)
        assert exc_info.value.status_code == 401

    def test_invalid_token_raises(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_token("invalid.token.here")
        assert exc_info.value.status_code == 401

    def test_token_without_subject(self):
        token = create_access_token({"role": "admin"})
        with pytest.raises(HTTPException, match="subject"):
            decode_token(token)


class TestActor:
    @pytest.mark.asyncio
    async def test_actor_is_subject(self):
        assert await get_actor({"sub": "ops@returndesk.test"}) == "ops@returndesk.test"
