from __future__ import annotations

import jwt
import pytest

from chat_sync.application.exceptions import AuthorizationError
from chat_sync.infrastructure.auth.token_identity import JwtIdentityProvider

SIGNING_KEY = "test-signing-key-0123456789abcdef"


def test_identify_reads_id_and_username_without_secret():
    token = jwt.encode({"id": 42, "username": "alice"}, SIGNING_KEY, algorithm="HS256")

    identity = JwtIdentityProvider().identify(token)

    assert identity.user_id == "42"
    assert identity.username == "alice"
    assert identity.authorization == f"Bearer {token}"


def test_identify_falls_back_to_sub_claim():
    token = jwt.encode({"sub": "u9"}, SIGNING_KEY, algorithm="HS256")
    assert JwtIdentityProvider().identify(token).user_id == "u9"


def test_identify_verifies_signature_when_secret_configured():
    token = jwt.encode({"id": "u1"}, "a-different-signing-key-0123456789", algorithm="HS256")

    with pytest.raises(AuthorizationError):
        JwtIdentityProvider(secret=SIGNING_KEY).identify(token)


def test_identify_rejects_token_without_user():
    token = jwt.encode({"username": "ghost"}, SIGNING_KEY, algorithm="HS256")

    with pytest.raises(AuthorizationError):
        JwtIdentityProvider().identify(token)


def test_identify_rejects_garbage():
    with pytest.raises(AuthorizationError):
        JwtIdentityProvider().identify("not-a-jwt")
