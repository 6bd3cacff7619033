"""Tests for token validation and admin-key checks."""

import time
import uuid

import jwt
import pytest

from notifyhub.auth import (
    AuthError,
    TokenValidator,
    admin_key_matches,
    extract_bearer,
    provided_admin_key,
)

SECRET = "unit-secret"


def _token(payload: dict, secret: str = SECRET, algorithm: str = "HS256") -> str:
    return jwt.encode(payload, secret, algorithm=algorithm)


def test_validate_returns_claims():
    user_id = str(uuid.uuid4())
    claims = TokenValidator(SECRET).validate(
        _token({"user_id": user_id, "email": "a@example.com", "first_name": "Ada", "last_name": "L"})
    )
    assert claims.user_id == user_id
    assert claims.email == "a@example.com"
    assert claims.first_name == "Ada"


@pytest.mark.parametrize("algorithm", ["HS384", "HS512"])
def test_validate_accepts_other_hmac_algorithms(algorithm):
    user_id = str(uuid.uuid4())
    claims = TokenValidator(SECRET).validate(_token({"user_id": user_id}, algorithm=algorithm))
    assert claims.user_id == user_id


def test_validate_falls_back_to_sub():
    user_id = str(uuid.uuid4())
    assert TokenValidator(SECRET).validate(_token({"sub": user_id})).user_id == user_id


def test_validate_rejects_wrong_secret():
    with pytest.raises(AuthError) as excinfo:
        TokenValidator(SECRET).validate(_token({"user_id": str(uuid.uuid4())}, secret="other"))
    assert excinfo.value.error == "Invalid or expired token"


def test_validate_rejects_expired_token():
    token = _token({"user_id": str(uuid.uuid4()), "exp": int(time.time()) - 60})
    with pytest.raises(AuthError):
        TokenValidator(SECRET).validate(token)


def test_validate_rejects_non_uuid_user_id():
    with pytest.raises(AuthError) as excinfo:
        TokenValidator(SECRET).validate(_token({"user_id": "not-a-uuid"}))
    assert excinfo.value.details == "invalid user_id"


def test_validate_without_secret_fails_closed():
    with pytest.raises(AuthError):
        TokenValidator("").validate(_token({"user_id": str(uuid.uuid4())}))


def test_auth_error_response_body():
    response = AuthError("Invalid or expired token", "boom").to_response()
    assert response.status_code == 401
    assert response.body == b'{"error":"Invalid or expired token","details":"boom"}'


@pytest.mark.parametrize(
    "authorization,query,expected",
    [
        ("Bearer abc", None, "abc"),
        ("Bearer abc", "q", "abc"),
        ("Basic abc", "q", "q"),
        ("Bearer", None, None),
        (None, "  q  ", "q"),
        (None, None, None),
        ("bearer abc", None, None),
    ],
)
def test_extract_bearer(authorization, query, expected):
    assert extract_bearer(authorization, query) == expected


def test_admin_key_matches():
    assert admin_key_matches("k", "k")
    assert not admin_key_matches("k", "other")
    assert not admin_key_matches("", "")
    assert not admin_key_matches(None, "k")
    assert not admin_key_matches("k", "")


def test_provided_admin_key_prefers_header():
    assert provided_admin_key({"X-Admin-API-Key": "h"}, {"admin_key": "q"}) == "h"
    assert provided_admin_key({}, {"admin_key": "q"}) == "q"
    assert provided_admin_key({}, {}) is None
