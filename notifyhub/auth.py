"""Bearer-token and admin-key gates for stream subscriptions and admin routes."""

from __future__ import annotations

import hmac
import uuid
from dataclasses import dataclass
from typing import Mapping, Optional

import jwt
from fastapi import Request
from starlette.responses import JSONResponse

from .config import settings

ADMIN_KEY_HEADER = "X-Admin-API-Key"
ADMIN_KEY_QUERY = "admin_key"
TOKEN_QUERY = "token"

_ALGORITHMS = ["HS256", "HS384", "HS512"]


class AuthError(Exception):
    def __init__(self, error: str, details: Optional[str] = None) -> None:
        super().__init__(error)
        self.error = error
        self.details = details

    def to_response(self) -> JSONResponse:
        body = {"error": self.error}
        if self.details:
            body["details"] = self.details
        return JSONResponse(body, status_code=401)


@dataclass(frozen=True)
class Claims:
    user_id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""


class TokenValidator:
    """Validates HMAC-signed access tokens issued by the API backend."""

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def validate(self, token: str) -> Claims:
        if not self._secret:
            raise AuthError("Invalid or expired token", "token validation is not configured")
        try:
            payload = jwt.decode(token, self._secret, algorithms=_ALGORITHMS)
        except jwt.InvalidTokenError as exc:
            raise AuthError("Invalid or expired token", str(exc)) from exc

        raw_user_id = payload.get("user_id") or payload.get("sub") or ""
        try:
            user_id = str(uuid.UUID(str(raw_user_id)))
        except ValueError as exc:
            raise AuthError("Invalid or expired token", "invalid user_id") from exc

        return Claims(
            user_id=user_id,
            email=str(payload.get("email") or ""),
            first_name=str(payload.get("first_name") or ""),
            last_name=str(payload.get("last_name") or ""),
        )


def extract_bearer(authorization: Optional[str], query_token: Optional[str] = None) -> Optional[str]:
    """Token from ``Authorization: Bearer <t>``, falling back to ``?token=``.

    The query fallback exists for EventSource/WebSocket clients that cannot
    set headers.
    """
    parts = (authorization or "").split(" ")
    if len(parts) == 2 and parts[0] == "Bearer" and parts[1]:
        return parts[1]
    token = (query_token or "").strip()
    return token or None


def admin_key_matches(provided: Optional[str], expected: Optional[str]) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def provided_admin_key(headers: Mapping[str, str], query: Mapping[str, str]) -> Optional[str]:
    return headers.get(ADMIN_KEY_HEADER) or query.get(ADMIN_KEY_QUERY) or None


# ── FastAPI dependencies ──────────────────────────────────────────────────

_validator: Optional[TokenValidator] = None


def get_validator() -> TokenValidator:
    global _validator
    if _validator is None:
        _validator = TokenValidator(settings.jwt_access_secret)
    return _validator


async def require_user(request: Request) -> Claims:
    token = extract_bearer(
        request.headers.get("authorization"),
        request.query_params.get(TOKEN_QUERY),
    )
    if token is None:
        raise AuthError("Authorization required")
    return get_validator().validate(token)


async def require_admin_key(request: Request) -> None:
    provided = provided_admin_key(request.headers, request.query_params)
    if not admin_key_matches(provided, settings.admin_api_key):
        raise AuthError("unauthorized")
