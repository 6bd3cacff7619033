import os
import uuid

os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-jwt-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import jwt
import pytest

from notifyhub.config import settings
from notifyhub.deps import runtime_logs, sse_hub, ws_hub


@pytest.fixture(autouse=True)
def reset_runtime_state():
    for client in sse_hub.clients():
        sse_hub.unregister(client)
    for client in ws_hub._registry.clients():
        ws_hub._registry.unregister(client)
    runtime_logs.clear()
    yield


@pytest.fixture
def admin_key() -> str:
    return settings.admin_api_key


@pytest.fixture
def make_token():
    def _make(user_id=None, email="shopper@example.com", secret=None, **claims):
        payload = {
            "user_id": user_id or str(uuid.uuid4()),
            "email": email,
            "first_name": "Ada",
            "last_name": "Lovelace",
        }
        payload.update(claims)
        return jwt.encode(payload, secret or settings.jwt_access_secret, algorithm="HS256")

    return _make
