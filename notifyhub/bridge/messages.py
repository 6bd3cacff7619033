"""Wire messages for the notification bridge.

The bridge uses gRPC generic handlers with JSON-encoded pydantic messages, so
both sides share these models instead of generated protobuf stubs.
"""

from __future__ import annotations

from typing import Callable, Type, TypeVar

from pydantic import BaseModel

SERVICE_NAME = "notifications.NotificationService"
ADMIN_KEY_METADATA = "x-admin-api-key"

M = TypeVar("M", bound=BaseModel)


class SSEAdminEvent(BaseModel):
    resource: str = ""
    resource_type: str = ""
    data_json: str = ""


class SSEUserEvent(BaseModel):
    user_id: str = ""
    resource: str = ""
    resource_type: str = ""
    data_json: str = ""


class WSAdminEvent(BaseModel):
    type: str = ""
    data_json: str = ""


class WSUserEvent(BaseModel):
    user_id: str = ""
    type: str = ""
    data_json: str = ""


class WSBroadcastEvent(BaseModel):
    type: str = ""
    data_json: str = ""


class SSEResponse(BaseModel):
    success: bool = False
    error: str = ""


class WSResponse(BaseModel):
    success: bool = False
    error: str = ""


class PingRequest(BaseModel):
    message: str = ""
    sequence: int = 0


class PongResponse(BaseModel):
    message: str = ""
    sequence: int = 0
    success: bool = False


def serialize(message: BaseModel) -> bytes:
    return message.model_dump_json().encode("utf-8")


def deserializer(model: Type[M]) -> Callable[[bytes], M]:
    def _load(raw: bytes) -> M:
        return model.model_validate_json(raw)

    return _load


def method_path(name: str) -> str:
    return f"/{SERVICE_NAME}/{name}"


# (method name, request model, response model)
METHODS = (
    ("SendSSEToAdmin", SSEAdminEvent, SSEResponse),
    ("SendSSEToUser", SSEUserEvent, SSEResponse),
    ("SendWebSocketToAdmin", WSAdminEvent, WSResponse),
    ("SendWebSocketToUser", WSUserEvent, WSResponse),
    ("BroadcastWebSocket", WSBroadcastEvent, WSResponse),
    ("Ping", PingRequest, PongResponse),
)
