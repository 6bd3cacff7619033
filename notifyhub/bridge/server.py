"""gRPC notification bridge: lets stateless API instances push into the hubs."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

import grpc

from ..auth import admin_key_matches
from ..models import SSEMessage, WSMessage
from ..sse import SSEHub
from ..ws import WebSocketHub
from .messages import (
    ADMIN_KEY_METADATA,
    METHODS,
    SERVICE_NAME,
    PingRequest,
    PongResponse,
    SSEAdminEvent,
    SSEResponse,
    SSEUserEvent,
    WSAdminEvent,
    WSBroadcastEvent,
    WSResponse,
    WSUserEvent,
    deserializer,
    serialize,
)

logger = logging.getLogger(__name__)


def _decode_any(data_json: str) -> Any:
    return json.loads(data_json)


def _decode_object(data_json: str) -> Dict[str, Any]:
    data = json.loads(data_json)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("data_json must encode a JSON object")
    return data


class NotificationService:
    """Translates bridge requests into hub broadcasts.

    Bad payloads come back as ``success=False`` responses rather than gRPC
    errors so callers can log them without treating the bridge as down.
    """

    def __init__(self, sse_hub: SSEHub, ws_hub: WebSocketHub) -> None:
        self._sse = sse_hub
        self._ws = ws_hub

    async def send_sse_to_admin(self, request: SSEAdminEvent, context) -> SSEResponse:
        try:
            data = _decode_object(request.data_json)
        except ValueError as exc:
            logger.error("Error decoding SSE data: %s", exc)
            return SSEResponse(success=False, error=str(exc))
        self._sse.broadcast_to_admin(
            SSEMessage(resource=request.resource, resource_type=request.resource_type, data=data)
        )
        return SSEResponse(success=True)

    async def send_sse_to_user(self, request: SSEUserEvent, context) -> SSEResponse:
        try:
            data = _decode_object(request.data_json)
        except ValueError as exc:
            logger.error("Error decoding SSE data: %s", exc)
            return SSEResponse(success=False, error=str(exc))
        self._sse.broadcast_to_user(
            request.user_id,
            SSEMessage(resource=request.resource, resource_type=request.resource_type, data=data),
        )
        return SSEResponse(success=True)

    async def send_ws_to_admin(self, request: WSAdminEvent, context) -> WSResponse:
        try:
            data = _decode_any(request.data_json)
        except ValueError as exc:
            logger.error("Error decoding WS data: %s", exc)
            return WSResponse(success=False, error=str(exc))
        self._ws.send_to_admin(WSMessage(type=request.type, data=data))
        return WSResponse(success=True)

    async def send_ws_to_user(self, request: WSUserEvent, context) -> WSResponse:
        try:
            data = _decode_any(request.data_json)
        except ValueError as exc:
            logger.error("Error decoding WS data: %s", exc)
            return WSResponse(success=False, error=str(exc))
        self._ws.send_to_user(request.user_id, WSMessage(type=request.type, data=data))
        return WSResponse(success=True)

    async def broadcast_ws(self, request: WSBroadcastEvent, context) -> WSResponse:
        try:
            data = _decode_any(request.data_json)
        except ValueError as exc:
            logger.error("Error decoding WS data: %s", exc)
            return WSResponse(success=False, error=str(exc))
        self._ws.broadcast(WSMessage(type=request.type, data=data))
        return WSResponse(success=True)

    async def ping(self, request: PingRequest, context) -> PongResponse:
        logger.info("[Realtime] Received Ping #%d: %s", request.sequence, request.message)
        return PongResponse(message="pong", sequence=request.sequence, success=True)

    def rpc_handler(self) -> grpc.GenericRpcHandler:
        behaviours = {
            "SendSSEToAdmin": self.send_sse_to_admin,
            "SendSSEToUser": self.send_sse_to_user,
            "SendWebSocketToAdmin": self.send_ws_to_admin,
            "SendWebSocketToUser": self.send_ws_to_user,
            "BroadcastWebSocket": self.broadcast_ws,
            "Ping": self.ping,
        }
        handlers = {
            name: grpc.unary_unary_rpc_method_handler(
                behaviours[name],
                request_deserializer=deserializer(request_model),
                response_serializer=serialize,
            )
            for name, request_model, _ in METHODS
        }
        return grpc.method_handlers_generic_handler(SERVICE_NAME, handlers)


async def _deny(request_or_iterator, context) -> None:
    await context.abort(grpc.StatusCode.UNAUTHENTICATED, "invalid admin key")


def _rejecting(handler: grpc.RpcMethodHandler) -> grpc.RpcMethodHandler:
    codecs = {
        "request_deserializer": handler.request_deserializer,
        "response_serializer": handler.response_serializer,
    }
    if handler.request_streaming and handler.response_streaming:
        return grpc.stream_stream_rpc_method_handler(_deny, **codecs)
    if handler.request_streaming:
        return grpc.stream_unary_rpc_method_handler(_deny, **codecs)
    if handler.response_streaming:
        return grpc.unary_stream_rpc_method_handler(_deny, **codecs)
    return grpc.unary_unary_rpc_method_handler(_deny, **codecs)


class AdminKeyInterceptor(grpc.aio.ServerInterceptor):
    """Rejects every RPC whose metadata lacks the shared admin key."""

    def __init__(self, expected: str) -> None:
        self._expected = expected

    def authorized(self, metadata) -> bool:
        for key, value in metadata or ():
            if key.lower() == ADMIN_KEY_METADATA:
                return admin_key_matches(value, self._expected)
        return False

    async def intercept_service(self, continuation, handler_call_details):
        handler = await continuation(handler_call_details)
        if handler is None or self.authorized(handler_call_details.invocation_metadata):
            return handler
        return _rejecting(handler)


def create_server(sse_hub: SSEHub, ws_hub: WebSocketHub, admin_key: str) -> grpc.aio.Server:
    server = grpc.aio.server(interceptors=[AdminKeyInterceptor(admin_key)])
    server.add_generic_rpc_handlers((NotificationService(sse_hub, ws_hub).rpc_handler(),))
    return server
