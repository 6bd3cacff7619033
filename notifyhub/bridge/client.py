"""Bridge client used by the stateless API backend."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import grpc

from ..config import Settings, settings
from .messages import (
    ADMIN_KEY_METADATA,
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
    method_path,
    serialize,
)

logger = logging.getLogger(__name__)


class NotificationError(RuntimeError):
    """The bridge answered but refused or failed the notification."""


class NotificationClient:
    def __init__(self, addr: str, admin_key: str, timeout_s: float = 5.0) -> None:
        self._addr = addr
        self._metadata = ((ADMIN_KEY_METADATA, admin_key),)
        self._timeout_s = timeout_s
        self._channel = grpc.aio.insecure_channel(addr)
        self._send_sse_to_admin = self._unary("SendSSEToAdmin", SSEResponse)
        self._send_sse_to_user = self._unary("SendSSEToUser", SSEResponse)
        self._send_ws_to_admin = self._unary("SendWebSocketToAdmin", WSResponse)
        self._send_ws_to_user = self._unary("SendWebSocketToUser", WSResponse)
        self._broadcast_ws = self._unary("BroadcastWebSocket", WSResponse)
        self._ping = self._unary("Ping", PongResponse)

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "NotificationClient":
        """Client for the bridge address and admin key in ``cfg``."""
        return cls(cfg.realtime_grpc_addr, cfg.admin_api_key)

    def _unary(self, name: str, response_model):
        return self._channel.unary_unary(
            method_path(name),
            request_serializer=serialize,
            response_deserializer=deserializer(response_model),
        )

    async def close(self) -> None:
        await self._channel.close()

    async def __aenter__(self) -> "NotificationClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _call(self, stub, request):
        response = await stub(request, metadata=self._metadata, timeout=self._timeout_s)
        if not response.success:
            raise NotificationError(f"notification failed: {response.error}")
        return response

    async def send_sse_to_admin(self, resource: str, resource_type: str, data: Dict[str, Any]) -> None:
        request = SSEAdminEvent(resource=resource, resource_type=resource_type, data_json=_dumps(data))
        await self._call(self._send_sse_to_admin, request)

    async def send_sse_to_user(
        self, user_id: str, resource: str, resource_type: str, data: Dict[str, Any]
    ) -> None:
        request = SSEUserEvent(
            user_id=user_id, resource=resource, resource_type=resource_type, data_json=_dumps(data)
        )
        await self._call(self._send_sse_to_user, request)

    async def send_ws_to_admin(self, msg_type: str, data: Any) -> None:
        await self._call(self._send_ws_to_admin, WSAdminEvent(type=msg_type, data_json=_dumps(data)))

    async def send_ws_to_user(self, user_id: str, msg_type: str, data: Any) -> None:
        request = WSUserEvent(user_id=user_id, type=msg_type, data_json=_dumps(data))
        await self._call(self._send_ws_to_user, request)

    async def broadcast_ws(self, msg_type: str, data: Any) -> None:
        await self._call(self._broadcast_ws, WSBroadcastEvent(type=msg_type, data_json=_dumps(data)))

    async def ping(self, sequence: int) -> PongResponse:
        response = await self._ping(
            PingRequest(message="ping", sequence=sequence),
            metadata=self._metadata,
            timeout=self._timeout_s,
        )
        if not response.success:
            raise NotificationError(f"ping failed: sequence {sequence}")
        return response

    async def check_connectivity(self, count: int = 10, interval_s: float = 0.1) -> int:
        """Run the startup ping series; returns how many pongs came back."""
        logger.info("Starting ping/pong test (%d requests) against %s", count, self._addr)
        ok = 0
        for sequence in range(1, count + 1):
            try:
                await self.ping(sequence)
            except (grpc.RpcError, NotificationError) as exc:
                logger.error("[Ping #%d] Failed: %s", sequence, exc)
            else:
                ok += 1
                logger.info("[Ping #%d] Success - pong received", sequence)
            if sequence < count:
                await asyncio.sleep(interval_s)
        logger.info("Ping/pong test completed (%d/%d)", ok, count)
        return ok


def _dumps(data: Any) -> str:
    try:
        return json.dumps(data)
    except (TypeError, ValueError) as exc:
        raise NotificationError(f"failed to marshal data: {exc}") from exc


class NotificationEmitter:
    """Best-effort event emitter for business code.

    Delivery failures are logged and never raised, so a notification problem
    cannot fail the operation that triggered it.
    """

    def __init__(self, client: Optional[NotificationClient]) -> None:
        self._client = client

    async def _emit(self, what: str, method: str, *args) -> bool:
        if self._client is None:
            return False
        try:
            await getattr(self._client, method)(*args)
        except (grpc.RpcError, NotificationError) as exc:
            logger.warning("Failed to emit %s: %s", what, exc)
            return False
        return True

    async def emit_admin_event(self, event: Dict[str, Any]) -> bool:
        return await self._emit("admin SSE event", "send_sse_to_admin", *_split_event(event))

    async def emit_user_event(self, user_id: str, event: Dict[str, Any]) -> bool:
        return await self._emit("user SSE event", "send_sse_to_user", user_id, *_split_event(event))

    async def emit_ws_to_admin(self, msg_type: str, data: Any) -> bool:
        return await self._emit("admin WS event", "send_ws_to_admin", msg_type, data)

    async def emit_ws_to_user(self, user_id: str, msg_type: str, data: Any) -> bool:
        return await self._emit("user WS event", "send_ws_to_user", user_id, msg_type, data)

    async def emit_ws_broadcast(self, msg_type: str, data: Any) -> bool:
        return await self._emit("WS broadcast", "broadcast_ws", msg_type, data)


def _split_event(event: Dict[str, Any]) -> Tuple[str, str, Dict[str, Any]]:
    data = event.get("data")
    return (
        str(event.get("resource") or ""),
        str(event.get("resource_type") or ""),
        data if isinstance(data, dict) else {},
    )
