"""Tests for the gRPC notification bridge, over a real loopback server."""

import json
from types import SimpleNamespace

import grpc
import pytest
import pytest_asyncio

from notifyhub.bridge import (
    AdminKeyInterceptor,
    NotificationClient,
    NotificationEmitter,
    NotificationError,
    NotificationService,
    create_server,
)
from notifyhub.bridge.messages import (
    PingRequest,
    SSEAdminEvent,
    SSEUserEvent,
    WSBroadcastEvent,
    deserializer,
    serialize,
)
from notifyhub.config import Settings
from notifyhub.registry import Client
from notifyhub.sse import SSEHub
from notifyhub.ws import WebSocketHub

KEY = "bridge-key"


@pytest_asyncio.fixture
async def bridge():
    sse_hub = SSEHub()
    ws_hub = WebSocketHub()
    ws_hub.start()
    server = create_server(sse_hub, ws_hub, KEY)
    port = server.add_insecure_port("127.0.0.1:0")
    await server.start()
    client = NotificationClient(f"127.0.0.1:{port}", KEY, timeout_s=2.0)
    try:
        yield SimpleNamespace(sse=sse_hub, ws=ws_hub, client=client, port=port)
    finally:
        await client.close()
        await server.stop(None)
        await ws_hub.stop()


def _decoded(client: Client) -> list:
    return [json.loads(raw) for raw in client.queue.drain_nowait()]


# -- Service, called directly --


@pytest.mark.asyncio
async def test_service_rejects_non_object_sse_data():
    sse_hub = SSEHub()
    admin = sse_hub.register_admin()
    service = NotificationService(sse_hub, WebSocketHub())

    bad_json = await service.send_sse_to_admin(SSEAdminEvent(data_json="{nope"), None)
    not_object = await service.send_sse_to_admin(SSEAdminEvent(data_json="[1, 2]"), None)

    assert bad_json.success is False and bad_json.error
    assert not_object.success is False
    assert len(admin.queue) == 0


@pytest.mark.asyncio
async def test_service_treats_null_sse_data_as_empty_object():
    sse_hub = SSEHub()
    admin = sse_hub.register_admin()
    service = NotificationService(sse_hub, WebSocketHub())

    response = await service.send_sse_to_admin(
        SSEAdminEvent(resource="cart", resource_type="cleared", data_json="null"), None
    )
    assert response.success is True
    assert _decoded(admin) == [{"resource": "cart", "resource_type": "cleared", "data": {}}]


@pytest.mark.asyncio
async def test_service_sse_to_user_builds_envelope():
    sse_hub = SSEHub()
    tab = sse_hub.register_user("u1")
    service = NotificationService(sse_hub, WebSocketHub())

    response = await service.send_sse_to_user(
        SSEUserEvent(user_id="u1", resource="order", resource_type="shipped", data_json='{"id": 9}'),
        None,
    )
    assert response.success is True
    assert _decoded(tab) == [{"resource": "order", "resource_type": "shipped", "data": {"id": 9}}]


@pytest.mark.asyncio
async def test_service_ws_accepts_any_json_value():
    ws_hub = WebSocketHub()
    ws_hub.start()
    try:
        listener = ws_hub.new_client(conn=None)
        ws_hub.register(listener)
        await ws_hub.join()
        service = NotificationService(SSEHub(), ws_hub)

        response = await service.broadcast_ws(WSBroadcastEvent(type="tick", data_json="42"), None)
        await ws_hub.join()
        assert response.success is True
        (message,) = _decoded(listener)
        assert message["type"] == "tick"
        assert message["data"] == 42
    finally:
        await ws_hub.stop()


@pytest.mark.asyncio
async def test_service_ping_echoes_sequence():
    service = NotificationService(SSEHub(), WebSocketHub())
    pong = await service.ping(PingRequest(message="ping", sequence=7), None)
    assert (pong.message, pong.sequence, pong.success) == ("pong", 7, True)


def test_interceptor_checks_metadata_key():
    interceptor = AdminKeyInterceptor(KEY)
    assert interceptor.authorized((("x-admin-api-key", KEY),))
    assert interceptor.authorized((("X-Admin-API-Key", KEY),))
    assert not interceptor.authorized((("x-admin-api-key", "wrong"),))
    assert not interceptor.authorized(())
    assert not interceptor.authorized(None)


def test_wire_codec_is_json():
    raw = serialize(PingRequest(message="ping", sequence=3))
    assert json.loads(raw) == {"message": "ping", "sequence": 3}
    assert deserializer(PingRequest)(raw).sequence == 3


# -- Over the wire --


@pytest.mark.asyncio
async def test_sse_admin_event_reaches_admin_streams(bridge):
    admin = bridge.sse.register_admin()
    user = bridge.sse.register_user("u1")

    await bridge.client.send_sse_to_admin("product", "updated", {"sku": "A-1"})

    assert _decoded(admin) == [{"resource": "product", "resource_type": "updated", "data": {"sku": "A-1"}}]
    assert len(user.queue) == 0


@pytest.mark.asyncio
async def test_sse_user_event_reaches_only_that_user(bridge):
    mine = bridge.sse.register_user("u1")
    theirs = bridge.sse.register_user("u2")

    await bridge.client.send_sse_to_user("u1", "order", "paid", {"total": 10})

    assert _decoded(mine)[0]["data"] == {"total": 10}
    assert len(theirs.queue) == 0


@pytest.mark.asyncio
async def test_ws_user_and_admin_sends(bridge):
    user = Client(user_id="u1")
    admin = Client(is_admin=True)
    bridge.ws._registry.register(user)
    bridge.ws._registry.register(admin)

    await bridge.client.send_ws_to_user("u1", "chat", {"text": "hi"})
    await bridge.client.send_ws_to_admin("alert", ["low stock"])
    await bridge.ws.join()

    assert [(m["type"], m["data"]) for m in _decoded(user)] == [("chat", {"text": "hi"})]
    assert [(m["type"], m["data"]) for m in _decoded(admin)] == [("alert", ["low stock"])]


@pytest.mark.asyncio
async def test_ws_broadcast_goes_through_hub_loop(bridge):
    listener = bridge.ws.new_client(conn=None)
    bridge.ws.register(listener)
    await bridge.ws.join()

    await bridge.client.broadcast_ws("sale", {"pct": 20})
    await bridge.ws.join()

    assert _decoded(listener)[0]["data"] == {"pct": 20}


@pytest.mark.asyncio
async def test_refused_payload_raises_notification_error(bridge):
    with pytest.raises(NotificationError):
        await bridge.client.send_sse_to_admin("r", "t", [1, 2])


@pytest.mark.asyncio
async def test_unmarshalable_payload_raises_before_sending(bridge):
    with pytest.raises(NotificationError):
        await bridge.client.broadcast_ws("x", {"bad": object()})


@pytest.mark.asyncio
async def test_wrong_admin_key_is_unauthenticated(bridge):
    async with NotificationClient(f"127.0.0.1:{bridge.port}", "wrong", timeout_s=2.0) as intruder:
        with pytest.raises(grpc.aio.AioRpcError) as excinfo:
            await intruder.send_sse_to_admin("r", "t", {})
        assert excinfo.value.code() == grpc.StatusCode.UNAUTHENTICATED
        assert await intruder.check_connectivity(count=2, interval_s=0) == 0


@pytest.mark.asyncio
async def test_client_from_settings_uses_configured_address(bridge):
    cfg = Settings(realtime_grpc_addr=f"127.0.0.1:{bridge.port}", admin_api_key=KEY)
    async with NotificationClient.from_settings(cfg) as client:
        assert (await client.ping(1)).success is True


@pytest.mark.asyncio
async def test_ping_and_connectivity_check(bridge):
    pong = await bridge.client.ping(5)
    assert pong.sequence == 5 and pong.message == "pong"
    assert await bridge.client.check_connectivity(count=3, interval_s=0) == 3


# -- Emitter --


@pytest.mark.asyncio
async def test_emitter_delivers_events(bridge):
    admin = bridge.sse.register_admin()
    emitter = NotificationEmitter(bridge.client)

    ok = await emitter.emit_admin_event(
        {"resource": "review", "resource_type": "created", "data": {"stars": 5}}
    )
    assert ok is True
    assert _decoded(admin)[0]["resource"] == "review"


@pytest.mark.asyncio
async def test_emitter_swallows_delivery_failures(bridge):
    async with NotificationClient(f"127.0.0.1:{bridge.port}", "wrong", timeout_s=2.0) as intruder:
        emitter = NotificationEmitter(intruder)
        assert await emitter.emit_ws_broadcast("x", {}) is False
        assert await emitter.emit_user_event("u1", {"resource": "r"}) is False


@pytest.mark.asyncio
async def test_emitter_without_client_is_noop():
    emitter = NotificationEmitter(None)
    assert await emitter.emit_ws_to_user("u1", "chat", {}) is False
    assert await emitter.emit_ws_to_admin("alert", {}) is False
