"""WebSocket hub for pushing real-time events to connected browser clients."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, NamedTuple, Optional, Protocol, Union

from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from .models import ConnectionStats, Target, WSMessage
from .registry import DEFAULT_QUEUE_SIZE, Client, ConnectionRegistry, encode

logger = logging.getLogger(__name__)

PONG_WAIT_S = 60.0
WRITE_WAIT_S = 10.0


def ping_period(pong_wait_s: float) -> float:
    return pong_wait_s * 9 / 10


class SocketConnection(Protocol):
    """The subset of ``websockets`` ServerConnection the pumps rely on."""

    async def recv(self) -> Union[str, bytes]: ...

    async def send(self, message: Union[str, bytes]) -> None: ...

    async def ping(self) -> Awaitable[Any]: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


@dataclass(eq=False)
class WSClient(Client):
    """A WebSocket client with its read and write pumps.

    Only the write pump ever calls ``conn.send``/``conn.ping``.
    """

    conn: Optional[SocketConnection] = None
    hub: Optional["WebSocketHub"] = None
    pong_wait_s: float = PONG_WAIT_S
    write_wait_s: float = WRITE_WAIT_S
    read_deadline: float = field(default=0.0, init=False)

    def extend_read_deadline(self) -> None:
        self.read_deadline = asyncio.get_running_loop().time() + self.pong_wait_s

    def _on_pong(self, waiter: "asyncio.Future[Any]") -> None:
        if waiter.cancelled() or waiter.exception() is not None:
            return
        self.touch()
        self.extend_read_deadline()

    async def serve(self) -> None:
        """Register, run both pumps until the peer goes away, then tear down."""
        if self.conn is None or self.hub is None:
            raise RuntimeError("WS client is not bound to a connection and hub")
        self.extend_read_deadline()
        self.hub.register(self)
        writer = asyncio.create_task(self.write_pump(), name=f"ws-write-{self.id}")
        try:
            await self.read_pump()
        finally:
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer

    async def read_pump(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while True:
                remaining = self.read_deadline - loop.time()
                if remaining <= 0:
                    logger.info("WS client %s missed pong deadline", self.id)
                    break
                try:
                    await asyncio.wait_for(self.conn.recv(), timeout=remaining)
                except asyncio.TimeoutError:
                    # The deadline may have moved while we waited
                    continue
                self.touch()
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as exc:
            logger.warning("WebSocket error for %s: %s", self.id, exc)
        except OSError as exc:
            logger.warning("WebSocket read failed for %s: %s", self.id, exc)
        finally:
            self.hub.unregister(self)
            await self._close()

    async def write_pump(self) -> None:
        loop = asyncio.get_running_loop()
        period = ping_period(self.pong_wait_s)
        next_ping = loop.time() + period
        try:
            while True:
                try:
                    message = await asyncio.wait_for(
                        self.queue.get(), timeout=max(0.0, next_ping - loop.time())
                    )
                except asyncio.TimeoutError:
                    waiter = await asyncio.wait_for(self.conn.ping(), timeout=self.write_wait_s)
                    asyncio.ensure_future(waiter).add_done_callback(self._on_pong)
                    next_ping = loop.time() + period
                    continue

                if message is None:
                    # Hub closed the queue
                    return

                frame = b"\n".join([message, *self.queue.drain_nowait()])
                await asyncio.wait_for(
                    self.conn.send(frame.decode("utf-8")), timeout=self.write_wait_s
                )
        except (ConnectionClosed, asyncio.TimeoutError, OSError) as exc:
            logger.debug("WS write pump for %s stopped: %r", self.id, exc)
        finally:
            await self._close()

    async def _close(self) -> None:
        try:
            await asyncio.wait_for(self.conn.close(), timeout=self.write_wait_s)
        except (ConnectionClosed, asyncio.TimeoutError, OSError):
            pass


class _HubEvent(NamedTuple):
    kind: str
    value: Any


_REGISTER = "register"
_UNREGISTER = "unregister"
_DELIVER = "deliver"


class WebSocketHub:
    """Registry owned by a single loop task.

    Every mutation and every delivery is queued and applied in order by ``run``,
    so one client sees messages in the order the hub was called.
    """

    def __init__(
        self,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        pong_wait_s: float = PONG_WAIT_S,
        write_wait_s: float = WRITE_WAIT_S,
    ) -> None:
        self._registry = ConnectionRegistry()
        self._events: "asyncio.Queue[_HubEvent]" = asyncio.Queue()
        self._queue_size = queue_size
        self._pong_wait_s = pong_wait_s
        self._write_wait_s = write_wait_s
        self._task: Optional[asyncio.Task] = None

    @property
    def connection_count(self) -> int:
        return len(self._registry)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def new_client(
        self,
        conn: SocketConnection,
        *,
        user_id: str = "",
        email: str = "",
        is_admin: bool = False,
    ) -> WSClient:
        session_id = "" if (user_id or email) else uuid.uuid4().hex
        return WSClient(
            user_id=user_id,
            email=email,
            is_admin=is_admin,
            session_id=session_id,
            queue_size=self._queue_size,
            conn=conn,
            hub=self,
            pong_wait_s=self._pong_wait_s,
            write_wait_s=self._write_wait_s,
        )

    # ── Loop ──────────────────────────────────────────────────────────────

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self.run(), name="ws-hub")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        for client in self._registry.clients():
            self._registry.unregister(client)

    async def run(self) -> None:
        while True:
            event = await self._events.get()
            try:
                self._apply(event)
            except Exception:
                logger.exception("WS hub failed to apply %s event", event.kind)
            finally:
                self._events.task_done()

    async def join(self) -> None:
        """Wait until every queued event has been applied."""
        await self._events.join()

    def _apply(self, event: _HubEvent) -> None:
        if event.kind == _REGISTER:
            client = event.value
            self._registry.register(client)
            logger.info("WS client connected: %s (admin: %s)", client.id, client.is_admin)
        elif event.kind == _UNREGISTER:
            client = event.value
            if self._registry.unregister(client):
                logger.info("WS client disconnected: %s", client.id)
        elif event.kind == _DELIVER:
            target, payload = event.value
            self._registry.broadcast(target, payload)

    # ── Public API ────────────────────────────────────────────────────────

    def register(self, client: WSClient) -> None:
        self._events.put_nowait(_HubEvent(_REGISTER, client))

    def unregister(self, client: WSClient) -> None:
        self._events.put_nowait(_HubEvent(_UNREGISTER, client))

    def _deliver(self, target: Target, message: WSMessage) -> bool:
        payload = encode(message)
        if payload is None:
            return False
        self._events.put_nowait(_HubEvent(_DELIVER, (target, payload)))
        return True

    def broadcast(self, message: WSMessage) -> bool:
        return self._deliver(Target.all(), message)

    def send_to_admin(self, message: WSMessage) -> bool:
        return self._deliver(Target.admin(), message)

    def send_to_user(self, identity: str, message: WSMessage) -> bool:
        if not identity:
            return False
        return self._deliver(Target.user(identity), message)

    def is_registered(self, client: WSClient) -> bool:
        return client in self._registry

    def stats(self) -> ConnectionStats:
        return self._registry.stats()
