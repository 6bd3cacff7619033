"""Connection registry shared by the SSE and WebSocket hubs.

All methods that touch the member maps are synchronous and never await, so on
a single asyncio event loop each call runs to completion before any other task
sees the maps. Fan-out iterates over a snapshot list.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional, Protocol

from pydantic_core import PydanticSerializationError

from .models import (
    TARGET_ADMIN,
    TARGET_ALL,
    ClientInfo,
    ConnectionStats,
    Target,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256


class OutboundQueue:
    """Bounded single-producer/single-consumer byte queue that can be closed.

    The hub offers without ever blocking; the pump awaits ``get``. After
    ``close`` the consumer drains what is left and then receives ``None``.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self._items: Deque[bytes] = deque()
        self._maxsize = max(1, int(maxsize))
        self._closed = False
        self._ready = asyncio.Event()

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._items)

    def full(self) -> bool:
        return len(self._items) >= self._maxsize

    def offer(self, message: bytes) -> bool:
        """Enqueue without blocking. False if the queue is full or closed."""
        if self._closed or self.full():
            return False
        self._items.append(message)
        self._ready.set()
        return True

    async def get(self) -> Optional[bytes]:
        while not self._items:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._items.popleft()

    def drain_nowait(self) -> List[bytes]:
        items = list(self._items)
        self._items.clear()
        return items

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ready.set()


@dataclass(eq=False)
class Client:
    """A live subscriber. Identity is connection scoped; equality is identity."""

    user_id: str = ""
    email: str = ""
    is_admin: bool = False
    session_id: str = ""
    queue_size: int = DEFAULT_QUEUE_SIZE
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    last_seen: datetime = field(default_factory=utc_now)
    queue: OutboundQueue = field(init=False)

    def __post_init__(self) -> None:
        self.queue = OutboundQueue(self.queue_size)

    @property
    def logged_in(self) -> bool:
        return bool(self.user_id or self.email)

    def matches(self, identity: str) -> bool:
        return bool(identity) and identity in (self.user_id, self.email)

    def touch(self) -> None:
        self.last_seen = utc_now()

    def info(self) -> ClientInfo:
        return ClientInfo(
            id=self.id,
            user_id=self.user_id or None,
            email=self.email or None,
            session_id=self.session_id or None,
            is_admin=self.is_admin,
            last_seen=self.last_seen,
        )


class Envelope(Protocol):
    def to_json_bytes(self) -> bytes: ...


def encode(message: Envelope) -> Optional[bytes]:
    """Serialize an envelope once for fan-out; None (logged) on failure."""
    try:
        return message.to_json_bytes()
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        logger.error("Error serializing %s: %s", type(message).__name__, exc)
        return None


class ConnectionRegistry:
    def __init__(self) -> None:
        self._clients: Dict[str, Client] = {}
        self._admins: Dict[str, Client] = {}

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client: object) -> bool:
        return isinstance(client, Client) and self._clients.get(client.id) is client

    def clients(self) -> List[Client]:
        return list(self._clients.values())

    def admins(self) -> List[Client]:
        return list(self._admins.values())

    def register(self, client: Client) -> None:
        self._clients[client.id] = client
        if client.is_admin:
            self._admins[client.id] = client
        else:
            self._admins.pop(client.id, None)

    def unregister(self, client: Client) -> bool:
        """Remove the client and close its queue. No-op if already gone."""
        if self._clients.get(client.id) is not client:
            return False
        del self._clients[client.id]
        self._admins.pop(client.id, None)
        client.queue.close()
        return True

    def broadcast(self, target: Target, payload: bytes) -> int:
        """Offer ``payload`` to every client matching ``target``.

        A client whose queue is full is dropped in the same pass. Returns the
        number of clients that accepted the message.
        """
        delivered = 0
        for client in self._candidates(target):
            if client.queue.offer(payload):
                delivered += 1
                continue
            if self.unregister(client):
                logger.info("Dropped slow client %s (queue full)", client.id)
        return delivered

    def _candidates(self, target: Target) -> List[Client]:
        if target.kind == TARGET_ALL:
            return self.clients()
        if target.kind == TARGET_ADMIN:
            return self.admins()
        return [client for client in self._clients.values() if client.matches(target.identity)]

    def stats(self) -> ConnectionStats:
        stats = ConnectionStats(total_connections=len(self._clients))
        for client in self.clients():
            stats.connections.append(client.info())
            if client.is_admin:
                stats.admin_users += 1
            elif client.logged_in:
                stats.logged_in_users += 1
            else:
                stats.anonymous_users += 1
        return stats
