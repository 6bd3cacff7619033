"""Server-Sent Events hub: admin broadcast group plus per-user multicast."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set

from .models import TARGET_USER, SSEMessage, Target
from .registry import DEFAULT_QUEUE_SIZE, Client, ConnectionRegistry, encode

logger = logging.getLogger(__name__)


class SSEHub(ConnectionRegistry):
    """One-way push hub. A user may hold several streams (tabs, devices)."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        super().__init__()
        self._queue_size = queue_size
        self._users: Dict[str, Set[str]] = {}

    # ── Subscriptions ─────────────────────────────────────────────────────

    def register_admin(self) -> Client:
        client = Client(is_admin=True, queue_size=self._queue_size)
        self.register(client)
        logger.info("SSE admin subscriber connected: %s", client.id)
        return client

    def unregister_admin(self, client: Client) -> None:
        if self.unregister(client):
            logger.info("SSE admin subscriber disconnected: %s", client.id)

    def register_user(self, user_id: str, email: str = "") -> Client:
        client = Client(user_id=user_id, email=email, queue_size=self._queue_size)
        self.register(client)
        logger.info("SSE user subscriber connected: %s (user %s)", client.id, user_id)
        return client

    def unregister_user(self, user_id: str, client: Client) -> None:
        if client.user_id != user_id:
            return
        if self.unregister(client):
            logger.info("SSE user subscriber disconnected: %s (user %s)", client.id, user_id)

    # ── Registry hooks ────────────────────────────────────────────────────

    def register(self, client: Client) -> None:
        super().register(client)
        if client.user_id and not client.is_admin:
            self._users.setdefault(client.user_id, set()).add(client.id)

    def unregister(self, client: Client) -> bool:
        removed = super().unregister(client)
        if removed and client.user_id:
            ids = self._users.get(client.user_id)
            if ids is not None:
                ids.discard(client.id)
                if not ids:
                    del self._users[client.user_id]
        return removed

    def _candidates(self, target: Target) -> List[Client]:
        if target.kind != TARGET_USER:
            return super()._candidates(target)
        ids = self._users.get(target.identity, ())
        return [self._clients[client_id] for client_id in list(ids) if client_id in self._clients]

    # ── Fan-out ───────────────────────────────────────────────────────────

    def broadcast_to_admin(self, message: SSEMessage) -> int:
        payload = encode(message)
        if payload is None:
            return 0
        return self.broadcast(Target.admin(), payload)

    def broadcast_to_user(self, user_id: str, message: SSEMessage) -> int:
        payload = encode(message)
        if payload is None or not user_id:
            return 0
        return self.broadcast(Target.user(user_id), payload)

    def subscriber_count(self, user_id: Optional[str] = None) -> int:
        if user_id is None:
            return len(self)
        return len(self._users.get(user_id, ()))
