"""Shared singletons used by route modules and the side servers."""

from __future__ import annotations

from .config import settings
from .runtime_logs import RuntimeLogStore
from .sse import SSEHub
from .ws import WebSocketHub

# ── Singletons ────────────────────────────────────────────────────────────

sse_hub = SSEHub(queue_size=settings.outbound_queue_size)
ws_hub = WebSocketHub(
    queue_size=settings.outbound_queue_size,
    pong_wait_s=settings.ws_pong_wait_s,
    write_wait_s=settings.ws_write_wait_s,
)
runtime_logs = RuntimeLogStore(max_entries=settings.runtime_log_max_entries)
