"""SSE subscription routes: admin stream and per-user notification stream."""

from __future__ import annotations

from typing import AsyncIterator, Callable

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from ..auth import Claims, require_admin_key, require_user
from ..config import settings
from ..deps import sse_hub
from ..registry import Client

router = APIRouter()


async def event_stream(
    subscribe: Callable[[], Client],
    release: Callable[[Client], None],
) -> AsyncIterator[dict]:
    """Yield queued messages as SSE events until the queue closes or the
    client goes away.

    Registration happens on first iteration so a stream that never starts
    never leaves a client behind; sse-starlette cancels the generator on
    disconnect and ``release`` runs in ``finally``.
    """
    client = subscribe()
    try:
        while True:
            message = await client.queue.get()
            if message is None:
                break
            yield {"event": "message", "data": message.decode("utf-8")}
    finally:
        release(client)


def _stream_response(events: AsyncIterator[dict]) -> EventSourceResponse:
    return EventSourceResponse(
        events,
        ping=settings.sse_ping_interval_s,
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/api/admin/sse", dependencies=[Depends(require_admin_key)])
async def admin_sse() -> EventSourceResponse:
    """Stream every admin-targeted event."""
    return _stream_response(event_stream(sse_hub.register_admin, sse_hub.unregister_admin))


@router.get("/api/user/sse/notification/{user_id}")
async def user_sse(user_id: str, claims: Claims = Depends(require_user)):
    """Stream events addressed to the authenticated user."""
    if claims.user_id != user_id:
        return JSONResponse({"error": "access denied"}, status_code=403)
    return _stream_response(
        event_stream(
            lambda: sse_hub.register_user(user_id, email=claims.email),
            lambda client: sse_hub.unregister_user(user_id, client),
        )
    )
