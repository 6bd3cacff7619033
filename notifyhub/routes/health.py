"""Liveness and runtime log routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Response

from ..auth import require_admin_key
from ..deps import runtime_logs, sse_hub, ws_hub

router = APIRouter()


@router.get("/healthz")
async def health() -> dict:
    return {"status": "ok"}


@router.head("/healthz")
async def health_head() -> Response:
    return Response(status_code=200)


@router.get("/api/admin/logs", dependencies=[Depends(require_admin_key)])
async def list_runtime_logs(
    limit: int = 200,
    level: Optional[str] = None,
    logger: Optional[str] = None,
) -> dict:
    """Recent log records, newest last, plus live connection counts."""
    entries = runtime_logs.list_entries(limit=limit, level=level, logger_prefix=logger)
    return {
        "entries": entries,
        "count": len(entries),
        "levels": runtime_logs.level_counts(),
        "connections": {
            "sse": sse_hub.subscriber_count(),
            "ws": ws_hub.connection_count,
        },
    }
