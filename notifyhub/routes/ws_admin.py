"""Admin WebSocket management routes."""

from fastapi import APIRouter, Depends

from ..auth import require_admin_key
from ..deps import ws_hub
from ..models import TARGET_ADMIN, ConnectionStats, NotifyRequest, WSMessage

router = APIRouter(dependencies=[Depends(require_admin_key)])


@router.post("/api/admin/ws/notify")
async def send_notification(request: NotifyRequest) -> dict:
    """Push an admin-authored notification to all clients or the admin group."""
    notification = request.model_dump()
    message = WSMessage(type="notification", data=notification, from_="admin")
    if request.target == TARGET_ADMIN:
        ws_hub.send_to_admin(message)
    else:
        ws_hub.broadcast(message)
    return {"message": "Notification sent successfully", "notification": notification}


@router.get("/api/admin/ws/stats", response_model=ConnectionStats)
async def connection_stats() -> ConnectionStats:
    """Return a snapshot of live WebSocket connections."""
    return ws_hub.stats()
