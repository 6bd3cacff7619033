"""gRPC bridge between stateless API instances and the realtime hubs."""

from .client import NotificationClient, NotificationEmitter, NotificationError
from .server import AdminKeyInterceptor, NotificationService, create_server

__all__ = [
    "AdminKeyInterceptor",
    "NotificationClient",
    "NotificationEmitter",
    "NotificationError",
    "NotificationService",
    "create_server",
]
