"""WebSocket upgrade endpoint.

ASGI has no way to emit ping control frames, so browser sockets are served by
the ``websockets`` library directly. Its built-in keepalive is disabled; the
per-client write pump owns pings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, urlsplit

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.http11 import Request, Response

from .auth import (
    AuthError,
    TOKEN_QUERY,
    TokenValidator,
    admin_key_matches,
    extract_bearer,
    provided_admin_key,
)
from .ws import WebSocketHub

logger = logging.getLogger(__name__)

WS_PATH = "/api/ws"


@dataclass(frozen=True)
class Identity:
    user_id: str = ""
    email: str = ""
    is_admin: bool = False


def resolve_identity(
    request: Request,
    *,
    admin_key: str,
    validator: Optional[TokenValidator],
) -> Identity:
    """Admin key wins; otherwise an optional bearer token; else anonymous."""
    query = dict(parse_qsl(urlsplit(request.path).query))
    if admin_key_matches(provided_admin_key(request.headers, query), admin_key):
        return Identity(is_admin=True)

    token = extract_bearer(request.headers.get("Authorization"), query.get(TOKEN_QUERY))
    if token is None or validator is None:
        return Identity()
    try:
        claims = validator.validate(token)
    except AuthError as exc:
        logger.debug("Ignoring invalid WS token: %s", exc.details or exc.error)
        return Identity()
    return Identity(user_id=claims.user_id, email=claims.email)


class WebSocketEndpoint:
    def __init__(
        self,
        hub: WebSocketHub,
        *,
        admin_key: str,
        validator: Optional[TokenValidator],
    ) -> None:
        self._hub = hub
        self._admin_key = admin_key
        self._validator = validator

    def process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        if urlsplit(request.path).path.rstrip("/") != WS_PATH:
            return connection.respond(404, "Not Found\n")
        return None

    async def handler(self, connection: ServerConnection) -> None:
        identity = resolve_identity(
            connection.request,
            admin_key=self._admin_key,
            validator=self._validator,
        )
        client = self._hub.new_client(
            connection,
            user_id=identity.user_id,
            email=identity.email,
            is_admin=identity.is_admin,
        )
        await client.serve()


def start_ws_server(
    hub: WebSocketHub,
    *,
    host: str,
    port: int,
    admin_key: str,
    validator: Optional[TokenValidator],
    max_message_size: int = 512,
):
    """Return the ``serve`` context; ``await`` it or use ``async with``."""
    endpoint = WebSocketEndpoint(hub, admin_key=admin_key, validator=validator)
    return serve(
        endpoint.handler,
        host,
        port,
        process_request=endpoint.process_request,
        ping_interval=None,
        max_size=max_message_size,
    )


def bound_port(server: Server) -> int:
    return server.sockets[0].getsockname()[1]
