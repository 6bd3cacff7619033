from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request

from .auth import ADMIN_KEY_HEADER, AuthError, get_validator
from .bridge import create_server
from .config import Settings, settings
from .deps import runtime_logs, sse_hub, ws_hub
from .routes import health, sse, ws_admin
from .runtime_logs import install_handler
from .ws_server import start_ws_server

install_handler(runtime_logs, settings.log_level)
logger = logging.getLogger("notifyhub")


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    ws_hub.start()
    try:
        yield
    finally:
        await ws_hub.stop()


app = FastAPI(title="Realtime Notification Hub", version="0.1.0", lifespan=_lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Origin", "Content-Type", "Accept", "Authorization", ADMIN_KEY_HEADER],
    expose_headers=["Content-Length"],
)


@app.exception_handler(AuthError)
async def _auth_error_handler(_request: Request, exc: AuthError):
    return exc.to_response()


app.include_router(health.router)
app.include_router(sse.router)
app.include_router(ws_admin.router)


async def serve(cfg: Settings = settings) -> None:
    """Run the HTTP API, the WebSocket endpoint, and the gRPC bridge together."""
    import uvicorn

    missing = cfg.missing_required()
    if missing:
        raise SystemExit(f"{', '.join(missing)} required for the realtime service")

    logger.info("Starting realtime service...")

    grpc_server = create_server(sse_hub, ws_hub, cfg.admin_api_key)
    grpc_server.add_insecure_port(f"{cfg.host}:{cfg.grpc_port}")
    await grpc_server.start()
    logger.info("gRPC server running on :%d", cfg.grpc_port)

    http_server = uvicorn.Server(
        uvicorn.Config(app, host=cfg.host, port=cfg.port, log_level=cfg.log_level.lower())
    )
    try:
        async with start_ws_server(
            ws_hub,
            host=cfg.host,
            port=cfg.ws_port,
            admin_key=cfg.admin_api_key,
            validator=get_validator(),
            max_message_size=cfg.ws_max_message_size,
        ):
            logger.info("WebSocket server running on :%d", cfg.ws_port)
            logger.info("HTTP server running on :%d", cfg.port)
            await http_server.serve()
    finally:
        await grpc_server.stop(grace=2.0)


def run() -> None:
    asyncio.run(serve())
