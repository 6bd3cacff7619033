import os
from dataclasses import dataclass

try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    pass


def _env(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    host: str = _env("BACKEND_HOST", "0.0.0.0")
    port: int = _env_int("PORT", 9998)
    ws_port: int = _env_int("WS_PORT", 9997)
    grpc_port: int = _env_int("GRPC_PORT", 9999)

    admin_api_key: str = _env("ADMIN_API_KEY", "")
    jwt_access_secret: str = _env("JWT_ACCESS_SECRET", "")

    # Address the stateless API backend dials to reach the bridge
    realtime_grpc_addr: str = _env("REALTIME_GRPC_ADDR", "localhost:9999")

    outbound_queue_size: int = _env_int("OUTBOUND_QUEUE_SIZE", 256)
    ws_pong_wait_s: float = _env_float("WS_PONG_WAIT_S", 60.0)
    ws_write_wait_s: float = _env_float("WS_WRITE_WAIT_S", 10.0)
    ws_max_message_size: int = _env_int("WS_MAX_MESSAGE_SIZE", 512)
    sse_ping_interval_s: int = _env_int("SSE_PING_INTERVAL_S", 15)

    log_level: str = _env("LOG_LEVEL", "INFO").upper()
    runtime_log_max_entries: int = _env_int("RUNTIME_LOG_MAX_ENTRIES", 1000)

    def missing_required(self) -> list[str]:
        missing = []
        if not self.admin_api_key:
            missing.append("ADMIN_API_KEY")
        if not self.jwt_access_secret:
            missing.append("JWT_ACCESS_SECRET")
        return missing


settings = Settings()
