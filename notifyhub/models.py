"""Pydantic models for hub envelopes, routing targets, stats, and API requests."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

TARGET_ALL = "all"
TARGET_ADMIN = "admin"
TARGET_USER = "user"


@dataclass(frozen=True)
class Target:
    """Routing instruction: every client, the admin subset, or one identity."""

    kind: str
    identity: str = ""

    @classmethod
    def all(cls) -> "Target":
        return cls(TARGET_ALL)

    @classmethod
    def admin(cls) -> "Target":
        return cls(TARGET_ADMIN)

    @classmethod
    def user(cls, identity: str) -> "Target":
        if not identity:
            raise ValueError("user target requires a non-empty identity")
        return cls(TARGET_USER, identity)

    @classmethod
    def parse(cls, raw: str) -> "Target":
        value = (raw or "").strip()
        if value == TARGET_ALL:
            return cls.all()
        if value == TARGET_ADMIN:
            return cls.admin()
        return cls.user(value)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SSEMessage(BaseModel):
    """Envelope pushed to SSE subscribers."""

    resource: str = ""
    resource_type: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")


class WSMessage(BaseModel):
    """Envelope pushed to WebSocket clients."""

    type: str
    data: Any = None
    timestamp: datetime = Field(default_factory=utc_now)
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_json_bytes(self) -> bytes:
        payload = self.model_dump(mode="json", by_alias=True)
        # from/to are optional on the wire
        for key in ("from", "to"):
            if payload.get(key) is None:
                payload.pop(key, None)
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")


class ClientInfo(BaseModel):
    id: str
    user_id: Optional[str] = None
    email: Optional[str] = None
    session_id: Optional[str] = None
    is_admin: bool = False
    last_seen: datetime


class ConnectionStats(BaseModel):
    total_connections: int = 0
    logged_in_users: int = 0
    anonymous_users: int = 0
    admin_users: int = 0
    connections: List[ClientInfo] = Field(default_factory=list)


class NotifyRequest(BaseModel):
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    type: Literal["info", "success", "warning", "error"]
    target: Literal["all", "admin"]
