"""In-memory ring buffer of recent log records for the admin API."""

from __future__ import annotations

import logging
from collections import Counter, deque
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Optional

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class RuntimeLogStore:
    """Bounded store of log entries; the oldest entries fall off first.

    Handlers may emit from uvicorn or grpc worker threads, so access is locked.
    """

    def __init__(self, max_entries: int = 1000):
        self._entries = deque(maxlen=max(1, int(max_entries)))
        self._lock = Lock()

    def append(
        self,
        *,
        level: str,
        logger_name: str,
        message: str,
        exception: Optional[str] = None,
    ) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.upper(),
            "logger": logger_name,
            "message": message,
        }
        if exception:
            entry["exception"] = exception
        with self._lock:
            self._entries.append(entry)

    def list_entries(
        self,
        *,
        limit: int = 200,
        level: Optional[str] = None,
        logger_prefix: Optional[str] = None,
    ) -> list[dict]:
        """Newest ``limit`` entries matching an exact level and a logger prefix."""
        wanted_level = (level or "").strip().upper()
        prefix = (logger_prefix or "").strip()
        with self._lock:
            snapshot = list(self._entries)

        matched = [
            entry
            for entry in snapshot
            if (not wanted_level or entry["level"] == wanted_level)
            and (not prefix or entry["logger"].startswith(prefix))
        ]
        return matched[-max(1, min(int(limit), 2000)) :]

    def level_counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(Counter(entry["level"] for entry in self._entries))

    def clear(self) -> int:
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
        return dropped

    def count(self) -> int:
        with self._lock:
            return len(self._entries)


class RuntimeLogHandler(logging.Handler):
    """Copies every record it sees into a RuntimeLogStore."""

    def __init__(self, store: RuntimeLogStore):
        super().__init__()
        self._store = store
        self._traceback_formatter = logging.Formatter()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            exception = None
            if record.exc_info:
                exception = self._traceback_formatter.formatException(record.exc_info)
            self._store.append(
                level=record.levelname,
                logger_name=record.name,
                message=record.getMessage(),
                exception=exception,
            )
        except Exception:
            self.handleError(record)


def install_handler(store: RuntimeLogStore, level: str = "INFO") -> RuntimeLogHandler:
    """Configure root logging once and attach the ring-buffer handler."""
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    root_logger = logging.getLogger()
    existing = next((h for h in root_logger.handlers if isinstance(h, RuntimeLogHandler)), None)
    if existing is not None:
        return existing
    handler = RuntimeLogHandler(store)
    root_logger.addHandler(handler)
    return handler
