"""Monitoring log of calls made to the FHIR server."""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ApiLogEntry:
    method: str
    url: str
    status: int
    ok: bool
    duration_ms: float
    operation: str
    reason: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ApiLog:
    """
    Bounded, newest-first record of remote calls.

    One instance is owned by the runtime and handed to the FHIR client; it is
    kept in memory only and cleared on restart.
    """

    def __init__(self, capacity: int = 200):
        self._entries: deque[ApiLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def add(self, entry: ApiLogEntry) -> None:
        with self._lock:
            self._entries.appendleft(entry)
        logger.info(
            "API: %s %s -> %s (%.0f ms) [%s]",
            entry.method,
            entry.url,
            entry.status,
            entry.duration_ms,
            entry.operation,
        )

    def entries(self) -> list[ApiLogEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
