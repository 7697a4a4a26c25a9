"""Domain value passed between the cache, the sync engine and the API."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class CachedRecord:
    """A denormalized projection of one remote Patient resource."""

    id: str
    given: str
    family: str
    name: str
    gender: str
    birth_date: str
    phone: str
    raw_resource: str
    last_updated: datetime | None
    synced_at: datetime

    @property
    def resource(self) -> dict[str, Any]:
        return json.loads(self.raw_resource)
