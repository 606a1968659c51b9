"""
Payload pushed to realtime subscribers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and value > 0


@dataclass
class Event:
    """
    `type` is one of the outbox event types; `entity` holds what the client
    needs to render the notification without a refetch (ids, title, preview).
    """

    type: str
    tenant_id: int
    user_id: int | None = None
    entity: dict[str, Any] = field(default_factory=dict)
    ts: str | None = None
    v: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.type, str) or not self.type:
            raise ValueError("Event type must be a non-empty string")
        if not _positive_int(self.tenant_id):
            raise ValueError("Event tenant_id must be a positive integer")
        if self.user_id is not None and not _positive_int(self.user_id):
            raise ValueError("Event user_id must be a positive integer or None")
        if not isinstance(self.entity, dict):
            raise ValueError("Event entity must be a dict")
        if self.ts is None:
            self.ts = datetime.now(timezone.utc).isoformat()

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False, default=str)
