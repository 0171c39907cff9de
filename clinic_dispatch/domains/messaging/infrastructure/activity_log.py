# ============================================================================
# SCOPE: INFRASTRUCTURE LAYER (Messaging)
# Description: In-memory ring buffer of recent webhook events.
# ============================================================================
"""Webhook activity log for operator diagnostics (newest first)."""

import json
import logging
import uuid
from collections import deque
from datetime import UTC, datetime
from threading import Lock
from typing import Any

logger = logging.getLogger(__name__)

MAX_ENTRIES = 200
MAX_PAYLOAD_CHARS = 6000


def sanitize_payload(payload: Any) -> Any:
    """JSON-safe copy of `payload`; large payloads keep a truncated snapshot."""
    if payload is None:
        return None
    try:
        serialized = json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError) as e:
        return {"error": str(e)}
    if len(serialized) > MAX_PAYLOAD_CHARS:
        return {
            "truncated": True,
            "approx_size": len(serialized),
            "snapshot": serialized[:MAX_PAYLOAD_CHARS],
        }
    return json.loads(serialized)


class WebhookActivityLog:
    """Bounded, thread-safe list of webhook events."""

    def __init__(self, max_entries: int = MAX_ENTRIES):
        self._entries: deque[dict[str, Any]] = deque(maxlen=max_entries)
        self._lock = Lock()

    def append(self, event_type: str, payload: Any = None, **details: Any) -> dict[str, Any]:
        event = {
            "id": uuid.uuid4().hex[:12],
            "created_at": datetime.now(UTC).isoformat(),
            "type": event_type,
            **details,
            "payload": sanitize_payload(payload),
        }
        with self._lock:
            self._entries.appendleft(event)
        return event

    def recent(self, limit: int = 50, event_type: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            entries = list(self._entries)
        if event_type:
            entries = [e for e in entries if e.get("type") == event_type]
        return entries[: max(1, limit)]

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
