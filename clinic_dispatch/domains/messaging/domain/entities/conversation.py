"""
Conversation Session

Derived view over the ledger entries that share a phone key. Never stored.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class ConversationSession:
    """Timestamps of one conversation thread."""

    phone_key: str
    last_inbound_at: datetime | None = None
    last_outbound_at: datetime | None = None
    last_message_at: datetime | None = None
    last_message_preview: str | None = None
    message_count: int = 0
    appointment_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phone_key": self.phone_key,
            "last_inbound_at": self.last_inbound_at.isoformat() if self.last_inbound_at else None,
            "last_outbound_at": self.last_outbound_at.isoformat() if self.last_outbound_at else None,
            "last_message_at": self.last_message_at.isoformat() if self.last_message_at else None,
            "last_message_preview": self.last_message_preview,
            "message_count": self.message_count,
            "appointment_id": self.appointment_id,
        }
