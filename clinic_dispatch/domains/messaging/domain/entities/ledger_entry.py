"""
Ledger Entry Entity

One durable record of an outbound attempt, an inbound intent or a delivery
receipt.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..value_objects.message_kind import (
    FAILURE_STATUSES,
    SUCCESSFUL_SEND_STATUSES,
    Direction,
    MessageKind,
    MessageStatus,
)

BODY_MAX_LENGTH = 1000
ERROR_DETAIL_MAX_LENGTH = 1000


def truncate(value: str | None, limit: int) -> str | None:
    """Cut `value` to `limit` characters (None stays None)."""
    if value is None:
        return None
    value = str(value)
    return value if len(value) <= limit else value[: limit - 3] + "..."


@dataclass
class LedgerEntry:
    """Ledger row as a domain object."""

    kind: MessageKind
    status: MessageStatus
    direction: Direction = Direction.OUTBOUND
    appointment_id: int | None = None
    phone: str | None = None
    phone_key: str | None = None
    provider_message_id: str | None = None
    template_name: str | None = None
    body: str | None = None
    error_detail: str | None = None
    retry_count: int = 0
    retryable: bool = True
    next_retry_at: datetime | None = None
    last_attempt_at: datetime | None = None
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        self.kind = MessageKind(self.kind)
        self.status = MessageStatus(self.status)
        self.direction = Direction(self.direction)
        self.body = truncate(self.body, BODY_MAX_LENGTH)
        self.error_detail = truncate(self.error_detail, ERROR_DETAIL_MAX_LENGTH)

    @property
    def is_inbound(self) -> bool:
        return self.direction.is_inbound

    @property
    def is_successful_send(self) -> bool:
        return self.status in SUCCESSFUL_SEND_STATUSES

    @property
    def is_failure(self) -> bool:
        return self.status in FAILURE_STATUSES

    @property
    def timestamp(self) -> datetime | None:
        """Most recent known timestamp of the entry."""
        return self.updated_at or self.created_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "appointment_id": self.appointment_id,
            "phone": self.phone,
            "phone_key": self.phone_key,
            "provider_message_id": self.provider_message_id,
            "kind": self.kind.value,
            "template_name": self.template_name,
            "status": self.status.value,
            "direction": self.direction.value,
            "body": self.body,
            "error_detail": self.error_detail,
            "retry_count": self.retry_count,
            "retryable": self.retryable,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
