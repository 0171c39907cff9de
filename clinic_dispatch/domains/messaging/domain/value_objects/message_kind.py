# ============================================================================
# SCOPE: DOMAIN LAYER (Messaging)
# Description: Ledger entry kinds, statuses and directions.
# ============================================================================
"""Ledger value objects."""

from enum import Enum


class MessageKind(str, Enum):
    """What a ledger entry records."""

    TEMPLATE = "template"
    REMINDER = "reminder"
    TEXT = "text"
    CONFIRMATION = "confirmation"
    CANCELLATION = "cancellation"
    STATUS = "status"


class MessageStatus(str, Enum):
    """Ledger entry status.

    Outbound sends move through sent/delivered/read or failed/retrying/
    discarded. Inbound intents start as confirmed/cancelled and become
    *_synced once the appointment store agrees.
    """

    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"
    RETRYING = "retrying"
    DISCARDED = "discarded"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    CONFIRMED_SYNCED = "confirmed_synced"
    CANCELLED_SYNCED = "cancelled_synced"
    ERROR = "error"
    RECEIVED = "received"

    @property
    def synced(self) -> "MessageStatus":
        """The *_synced counterpart of an intent status."""
        if self is MessageStatus.CONFIRMED:
            return MessageStatus.CONFIRMED_SYNCED
        if self is MessageStatus.CANCELLED:
            return MessageStatus.CANCELLED_SYNCED
        return self


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    OUTBOUND_ACK = "outbound_ack"
    OUTBOUND_OPERATOR = "outbound_operator"

    @property
    def is_inbound(self) -> bool:
        return self is Direction.INBOUND


SUCCESSFUL_SEND_STATUSES = frozenset({MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.READ})

FAILURE_STATUSES = frozenset({MessageStatus.FAILED, MessageStatus.ERROR})

# A send of this kind already went out or is owned by the retry job
ATTEMPTED_SEND_STATUSES = SUCCESSFUL_SEND_STATUSES | FAILURE_STATUSES | {MessageStatus.RETRYING}

# Reaching one of these clears next_retry_at
TERMINAL_STATUSES = frozenset(
    {
        MessageStatus.SENT,
        MessageStatus.DELIVERED,
        MessageStatus.READ,
        MessageStatus.DISCARDED,
        MessageStatus.CONFIRMED_SYNCED,
        MessageStatus.CANCELLED_SYNCED,
    }
)

# Delivery receipts never move backwards along this order
RECEIPT_RANK = {
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}
