"""Messaging domain layer: entities and value objects."""

from .entities import Appointment, ConversationSession, LedgerEntry
from .value_objects import (
    ATTEMPTED_SEND_STATUSES,
    FAILURE_STATUSES,
    SUCCESSFUL_SEND_STATUSES,
    TERMINAL_STATUSES,
    Direction,
    Intent,
    MessageKind,
    MessageStatus,
    phone_key,
    phone_variations,
    pick_first_phone,
)

__all__ = [
    "ATTEMPTED_SEND_STATUSES",
    "Appointment",
    "ConversationSession",
    "Direction",
    "FAILURE_STATUSES",
    "Intent",
    "LedgerEntry",
    "MessageKind",
    "MessageStatus",
    "SUCCESSFUL_SEND_STATUSES",
    "TERMINAL_STATUSES",
    "phone_key",
    "phone_variations",
    "pick_first_phone",
]
