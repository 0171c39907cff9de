from .intent import Intent
from .message_kind import (
    ATTEMPTED_SEND_STATUSES,
    FAILURE_STATUSES,
    SUCCESSFUL_SEND_STATUSES,
    TERMINAL_STATUSES,
    Direction,
    MessageKind,
    MessageStatus,
)
from .phone import phone_key, phone_variations, pick_first_phone

__all__ = [
    "ATTEMPTED_SEND_STATUSES",
    "Direction",
    "FAILURE_STATUSES",
    "Intent",
    "MessageKind",
    "MessageStatus",
    "SUCCESSFUL_SEND_STATUSES",
    "TERMINAL_STATUSES",
    "phone_key",
    "phone_variations",
    "pick_first_phone",
]
