# ============================================================================
# SCOPE: DOMAIN LAYER (Messaging)
# Description: Classified purpose of an inbound message.
# ============================================================================
"""Inbound intent."""

from enum import Enum


class Intent(str, Enum):
    """Intent of an inbound reply."""

    CONFIRM = "confirm"
    CANCEL = "cancel"
    NONE = "none"

    @property
    def is_actionable(self) -> bool:
        return self is not Intent.NONE
