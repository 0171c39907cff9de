# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Data Transfer Objects for messaging operations.
# ============================================================================
"""Messaging DTOs.

Flattened inbound events produced from provider webhook envelopes, plus
request/result objects for the use cases.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# =============================================================================
# Request DTOs
# =============================================================================


@dataclass(frozen=True)
class InboundMessage:
    """One inbound message extracted from a webhook envelope."""

    provider_message_id: str
    from_phone: str
    message_type: str
    text: str | None = None
    button_text: str | None = None
    button_payload: str | None = None
    interactive_id: str | None = None
    interactive_title: str | None = None
    context_id: str | None = None
    timestamp: datetime | None = None

    @property
    def display_text(self) -> str | None:
        """Human readable content, used as the ledger body."""
        return self.text or self.button_text or self.interactive_title or self.button_payload or self.interactive_id


@dataclass(frozen=True)
class StatusUpdate:
    """Delivery receipt for an outbound message."""

    provider_message_id: str
    status: str
    recipient: str | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class OperatorReplyRequest:
    """Free-text reply typed by an operator."""

    phone_key: str
    body: str


# =============================================================================
# Result DTOs
# =============================================================================


@dataclass
class UseCaseResult:
    """Generic result for use case operations."""

    success: bool
    data: Any | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "UseCaseResult":
        """Create successful result."""
        return cls(success=True, data=data)

    @classmethod
    def error(cls, code: str, message: str) -> "UseCaseResult":
        """Create error result."""
        return cls(success=False, error_code=code, error_message=message)


@dataclass
class WebhookOutcome:
    """What happened to one inbound message."""

    provider_message_id: str
    intent: str
    action: str
    appointment_id: int | None = None
    resolved_by: str | None = None
    acknowledged: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_message_id": self.provider_message_id,
            "intent": self.intent,
            "action": self.action,
            "appointment_id": self.appointment_id,
            "resolved_by": self.resolved_by,
            "acknowledged": self.acknowledged,
            "error": self.error,
        }
