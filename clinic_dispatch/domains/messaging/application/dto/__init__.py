from .messaging_dtos import (
    InboundMessage,
    OperatorReplyRequest,
    StatusUpdate,
    UseCaseResult,
    WebhookOutcome,
)

__all__ = [
    "InboundMessage",
    "OperatorReplyRequest",
    "StatusUpdate",
    "UseCaseResult",
    "WebhookOutcome",
]
