# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Use case exports.
# ============================================================================
"""Messaging use cases."""

from .list_conversations import ListConversationsUseCase
from .process_webhook import ProcessWebhookUseCase, parse_envelope
from .send_operator_reply import SendOperatorReplyUseCase

__all__ = [
    "ListConversationsUseCase",
    "ProcessWebhookUseCase",
    "SendOperatorReplyUseCase",
    "parse_envelope",
]
