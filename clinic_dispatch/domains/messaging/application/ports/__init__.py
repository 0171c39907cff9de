# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Ports (interfaces) for external systems.
# ============================================================================
"""Messaging Application Ports.

- IMessageLedger: durable delivery/intent ledger
- IAppointmentStore: authoritative appointment state
- IMessagingChannel: outbound provider adapter
"""

from .appointment_store_port import IAppointmentStore
from .channel_errors import (
    ChannelConfigurationError,
    ChannelError,
    ChannelRateLimitError,
    ChannelRejectedError,
    ChannelRetryableError,
    ChannelTimeoutError,
)
from .channel_port import IMessagingChannel
from .ledger_port import IMessageLedger, LedgerWrite
from .response import SendResult

__all__ = [
    "ChannelConfigurationError",
    "ChannelError",
    "ChannelRateLimitError",
    "ChannelRejectedError",
    "ChannelRetryableError",
    "ChannelTimeoutError",
    "IAppointmentStore",
    "IMessageLedger",
    "IMessagingChannel",
    "LedgerWrite",
    "SendResult",
]
