# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Exception hierarchy raised by messaging channels.
# ============================================================================
"""
Channel Exceptions.

Single Responsibility: Define the structured failures of a provider call.

- ChannelTimeoutError, ChannelRetryableError, ChannelRateLimitError:
  transient, eligible for backoff retry.
- ChannelRejectedError, ChannelConfigurationError: permanent, surfaced to
  operators and never retried automatically.
"""

import json
from typing import Any


class ChannelError(Exception):
    """Error sending a message through a channel."""

    retryable = False
    default_code = "channel_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        provider_code: int | None = None,
        status_code: int | None = None,
        detail: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.provider_code = provider_code
        self.status_code = status_code
        self.detail = detail

    def to_detail(self) -> str:
        """Compact JSON stored in the ledger's error_detail."""
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.provider_code is not None:
            payload["provider_code"] = self.provider_code
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        if self.detail is not None:
            payload["detail"] = self.detail
        return json.dumps(payload, ensure_ascii=False, default=str)


class ChannelRetryableError(ChannelError):
    """
    Transient provider failure (5xx, network error).
    """

    retryable = True
    default_code = "provider_unavailable"


class ChannelTimeoutError(ChannelRetryableError):
    """The provider call exceeded its timeout. Handled like a transient failure."""

    default_code = "timeout"


class ChannelRateLimitError(ChannelRetryableError):
    """
    Rate limiting (HTTP 429 or provider throttling code).
    """

    default_code = "rate_limited"


class ChannelRejectedError(ChannelError):
    """Permanent rejection: invalid template, invalid number, policy violation."""

    default_code = "rejected"


class ChannelConfigurationError(ChannelError):
    """Channel cannot perform the operation as configured."""

    default_code = "misconfigured"
