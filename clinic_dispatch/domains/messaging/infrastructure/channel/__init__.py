"""Outbound messaging channels."""

from ...application.ports.channel_errors import (
    ChannelConfigurationError,
    ChannelError,
    ChannelRateLimitError,
    ChannelRejectedError,
    ChannelRetryableError,
    ChannelTimeoutError,
)
from .factory import create_channel
from .web_bridge_adapter import WebBridgeChannel
from .whatsapp_cloud_adapter import WhatsAppCloudChannel, build_template_payload, build_text_payload

__all__ = [
    "ChannelConfigurationError",
    "ChannelError",
    "ChannelRateLimitError",
    "ChannelRejectedError",
    "ChannelRetryableError",
    "ChannelTimeoutError",
    "WebBridgeChannel",
    "WhatsAppCloudChannel",
    "build_template_payload",
    "build_text_payload",
    "create_channel",
]
