# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Messaging channel port (DIP compliant).
# ============================================================================
"""Messaging Channel Port.

Interface implemented by every outbound provider adapter. Failures are
raised as `ChannelError` subclasses carrying the provider error code.
"""

from typing import Protocol, runtime_checkable

from .response import SendResult


@runtime_checkable
class IMessagingChannel(Protocol):
    """Interface for outbound messaging channels.

    Implementations: WhatsAppCloudChannel, WebBridgeChannel
    """

    name: str

    @property
    def supports_templates(self) -> bool:
        """Whether the channel can deliver pre-approved templates."""
        ...

    async def send_template(
        self,
        phone: str,
        template_name: str,
        language_code: str,
        body_parameters: list[str],
        button_payloads: list[str] | None = None,
    ) -> SendResult:
        """Send a template message.

        Args:
            phone: Recipient phone (any format, digits are extracted).
            template_name: Approved template name.
            language_code: Template locale, e.g. "pt_BR".
            body_parameters: Positional body values.
            button_payloads: Quick-reply payloads, one per button.

        Returns:
            SendResult with the provider message id.

        Raises:
            ChannelError: On provider rejection, transport failure or timeout.
        """
        ...

    async def send_text(self, phone: str, body: str) -> SendResult:
        """Send a free-text message (only delivered inside a session window)."""
        ...

    async def close(self) -> None:
        """Release transport resources."""
        ...
