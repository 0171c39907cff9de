# ============================================================================
# SCOPE: INFRASTRUCTURE LAYER (Messaging)
# Description: Browser-automation bridge channel (text only).
# ============================================================================
"""
Web Bridge Channel.

Talks to a companion process driving a WhatsApp Web session over HTTP:
`POST {bridge_url}/send` with `{"phone": ..., "message": ...}`. The bridge
cannot deliver templates.
"""

import logging
from typing import Any

import httpx

from ...application.ports import (
    ChannelConfigurationError,
    ChannelError,
    ChannelRejectedError,
    ChannelRetryableError,
    ChannelTimeoutError,
    SendResult,
)
from ...domain import phone_key

logger = logging.getLogger(__name__)


class WebBridgeChannel:
    """Text-only channel backed by the web automation bridge."""

    name = "web"

    def __init__(
        self,
        bridge_url: str,
        token: str | None = None,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._bridge_url = bridge_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._client = client

    @property
    def supports_templates(self) -> bool:
        return False

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send_template(
        self,
        phone: str,
        template_name: str,
        language_code: str,
        body_parameters: list[str],
        button_payloads: list[str] | None = None,
    ) -> SendResult:
        raise ChannelConfigurationError(
            "The web channel cannot send templates",
            code="templates_unsupported",
        )

    async def send_text(self, phone: str, body: str) -> SendResult:
        to = phone_key(phone)
        if not to:
            raise ChannelRejectedError(f"Invalid phone number: {phone!r}", code="invalid_phone")

        client = self._ensure_client()
        try:
            response = await client.post(
                f"{self._bridge_url}/send",
                json={"phone": to, "message": body},
                headers=self.headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise ChannelTimeoutError(f"Timeout after {self._timeout}s talking to the web bridge") from e
        except httpx.TransportError as e:
            raise ChannelRetryableError(f"Web bridge unreachable: {e}", code="network_error") from e

        data = self._json(response)
        if response.status_code >= 500:
            raise ChannelRetryableError(
                data.get("error") or f"Web bridge error {response.status_code}",
                status_code=response.status_code,
                detail=data,
            )
        if not response.is_success or data.get("success") is False:
            raise ChannelRejectedError(
                data.get("error") or f"Web bridge rejected message ({response.status_code})",
                status_code=response.status_code,
                detail=data,
            )

        message_id = data.get("message_id") or data.get("messageId") or data.get("id")
        if not message_id:
            raise ChannelError("Web bridge response without message id", code="invalid_response", detail=data)

        logger.info(f"Web bridge accepted message {message_id} for {to}")
        return SendResult(provider_message_id=str(message_id), phone=to, channel=self.name, raw=data)

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {"raw": response.text[:500]}
        return data if isinstance(data, dict) else {"data": data}
