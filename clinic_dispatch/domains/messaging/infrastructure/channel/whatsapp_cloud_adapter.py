# ============================================================================
# SCOPE: INFRASTRUCTURE LAYER (Messaging)
# Description: WhatsApp Cloud API channel adapter.
#              Structured errors plus one automatic retry for selected codes.
# ============================================================================
"""
WhatsApp Cloud API Channel.

Single Responsibility: Deliver template and text messages through the
Graph API `/{phone_number_id}/messages` endpoint.

Error mapping:
- Timeout: ChannelTimeoutError
- Network failure / 5xx: ChannelRetryableError
- 429 or provider code 130429: ChannelRateLimitError
- 401: ChannelConfigurationError
- Other 4xx: ChannelRejectedError

Provider codes listed in `retry_once_codes` get one immediate extra attempt
(via tenacity) before the error reaches the scheduler's backoff.
"""

import logging
from collections.abc import Iterable
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from ...application.ports import (
    ChannelConfigurationError,
    ChannelError,
    ChannelRateLimitError,
    ChannelRejectedError,
    ChannelRetryableError,
    ChannelTimeoutError,
    SendResult,
)
from ...domain import phone_key

logger = logging.getLogger(__name__)

RATE_LIMIT_PROVIDER_CODES = frozenset({130429})
DEFAULT_RETRY_ONCE_CODES = (131000, 131016)


def build_template_payload(
    to: str,
    template_name: str,
    language_code: str,
    body_parameters: list[str],
    button_payloads: list[str] | None = None,
) -> dict[str, Any]:
    """Template message with positional body parameters and quick-reply payloads."""
    components: list[dict[str, Any]] = []
    if body_parameters:
        components.append(
            {
                "type": "body",
                "parameters": [{"type": "text", "text": str(value)} for value in body_parameters],
            }
        )
    for index, payload in enumerate(button_payloads or []):
        components.append(
            {
                "type": "button",
                "sub_type": "quick_reply",
                "index": str(index),
                "parameters": [{"type": "payload", "payload": payload}],
            }
        )

    template: dict[str, Any] = {"name": template_name, "language": {"code": language_code}}
    if components:
        template["components"] = components

    return {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "template",
        "template": template,
    }


def build_text_payload(to: str, body: str) -> dict[str, Any]:
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
        "type": "text",
        "text": {"preview_url": False, "body": body},
    }


def error_from_response(response: httpx.Response) -> ChannelError:
    """Map a non-2xx provider response to the channel error hierarchy."""
    try:
        body = response.json()
    except ValueError:
        body = {"raw": response.text[:500]}

    error = body.get("error", {}) if isinstance(body, dict) else {}
    provider_code = error.get("code") if isinstance(error.get("code"), int) else None
    message = error.get("message") or f"HTTP {response.status_code}"
    details = (error.get("error_data") or {}).get("details")
    if details:
        message = f"{message}: {details}"

    kwargs = {"provider_code": provider_code, "status_code": response.status_code, "detail": body}
    if response.status_code == 429 or provider_code in RATE_LIMIT_PROVIDER_CODES:
        return ChannelRateLimitError(message, **kwargs)
    if response.status_code >= 500:
        return ChannelRetryableError(message, **kwargs)
    if response.status_code == 401:
        return ChannelConfigurationError(message, code="unauthorized", **kwargs)
    return ChannelRejectedError(message, **kwargs)


class WhatsAppCloudChannel:
    """
    Channel adapter for the WhatsApp Cloud API.

    Uses a persistent AsyncClient (connection reuse); pass `client` to
    inject a preconfigured one.
    """

    name = "business"

    def __init__(
        self,
        base_url: str,
        version: str,
        phone_number_id: str,
        access_token: str,
        timeout: float = 15.0,
        retry_once_codes: Iterable[int] = DEFAULT_RETRY_ONCE_CODES,
        retry_once_wait: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._version = version
        self._phone_number_id = phone_number_id
        self._access_token = access_token
        self._timeout = timeout
        self._retry_once_codes = frozenset(retry_once_codes)
        self._retry_once_wait = retry_once_wait
        self._client = client

    @property
    def supports_templates(self) -> bool:
        return True

    @property
    def message_url(self) -> str:
        return f"{self._base_url}/{self._version}/{self._phone_number_id}/messages"

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def is_retry_once_error(self, error: BaseException) -> bool:
        """Provider codes that deserve one immediate extra attempt."""
        return isinstance(error, ChannelError) and error.provider_code in self._retry_once_codes

    async def send_template(
        self,
        phone: str,
        template_name: str,
        language_code: str,
        body_parameters: list[str],
        button_payloads: list[str] | None = None,
    ) -> SendResult:
        to = self._destination(phone)
        payload = build_template_payload(to, template_name, language_code, body_parameters, button_payloads)
        logger.info(f"Sending template '{template_name}' to {to}")
        return await self._send(payload, to)

    async def send_text(self, phone: str, body: str) -> SendResult:
        to = self._destination(phone)
        logger.info(f"Sending text message to {to}")
        return await self._send(build_text_payload(to, body), to)

    def _destination(self, phone: str) -> str:
        if not self._access_token or not self._phone_number_id:
            raise ChannelConfigurationError(
                "WhatsApp access token or phone number id not configured",
                code="missing_credentials",
            )
        to = phone_key(phone)
        if not to:
            raise ChannelRejectedError(f"Invalid phone number: {phone!r}", code="invalid_phone")
        return to

    async def _send(self, payload: dict[str, Any], to: str) -> SendResult:
        retrying = AsyncRetrying(
            retry=retry_if_exception(self.is_retry_once_error),
            stop=stop_after_attempt(2),
            wait=wait_fixed(self._retry_once_wait),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                data = await self._post(payload)

        messages = data.get("messages") or []
        message_id = messages[0].get("id") if messages else None
        if not message_id:
            raise ChannelError("Provider response without message id", code="invalid_response", detail=data)

        logger.info(f"WhatsApp accepted message {message_id} for {to}")
        return SendResult(provider_message_id=message_id, phone=to, channel=self.name, raw=data)

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        client = self._ensure_client()
        try:
            response = await client.post(self.message_url, json=payload, headers=self.headers, timeout=self._timeout)
        except httpx.TimeoutException as e:
            raise ChannelTimeoutError(f"Timeout after {self._timeout}s connecting to WhatsApp API") from e
        except httpx.TransportError as e:
            raise ChannelRetryableError(f"Connection error with WhatsApp API: {e}", code="network_error") from e

        if response.is_success:
            return response.json() if response.content else {}

        error = error_from_response(response)
        logger.warning(
            f"WhatsApp API error {response.status_code} (code={error.provider_code}): {error.message}"
        )
        raise error
