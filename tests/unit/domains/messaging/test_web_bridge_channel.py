"""
Tests for the web bridge channel.
"""

import json

import httpx
import pytest

from clinic_dispatch.domains.messaging.application.ports import (
    ChannelConfigurationError,
    ChannelRejectedError,
    ChannelRetryableError,
)
from clinic_dispatch.domains.messaging.infrastructure.channel import WebBridgeChannel


def _channel(handler, token: str | None = "bridge-token") -> WebBridgeChannel:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebBridgeChannel(bridge_url="http://bridge.test/", token=token, client=client)


@pytest.mark.unit
@pytest.mark.asyncio
class TestWebBridgeChannel:
    async def test_templates_unsupported(self):
        channel = _channel(lambda request: httpx.Response(200))

        assert channel.supports_templates is False
        with pytest.raises(ChannelConfigurationError) as exc_info:
            await channel.send_template("5511999990000", "confirmacao_personalizada", "pt_BR", [])

        assert exc_info.value.code == "templates_unsupported"

    async def test_send_text(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"success": True, "messageId": "true_5511999990000@c.us_3EB0"})

        channel = _channel(handler)

        result = await channel.send_text("+55 11 99999-0000", "Olá")

        assert result.provider_message_id == "true_5511999990000@c.us_3EB0"
        assert result.channel == "web"
        [request] = requests
        assert str(request.url) == "http://bridge.test/send"
        assert request.headers["Authorization"] == "Bearer bridge-token"
        assert json.loads(request.content) == {"phone": "5511999990000", "message": "Olá"}

    async def test_no_token_sends_no_authorization(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"message_id": "m1"})

        await _channel(handler, token=None).send_text("5511999990000", "Olá")

        assert "Authorization" not in requests[0].headers

    async def test_bridge_failure_is_retryable(self):
        channel = _channel(lambda request: httpx.Response(502, json={"error": "browser not ready"}))

        with pytest.raises(ChannelRetryableError) as exc_info:
            await channel.send_text("5511999990000", "Olá")

        assert exc_info.value.message == "browser not ready"

    async def test_unsuccessful_body_is_rejected(self):
        channel = _channel(
            lambda request: httpx.Response(200, json={"success": False, "error": "number not on WhatsApp"})
        )

        with pytest.raises(ChannelRejectedError):
            await channel.send_text("5511999990000", "Olá")
