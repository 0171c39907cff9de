"""Channel selection, resolved once per process."""

import logging

import httpx

from clinic_dispatch.config.settings import Settings

from ...application.ports import IMessagingChannel
from .web_bridge_adapter import WebBridgeChannel
from .whatsapp_cloud_adapter import WhatsAppCloudChannel

logger = logging.getLogger(__name__)


def create_channel(settings: Settings, client: httpx.AsyncClient | None = None) -> IMessagingChannel:
    """Build the adapter named by MESSAGING_CHANNEL."""
    if settings.MESSAGING_CHANNEL == "web":
        logger.info(f"Messaging channel: web bridge at {settings.WEB_BRIDGE_URL}")
        return WebBridgeChannel(
            bridge_url=settings.WEB_BRIDGE_URL,
            token=settings.WEB_BRIDGE_TOKEN,
            timeout=settings.CHANNEL_TIMEOUT_SECONDS,
            client=client,
        )

    if not settings.WHATSAPP_ACCESS_TOKEN or not settings.WHATSAPP_PHONE_NUMBER_ID:
        logger.warning("WhatsApp Cloud API credentials missing; sends will fail with missing_credentials")

    logger.info(f"Messaging channel: WhatsApp Cloud API {settings.WHATSAPP_API_VERSION}")
    return WhatsAppCloudChannel(
        base_url=settings.WHATSAPP_API_BASE,
        version=settings.WHATSAPP_API_VERSION,
        phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
        access_token=settings.WHATSAPP_ACCESS_TOKEN,
        timeout=settings.CHANNEL_TIMEOUT_SECONDS,
        retry_once_codes=settings.CHANNEL_RETRY_ONCE_CODES,
        client=client,
    )
