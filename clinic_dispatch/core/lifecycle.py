"""
Application lifecycle management using the FastAPI lifespan pattern.

Starts the enabled schedulers on startup; stops them and closes the
channel on shutdown.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from clinic_dispatch.core.container import DependencyContainer

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Starts the periodic jobs with the app and releases the channel on the way out."""

    def __init__(self, container: DependencyContainer) -> None:
        self._container = container
        self._initialized = False

    async def startup(self) -> None:
        if self._initialized:
            logger.warning("Startup already ran, schedulers are live")
            return

        logger.info("Checking channel and webhook posture before starting schedulers")
        self._verify_configurations()

        for scheduler in self._container.get_schedulers().values():
            try:
                await scheduler.start()
            except Exception as e:
                logger.error(f"Failed to start {scheduler.name} scheduler: {e}", exc_info=True)

        self._initialized = True
        logger.info(f"Startup completed, jobs enabled: {self._enabled_jobs() or 'none'}")

    async def shutdown(self) -> None:
        if not self._initialized:
            logger.warning("Startup never ran, nothing to stop")
            return

        logger.info("Stopping schedulers and closing the messaging channel")
        for scheduler in self._container.get_schedulers().values():
            await scheduler.stop()
        await self._container.close()

        self._initialized = False
        logger.info("Shutdown completed")

    def _enabled_jobs(self) -> str:
        return ", ".join(name for name, s in self._container.get_schedulers().items() if s.enabled)

    def _verify_configurations(self) -> None:
        """Log configuration that changes runtime behavior."""
        settings = self._container.settings
        channel = self._container.get_channel()
        logger.info(f"Messaging channel: {channel.name} (templates={'yes' if channel.supports_templates else 'no'})")

        verifier = self._container.get_signature_verifier()
        if not settings.webhook_secret_configured:
            logger.warning(f"Webhook signature mode is '{verifier.mode.value}': payloads are not authenticated")

        if settings.MESSAGING_CHANNEL == "web" and settings.DISPATCH_ENABLED:
            logger.warning("Dispatch is enabled on the web channel, which cannot send templates")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Uses the container stored on `app.state` by the application factory.
    """
    manager = LifecycleManager(app.state.container)
    await manager.startup()
    try:
        yield
    finally:
        await manager.shutdown()
