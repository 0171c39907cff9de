"""
FastAPI application factory.

Builds the app, attaches the dependency container to `app.state` and
configures middleware, exception handlers and routes.
"""

import logging
from typing import Any

from fastapi import FastAPI

from clinic_dispatch.api.exception_handlers import register_exception_handlers
from clinic_dispatch.api.middleware.logging_middleware import RequestLoggingMiddleware
from clinic_dispatch.api.router import api_router
from clinic_dispatch.config.settings import Settings, get_settings
from clinic_dispatch.core.container import DependencyContainer, get_container
from clinic_dispatch.core.lifecycle import lifespan

logger = logging.getLogger(__name__)


class AppFactory:
    """Assembles the API around one DependencyContainer (injected in tests)."""

    def __init__(self, settings: Settings | None = None, container: DependencyContainer | None = None) -> None:
        self._container = container
        self._settings = settings or (container.settings if container else get_settings())

    def create_app(self) -> FastAPI:
        app = self._create_base_app()
        app.state.container = self._container or get_container()

        self._configure_middleware(app)
        self._configure_exception_handlers(app)
        self._configure_routes(app)
        self._configure_health_endpoint(app)

        logger.info(f"{self._settings.PROJECT_NAME} API created under {self._settings.API_V1_STR}")
        return app

    def _create_base_app(self) -> FastAPI:
        return FastAPI(
            title=self._settings.PROJECT_NAME,
            description=self._settings.PROJECT_DESCRIPTION,
            version=self._settings.VERSION,
            docs_url=f"{self._settings.API_V1_STR}/docs" if self._settings.DEBUG else None,
            redoc_url=f"{self._settings.API_V1_STR}/redoc" if self._settings.DEBUG else None,
            lifespan=lifespan,
        )

    def _configure_middleware(self, app: FastAPI) -> None:
        app.add_middleware(RequestLoggingMiddleware)

    def _configure_exception_handlers(self, app: FastAPI) -> None:
        register_exception_handlers(app)

    def _configure_routes(self, app: FastAPI) -> None:
        app.include_router(api_router, prefix=self._settings.API_V1_STR)

    def _configure_health_endpoint(self, app: FastAPI) -> None:
        """Liveness plus the posture an operator checks first: channel, signature mode, jobs."""

        @app.get("/health", tags=["health"])
        async def health_check() -> dict[str, Any]:
            container: DependencyContainer = app.state.container
            channel = container.get_channel()
            return {
                "status": "ok",
                "environment": self._settings.ENVIRONMENT,
                "channel": channel.name,
                "templates_supported": channel.supports_templates,
                "signature_mode": container.get_signature_verifier().mode.value,
                "schedulers": {
                    name: {"enabled": scheduler.enabled, "state": scheduler.state.value}
                    for name, scheduler in container.get_schedulers().items()
                },
            }


def create_app(settings: Settings | None = None, container: DependencyContainer | None = None) -> FastAPI:
    """Build the app; tests pass settings and a container wired with fakes."""
    return AppFactory(settings, container).create_app()
