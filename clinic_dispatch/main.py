"""
Service entry point: `uvicorn clinic_dispatch.main:app`.

Schedulers start with the app lifespan; set DISPATCH_ENABLED,
REMINDER_ENABLED and RETRY_ENABLED on exactly one instance.
"""

import logging

import sentry_sdk

from clinic_dispatch.config.settings import get_settings
from clinic_dispatch.core.app_factory import create_app

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
# One line per provider call and per job tick is enough
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("apscheduler.executors.default").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)
settings = get_settings()

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release=f"clinic-dispatch@{settings.VERSION}",
        # Payloads carry patient names and phone numbers
        send_default_pii=False,
    )

app = create_app(settings)

if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting {settings.PROJECT_NAME} ({settings.ENVIRONMENT}, channel={settings.MESSAGING_CHANNEL})")
    uvicorn.run(
        "clinic_dispatch.main:app",
        host="0.0.0.0",
        port=8001,
        reload=settings.DEBUG,
    )
