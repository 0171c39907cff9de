"""
Shared pytest fixtures for all tests.

Repository, use case and scheduler tests run against an in-memory SQLite
database (aiosqlite) holding both the ledger and the appointments table.
"""

import os
from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("ENVIRONMENT", "test")

from clinic_dispatch.config.settings import Settings  # noqa: E402
from clinic_dispatch.database.async_db import build_session_factory  # noqa: E402
from clinic_dispatch.domains.messaging.application.services import (  # noqa: E402
    IntentClassifier,
    SessionWindowCalculator,
    TemplateBuilder,
)
from clinic_dispatch.domains.messaging.infrastructure.persistence import (  # noqa: E402
    SqlAppointmentStore,
    SqlMessageLedger,
)
from clinic_dispatch.models.db import Base  # noqa: E402
from tests.utils.fakes import FakeChannel  # noqa: E402

# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(async_engine)


@pytest_asyncio.fixture
async def ledger(session_factory) -> SqlMessageLedger:
    return SqlMessageLedger(session_factory)


@pytest_asyncio.fixture
async def store(session_factory) -> SqlAppointmentStore:
    return SqlAppointmentStore(session_factory)


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def templates() -> TemplateBuilder:
    return TemplateBuilder(timezone_name="America/Sao_Paulo", contact_phone="(34) 3199-3069")


@pytest.fixture
def classifier() -> IntentClassifier:
    return IntentClassifier.default()


@pytest.fixture
def session_window(ledger) -> SessionWindowCalculator:
    return SessionWindowCalculator(ledger, window=timedelta(hours=24))


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        DATABASE_URL="sqlite+aiosqlite://",
        WHATSAPP_VERIFY_TOKEN="verify-me",
        WHATSAPP_WEBHOOK_SECRET="",
        WHATSAPP_ACCESS_TOKEN="token",
        WHATSAPP_PHONE_NUMBER_ID="123456",
        DISPATCH_SEND_INTERVAL_SECONDS=0,
    )
