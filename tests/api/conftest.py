"""
API test fixtures: the FastAPI app wired to a container whose ledger, use
cases and schedulers are replaced by mocks.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from clinic_dispatch.core.app_factory import create_app
from clinic_dispatch.core.container import DependencyContainer
from tests.utils.fakes import build_test_container


@pytest.fixture
def container(test_settings) -> DependencyContainer:
    return build_test_container(test_settings)


@pytest.fixture
def mock_ledger(container) -> MagicMock:
    ledger = MagicMock()
    ledger.find_recent = AsyncMock(return_value=[])
    ledger.latest_statuses_for = AsyncMock(return_value={})
    container.get_ledger = MagicMock(return_value=ledger)
    return ledger


@pytest.fixture
def client(test_settings, container) -> TestClient:
    """Client without the lifespan, so no scheduler is started."""
    return TestClient(create_app(settings=test_settings, container=container))
