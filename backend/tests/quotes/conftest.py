"""Fixtures for quote subsystem tests."""

from unittest.mock import AsyncMock

import pytest
from fakes import EventRecorder

from quote_gateway.quotes.credentials import CredentialRefresher
from quote_gateway.quotes.models import Credentials


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(investor_token="t1", investor_id="i1")


@pytest.fixture
def refresher() -> AsyncMock:
    """Refresher that hands out token t2 for the same investor."""
    mock = AsyncMock(spec=CredentialRefresher)
    mock.refresh.return_value = Credentials(investor_token="t2", investor_id="i1")
    return mock
