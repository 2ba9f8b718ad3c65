"""Monitoring layer test fixtures."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from coin_trader.monitoring.alerting import DiscordNotifier


@pytest.fixture
def mock_http():
    """Mock for the requests module; post() returns a successful response."""
    http = MagicMock()
    http.post.return_value = MagicMock(status_code=204)
    return http


@pytest.fixture
def notifier(mock_http):
    return DiscordNotifier(
        webhook_url="https://discord.test/api/webhooks/1/abc",
        _http=mock_http,
    )


@pytest.fixture
def mock_db():
    """Mock database for unit tests."""
    db = MagicMock()
    db.execute = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    return db
