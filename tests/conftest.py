"""
Shared test fixtures for LendMatch.

Provides the in-memory repository, builder factories, a Redis mock,
a notifier mock, and an async API test client.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tests.fakes import (
    ETH,
    ETH_WEI,
    USDC,
    FakeLoanRepository,
    make_application as _make_application,
    make_fee_config as _make_fee_config,
    make_offer as _make_offer,
)


# --- Builders ---

@pytest.fixture
def make_application():
    """Factory fixture for MatchableApplication instances."""
    return _make_application


@pytest.fixture
def make_offer():
    """Factory fixture for AvailableOffer instances."""
    return _make_offer


@pytest.fixture
def make_fee_config():
    """Factory fixture for PlatformFeeConfig instances."""
    return _make_fee_config


# --- In-memory repository ---

@pytest.fixture
def fake_repo():
    """In-memory repository with an ETH/USDC bid of 2000 and a fee config."""
    repo = FakeLoanRepository()
    repo.add_rate(ETH, USDC, 2000 * ETH_WEI)
    repo.fee_config = _make_fee_config()
    return repo


# --- Mock Redis ---

@pytest.fixture
def mock_redis():
    """AsyncMock Redis client with an empty cache."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.setex = AsyncMock()
    redis.delete = AsyncMock()
    return redis


@pytest.fixture
def mock_notifier():
    """Stand-in for the notification Celery task."""
    notifier = MagicMock()
    notifier.delay = MagicMock()
    return notifier


# --- API client ---

@pytest_asyncio.fixture
async def client():
    """Async HTTP test client against the FastAPI app."""
    from lendmatch.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
