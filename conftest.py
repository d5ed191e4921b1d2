"""
Shared pytest fixtures for the cache service test suites.
"""

import pytest
import pytest_asyncio

from service_cache.app.caching import SQLiteCache
from shared.test_helpers import FakeClock


@pytest.fixture
def fake_clock():
    """Clock frozen at a fixed instant; advance it explicitly."""
    return FakeClock()


@pytest_asyncio.fixture
async def cache(fake_clock):
    """Initialized in-memory cache driven by the fake clock."""
    engine = SQLiteCache(":memory:", default_ttl=3600, cleanup_interval_ms=60000, clock=fake_clock)
    await engine.init()
    yield engine
    await engine.close()
