"""
Test helper functions and factory methods for the SQLite response cache service.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from shared.config import ServiceConfig, get_config


class FakeClock:
    """Controllable replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class CacheDataFactory:
    """Factory for creating test data."""

    @staticmethod
    def create_test_payloads() -> List[Any]:
        """Values of every JSON shape the cache is expected to round-trip."""
        return [
            "plain string",
            42,
            3.5,
            True,
            ["a", 1, None],
            {"id": 1, "name": "John Doe", "roles": ["admin", "user"]},
            {
                "success": True,
                "data": [
                    {"id": 1, "title": "First Post", "userId": 1},
                    {"id": 3, "title": "Third Post", "userId": 1},
                ],
                "meta": {"count": 2, "filters": {"userId": 1}},
            },
        ]

    @staticmethod
    def create_api_response(data: Any = None, **extra) -> Dict[str, Any]:
        """Body shaped like the cached API routes return."""
        body = {"success": True, "data": data if data is not None else {"id": 1}}
        body.update(extra)
        return body


class TestEnvironment:
    """Service configuration for tests."""

    __test__ = False

    @staticmethod
    def get_config(db_path: Optional[Union[str, Path]] = None, **overrides) -> ServiceConfig:
        """Config with no artificial latency and a short reclamation interval."""
        settings: Dict[str, Any] = {
            "env": "test",
            "log_level": "warning",
            "db_path": str(db_path) if db_path is not None else ":memory:",
            "default_ttl": 3600,
            "cleanup_interval_ms": 60000,
            "api_ttl": 600,
            "mock_latency_ms": 0,
        }
        settings.update(overrides)
        return get_config("cache", 3000, **settings)
