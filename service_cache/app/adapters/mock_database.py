"""
In-process sample data with artificial query latency.
"""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from shared.logging import get_logger


USERS: List[Dict[str, Any]] = [
    {"id": 1, "name": "John Doe", "email": "john@example.com", "role": "admin"},
    {"id": 2, "name": "Jane Smith", "email": "jane@example.com", "role": "user"},
    {"id": 3, "name": "Bob Johnson", "email": "bob@example.com", "role": "user"},
]

POSTS: List[Dict[str, Any]] = [
    {"id": 1, "title": "First Post", "content": "This is the first post", "userId": 1},
    {"id": 2, "title": "Second Post", "content": "This is the second post", "userId": 2},
    {"id": 3, "title": "Third Post", "content": "This is the third post", "userId": 1},
]

# fibonacci(40)
FIBONACCI_40 = 102334155


class MockDatabase:
    """Slow read-only queries over fixed users and posts."""

    def __init__(self, latency_ms: int = 500):
        self.latency_ms = latency_ms
        self.logger = get_logger("cache.mock_database")
        self.query_count = 0

    async def _query(self, data: Any, weight: float = 1.0) -> Any:
        self.query_count += 1
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms * weight / 1000)
        return copy.deepcopy(data)

    async def list_users(self) -> List[Dict[str, Any]]:
        self.logger.info("Fetching users from database")
        return await self._query(USERS)

    async def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        self.logger.info("Fetching user from database", user_id=user_id)
        user = next((u for u in USERS if u["id"] == user_id), None)
        if user is None:
            return None
        return await self._query(user, weight=0.6)

    async def list_posts(self, user_id: Optional[int] = None, limit: int = 10) -> List[Dict[str, Any]]:
        self.logger.info("Fetching posts from database", user_id=user_id, limit=limit)
        posts = POSTS
        if user_id is not None:
            posts = [p for p in posts if p["userId"] == user_id]
        return await self._query(posts[:max(limit, 0)], weight=0.8)

    async def expensive_computation(self) -> Dict[str, Any]:
        self.logger.info("Performing expensive computation")
        result = await self._query(
            {"computation": "fibonacci", "input": 40, "result": FIBONACCI_40},
            weight=4.2,
        )
        result["computed_at"] = datetime.now(timezone.utc).isoformat()
        return result
