"""
Response cache service.

Runs a small read-only API whose responses are cached in SQLite, plus the
operator routes used to inspect and manage the cache.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Body, Query
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import NotFoundError, ValidationError
from service_cache.app.adapters import MockDatabase
from service_cache.app.caching import (
    CacheInterceptor,
    CacheOptions,
    CacheRequest,
    ResponseCacheMiddleware,
    SQLiteCache,
)


SERVICE_NAME = "cache"
SERVICE_PORT = 3000
API_PREFIX = "/api/"
MANAGEMENT_PREFIX = "/api/cache"


def api_key_generator(request: CacheRequest) -> str:
    """Key API responses by method, path and the canonical query string."""
    query = json.dumps(request.query, sort_keys=True, separators=(",", ":"))
    return f"api:{request.method.upper()}:{request.path}:{query}"


def allows_cached_response(request: CacheRequest) -> bool:
    cache_control = request.header("cache-control") or ""
    return "no-cache" not in cache_control.lower()


class CacheService(BaseService):
    """SQLite response cache service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config)
        self._setup_api_routes()
        self._setup_management_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.cache_service = self

    def _setup_components(self):
        self.cache = SQLiteCache(
            self.config.db_path,
            default_ttl=self.config.default_ttl,
            cleanup_interval_ms=self.config.cleanup_interval_ms,
            metrics=self.metrics,
        )
        self.interceptor = CacheInterceptor(
            self.cache,
            CacheOptions(
                key_generator=api_key_generator,
                ttl=self.config.api_ttl,
                condition=allows_cached_response,
            ),
            metrics=self.metrics,
        )
        self.database = MockDatabase(latency_ms=self.config.mock_latency_ms)

    def _setup_service_middleware(self):
        self.app.add_middleware(
            ResponseCacheMiddleware,
            interceptor=self.interceptor,
            include_prefixes=(API_PREFIX,),
            exclude_prefixes=(MANAGEMENT_PREFIX,),
        )

    async def on_startup(self):
        await self.cache.init()

    async def on_shutdown(self):
        await self.cache.close()

    async def _check_dependencies(self) -> Dict[str, Any]:
        dependencies = {"cache": "connected" if self.cache.is_initialized else "disconnected"}
        if self.cache.consecutive_cleanup_failures:
            dependencies["cache_cleanup"] = "failing"
        return dependencies

    def _setup_api_routes(self):
        """Read-only routes served through the response cache."""

        @self.app.get("/api/users")
        async def list_users():
            users = await self.database.list_users()
            return {"success": True, "data": users, "timestamp": _utc_now()}

        @self.app.get("/api/users/{user_id}")
        async def get_user(user_id: int):
            user = await self.database.get_user(user_id)
            if user is None:
                return JSONResponse(status_code=404, content={"error": "User not found"})
            return {"success": True, "data": user, "timestamp": _utc_now()}

        @self.app.get("/api/posts")
        async def list_posts(
            user_id: Optional[int] = Query(None, alias="userId"),
            limit: int = Query(10, ge=0),
        ):
            posts = await self.database.list_posts(user_id=user_id, limit=limit)
            return {"success": True, "data": posts, "count": len(posts), "timestamp": _utc_now()}

        @self.app.get("/api/expensive")
        async def expensive():
            result = await self.database.expensive_computation()
            return {"success": True, "data": result}

    def _setup_management_routes(self):
        """Operator routes; never cached."""

        @self.app.get("/api/cache/stats")
        async def cache_stats():
            stats = await self.cache.stats()
            self.metrics.update_entry_gauges(stats)
            return {"success": True, "data": stats}

        @self.app.get("/api/cache/entries")
        async def cache_entries(limit: int = Query(50, gt=0)):
            entries = await self.cache.list_entries(limit)
            return {
                "success": True,
                "data": [entry.to_dict() for entry in entries],
                "count": len(entries),
            }

        @self.app.post("/api/cache/cleanup")
        async def cache_cleanup():
            cleaned = await self.cache.cleanup()
            return {
                "success": True,
                "removed": cleaned,
                "message": f"Removed {cleaned} expired entries",
            }

        @self.app.delete("/api/cache")
        async def cache_clear():
            await self.cache.clear()
            return {"success": True, "message": "All cache entries cleared"}

        @self.app.get("/api/cache/{key:path}")
        async def cache_get(key: str):
            value = await self.cache.get(key)
            if value is None:
                raise NotFoundError(details={"key": key})
            return {"success": True, "data": {"key": key, "value": value, "exists": True}}

        @self.app.post("/api/cache/{key:path}")
        async def cache_set(key: str, payload: Dict[str, Any] = Body(...)):
            if "value" not in payload:
                raise ValidationError("Value is required", {"key": key})
            await self.cache.set(key, payload["value"], payload.get("ttl"))
            return {"success": True, "message": "Cache entry set successfully", "key": key}

        @self.app.delete("/api/cache/{key:path}")
        async def cache_delete(key: str):
            deleted = await self.cache.delete(key)
            return {"success": True, "deleted": deleted, "key": key}


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = CacheService(config)
    return service.app


if __name__ == "__main__":
    service = CacheService()
    service.run()
