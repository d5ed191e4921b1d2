"""
Unit tests for the cache service HTTP surface.
"""

import pytest
from fastapi.testclient import TestClient

from service_cache.app.main import CacheService, api_key_generator, allows_cached_response, create_app
from service_cache.app.caching import CacheRequest
from shared.test_helpers import FakeClock, TestEnvironment


class TestKeyPolicy:
    """Test cases for the API cache key and bypass rule."""

    def test_key_includes_sorted_query(self):
        request = CacheRequest("get", "/api/posts", query={"userId": "1", "limit": "5"})
        assert api_key_generator(request) == 'api:GET:/api/posts:{"limit":"5","userId":"1"}'

    def test_key_without_query(self):
        assert api_key_generator(CacheRequest("GET", "/api/users")) == "api:GET:/api/users:{}"

    def test_no_cache_header_disables_caching(self):
        assert allows_cached_response(CacheRequest("GET", "/api/users")) is True
        assert allows_cached_response(
            CacheRequest("GET", "/api/users", headers={"cache-control": "No-Cache"})
        ) is False


class TestCacheService:
    """Test cases for CacheService."""

    @pytest.fixture
    def app(self):
        """Create FastAPI app instance."""
        return create_app(TestEnvironment.get_config())

    @pytest.fixture
    def service(self, app) -> CacheService:
        return app.state.cache_service

    @pytest.fixture
    def client(self, app):
        """Create test client with lifespan events."""
        with TestClient(app) as client:
            yield client

    def test_health_endpoint(self, client):
        """Test health endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "cache"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"cache": "connected"}

    def test_health_degraded_when_reclamation_fails(self, client, service):
        """Test that failing cleanup cycles are surfaced without taking the cache down."""
        service.cache.consecutive_cleanup_failures = 2

        data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["dependencies"] == {"cache": "connected", "cache_cleanup": "failing"}

    def test_health_before_startup(self, app):
        """Without lifespan startup the engine is reported as disconnected."""
        data = TestClient(app).get("/health").json()
        assert data["status"] == "degraded"
        assert data["dependencies"]["cache"] == "disconnected"

    def test_metrics_endpoint(self, client):
        """Test Prometheus metrics exposition."""
        client.get("/api/users")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "cache_misses_total" in response.text

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_users_miss_then_hit(self, client, service):
        """Second identical request is served without touching the database."""
        first = client.get("/api/users")
        second = client.get("/api/users")

        assert first.status_code == 200
        assert first.headers["X-Cache-Hit"] == "false"
        assert first.headers["X-Cache-Key"] == "api:GET:/api/users:{}"
        assert second.status_code == 200
        assert second.headers["X-Cache-Hit"] == "true"
        assert second.json() == first.json()
        assert len(second.json()["data"]) == 3
        assert service.database.query_count == 1

    def test_query_parameters_are_part_of_the_key(self, client, service):
        """Test that different queries are cached separately."""
        by_user = client.get("/api/posts", params={"userId": 1, "limit": 5})
        all_posts = client.get("/api/posts")

        assert by_user.headers["X-Cache-Hit"] == "false"
        assert all_posts.headers["X-Cache-Hit"] == "false"
        assert by_user.json()["count"] == 2
        assert all_posts.json()["count"] == 3

        again = client.get("/api/posts", params={"limit": 5, "userId": 1})
        assert again.headers["X-Cache-Hit"] == "true"
        assert service.database.query_count == 2

    def test_repeated_query_parameters_are_not_collapsed(self, client, service):
        """?limit=1&limit=2 and ?limit=2 are cached under different keys."""
        repeated = client.get("/api/posts?limit=1&limit=2")
        single = client.get("/api/posts?limit=2")

        assert repeated.headers["X-Cache-Key"] == 'api:GET:/api/posts:{"limit":["1","2"]}'
        assert single.headers["X-Cache-Key"] == 'api:GET:/api/posts:{"limit":"2"}'
        assert single.headers["X-Cache-Hit"] == "false"
        assert service.database.query_count == 2

    def test_no_cache_header_bypasses_cache(self, client, service):
        """Test Cache-Control: no-cache."""
        client.get("/api/users")
        response = client.get("/api/users", headers={"Cache-Control": "no-cache"})

        assert response.status_code == 200
        assert "X-Cache-Hit" not in response.headers
        assert service.database.query_count == 2

    def test_unknown_user_is_not_cached(self, client, service):
        """Failed results are forwarded and never stored."""
        first = client.get("/api/users/999")
        second = client.get("/api/users/999")

        assert first.status_code == 404
        assert first.json() == {"error": "User not found"}
        assert "X-Cache-Hit" not in first.headers
        assert second.status_code == 404
        assert "X-Cache-Hit" not in second.headers

        stats = client.get("/api/cache/stats").json()["data"]
        assert stats["total"] == 0

    def test_get_user(self, client):
        response = client.get("/api/users/2")
        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Jane Smith"

    def test_expensive_route_is_cached(self, client, service):
        first = client.get("/api/expensive").json()
        second = client.get("/api/expensive").json()

        assert first["data"]["result"] == 102334155
        assert second["data"]["computed_at"] == first["data"]["computed_at"]
        assert service.database.query_count == 1

    def test_management_routes_are_never_cached(self, client):
        client.get("/api/cache/stats")
        response = client.get("/api/cache/stats")
        assert "X-Cache-Hit" not in response.headers

    def test_stats_reflect_cached_responses(self, client):
        client.get("/api/users")
        client.get("/api/users")

        response = client.get("/api/cache/stats")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 1
        assert data["active"] == 1
        assert data["expired"] == 0
        assert data["total_hits"] == 2
        assert data["hit_rate"] == 2.0

    def test_entries_listing(self, client):
        client.get("/api/users")
        client.get("/api/users/1")

        response = client.get("/api/cache/entries", params={"limit": 1})
        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["data"][0]["key"] in ("api:GET:/api/users:{}", "api:GET:/api/users/1:{}")
        assert body["data"][0]["hit_count"] == 1

    def test_entries_rejects_bad_limit(self, client):
        assert client.get("/api/cache/entries", params={"limit": 0}).status_code == 422

    def test_set_get_delete_entry(self, client):
        """Test the manual key lifecycle."""
        created = client.post("/api/cache/user:1/profile", json={"value": {"plan": "pro"}, "ttl": 60})
        assert created.status_code == 200
        assert created.json() == {
            "success": True,
            "message": "Cache entry set successfully",
            "key": "user:1/profile",
        }

        fetched = client.get("/api/cache/user:1/profile")
        assert fetched.status_code == 200
        assert fetched.json()["data"] == {"key": "user:1/profile", "value": {"plan": "pro"}, "exists": True}

        deleted = client.delete("/api/cache/user:1/profile")
        assert deleted.json() == {"success": True, "deleted": True, "key": "user:1/profile"}
        assert client.delete("/api/cache/user:1/profile").json()["deleted"] is False

    def test_get_missing_key(self, client):
        response = client.get("/api/cache/nope")
        assert response.status_code == 404
        data = response.json()
        assert data["code"] == "NOT_FOUND"
        assert data["message"] == "Cache key not found"
        assert data["details"] == {"key": "nope"}

    def test_set_requires_value(self, client):
        response = client.post("/api/cache/some-key", json={"ttl": 60})
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_set_rejects_invalid_ttl(self, client):
        response = client.post("/api/cache/some-key", json={"value": 1, "ttl": -1})
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_cleanup_route_removes_expired_entries(self, client, service):
        clock = FakeClock()
        service.cache._clock = clock
        client.post("/api/cache/short", json={"value": "soon gone", "ttl": 5})
        client.post("/api/cache/long", json={"value": "still here", "ttl": 500})
        clock.advance(10)

        response = client.post("/api/cache/cleanup")
        assert response.json() == {
            "success": True,
            "removed": 1,
            "message": "Removed 1 expired entries",
        }
        assert client.get("/api/cache/long").json()["data"]["value"] == "still here"

    def test_clear_all_entries(self, client):
        client.get("/api/users")
        client.post("/api/cache/manual", json={"value": True})

        response = client.delete("/api/cache")
        assert response.json() == {"success": True, "message": "All cache entries cleared"}
        assert client.get("/api/cache/stats").json()["data"]["total"] == 0
        assert client.get("/api/users").headers["X-Cache-Hit"] == "false"
