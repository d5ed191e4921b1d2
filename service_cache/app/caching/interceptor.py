"""
Response caching around a unit of work.

``CacheInterceptor.handle`` wraps a handler coroutine. Handlers never see the
cache: they write their result through a ``ResponseCapture`` (``send`` for a
raw payload, ``json`` for a structured one) and whichever of the two runs
first fires the completion hook exactly once. On a hit the handler is not
called at all.

Caching is best-effort. Any failure while deriving the key, looking it up or
storing the result is logged and the handler's own result is returned.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING
from urllib.parse import urlencode

from shared.logging import get_logger, set_cache_key
from .sqlite_cache import SQLiteCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


CACHE_HIT_HEADER = "X-Cache-Hit"
CACHE_KEY_HEADER = "X-Cache-Key"
DEFAULT_RESPONSE_TTL = 300
CACHEABLE_METHODS = frozenset({"GET"})


@dataclass
class CacheRequest:
    """What the interceptor needs to know about an incoming request."""
    method: str
    path: str
    query: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def full_path(self) -> str:
        if not self.query:
            return self.path
        return f"{self.path}?{urlencode(self.query, doseq=True)}"

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default


def default_key_generator(request: CacheRequest) -> str:
    return f"{request.method.upper()}:{request.full_path}"


def always_cacheable(request: CacheRequest) -> bool:
    return True


@dataclass
class CacheOptions:
    """Per-interceptor caching policy."""
    key_generator: Callable[[CacheRequest], str] = default_key_generator
    ttl: int = DEFAULT_RESPONSE_TTL
    condition: Callable[[CacheRequest], bool] = always_cacheable
    skip_successful: bool = False


CompletionHook = Callable[["ResponseCapture", Any], Awaitable[None]]


class ResponseCapture:
    """Single funnel for a handler's terminal write."""

    def __init__(self, on_complete: Optional[CompletionHook] = None):
        self.status_code = 200
        self.headers: Dict[str, str] = {}
        self.media_type: Optional[str] = None
        self.body: Any = None
        self.finished = False
        self.cache_hit: Optional[bool] = None
        self._on_complete = on_complete

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def status(self, code: int) -> "ResponseCapture":
        self.status_code = code
        return self

    def set_header(self, name: str, value: str) -> "ResponseCapture":
        self.headers[name] = value
        return self

    async def send(self, data: Any) -> "ResponseCapture":
        """Finish with a raw payload; text and bytes are parsed as JSON for caching."""
        await self._finish(data, lambda: _parse_raw(data))
        return self

    async def json(self, data: Any) -> "ResponseCapture":
        """Finish with a structured payload."""
        if self.media_type is None:
            self.media_type = "application/json"
        await self._finish(data, lambda: data)
        return self

    async def _finish(self, body: Any, payload: Callable[[], Any]):
        if self.finished:
            raise RuntimeError("Response already sent")
        self.finished = True
        self.body = body

        # Disarm before running so a hook can never fire twice
        hook, self._on_complete = self._on_complete, None
        if hook is not None:
            await hook(self, payload)


def _parse_raw(data: Any) -> Any:
    if isinstance(data, (bytes, bytearray)):
        return json.loads(data.decode("utf-8"))
    if isinstance(data, str):
        return json.loads(data)
    return data


Handler = Callable[[CacheRequest, ResponseCapture], Awaitable[None]]


class CacheInterceptor:
    """Serve repeated identical requests from a ``SQLiteCache``."""

    def __init__(
        self,
        cache: SQLiteCache,
        options: Optional[CacheOptions] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.cache = cache
        self.options = options or CacheOptions()
        self.metrics = metrics
        self.logger = get_logger("cache.interceptor")

    def _resolve_key(self, request: CacheRequest) -> Optional[str]:
        """Cache key for a candidate request, or ``None`` when it must bypass the cache."""
        if request.method.upper() not in CACHEABLE_METHODS:
            return None

        try:
            if not self.options.condition(request):
                return None
            return self.options.key_generator(request)
        except Exception as exc:
            self.logger.error(
                "Cache key derivation failed",
                method=request.method,
                path=request.path,
                error=str(exc),
            )
            return None

    async def handle(self, request: CacheRequest, handler: Handler) -> ResponseCapture:
        cache_key = self._resolve_key(request)
        if cache_key is None:
            response = ResponseCapture()
            await handler(request, response)
            return response

        set_cache_key(cache_key)
        cached = await self._lookup(cache_key)
        if cached is not None:
            response = ResponseCapture()
            response.cache_hit = True
            response.set_header(CACHE_HIT_HEADER, "true")
            response.set_header(CACHE_KEY_HEADER, cache_key)
            await response.json(cached)
            self.logger.debug("Cache hit", path=request.path)
            return response

        response = ResponseCapture(on_complete=self._store_hook(cache_key))
        response.cache_hit = False
        await handler(request, response)
        return response

    async def _lookup(self, cache_key: str) -> Optional[Any]:
        try:
            cached = await self.cache.get(cache_key)
        except Exception as exc:
            self.logger.error("Cache lookup failed", cache_key=cache_key, error=str(exc))
            return None

        if self.metrics:
            self.metrics.record_cache_lookup(hit=cached is not None)
        return cached

    def _store_hook(self, cache_key: str) -> CompletionHook:
        async def on_complete(response: ResponseCapture, payload: Callable[[], Any]) -> None:
            if self.options.skip_successful or not response.ok:
                return

            try:
                await self.cache.set(cache_key, payload(), self.options.ttl)
            except Exception as exc:
                self.logger.error("Failed to cache response", cache_key=cache_key, error=str(exc))
                if self.metrics:
                    self.metrics.record_cache_store("error")
                return

            response.set_header(CACHE_HIT_HEADER, "false")
            response.set_header(CACHE_KEY_HEADER, cache_key)
            if self.metrics:
                self.metrics.record_cache_store("stored")

        return on_complete
