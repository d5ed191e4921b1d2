"""
Starlette adapter for ``CacheInterceptor``.
"""

from typing import Any, Dict, Iterable, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from shared.logging import set_cache_key
from .interceptor import CacheInterceptor, CacheRequest, ResponseCapture

# Recomputed by Starlette for the rebuilt response
_DROPPED_HEADERS = {"content-length"}


def _group_query(request: Request) -> Dict[str, Any]:
    """Query parameters with repeated names collected into lists."""
    grouped: Dict[str, Any] = {}
    for name, value in request.query_params.multi_items():
        if name not in grouped:
            grouped[name] = value
        elif isinstance(grouped[name], list):
            grouped[name].append(value)
        else:
            grouped[name] = [grouped[name], value]
    return grouped


def build_cache_request(request: Request) -> CacheRequest:
    return CacheRequest(
        method=request.method,
        path=request.url.path,
        query=_group_query(request),
        headers=dict(request.headers),
    )


def to_starlette_response(capture: ResponseCapture) -> Response:
    if isinstance(capture.body, (bytes, bytearray, str)):
        return Response(
            content=capture.body,
            status_code=capture.status_code,
            headers=capture.headers,
            media_type=capture.media_type,
        )
    return JSONResponse(
        content=capture.body,
        status_code=capture.status_code,
        headers=capture.headers,
    )


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Route GET traffic under the given prefixes through a ``CacheInterceptor``."""

    def __init__(
        self,
        app,
        interceptor: CacheInterceptor,
        include_prefixes: Iterable[str] = ("/",),
        exclude_prefixes: Iterable[str] = (),
    ):
        super().__init__(app)
        self.interceptor = interceptor
        self.include_prefixes: Tuple[str, ...] = tuple(include_prefixes)
        self.exclude_prefixes: Tuple[str, ...] = tuple(exclude_prefixes)

    def _in_scope(self, path: str) -> bool:
        if any(path.startswith(prefix) for prefix in self.exclude_prefixes):
            return False
        return any(path.startswith(prefix) for prefix in self.include_prefixes)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._in_scope(request.url.path):
            return await call_next(request)

        async def unit_of_work(_: CacheRequest, capture: ResponseCapture) -> None:
            response = await call_next(request)
            body = b""
            async for chunk in response.body_iterator:
                body += chunk if isinstance(chunk, bytes) else chunk.encode(response.charset)

            capture.status(response.status_code)
            for name, value in response.headers.items():
                if name.lower() not in _DROPPED_HEADERS:
                    capture.set_header(name, value)
            await capture.send(body)

        try:
            capture = await self.interceptor.handle(build_cache_request(request), unit_of_work)
        finally:
            set_cache_key(None)
        return to_starlette_response(capture)
