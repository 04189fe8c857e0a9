"""
Upstream HTTP Client

Read-through cache + rate limiter + httpx for provider and TMDB requests.
"""

from typing import Any, Dict, List, Optional

import httpx

from ..config import get_settings
from ..core.exceptions import TransientUpstreamError, UpstreamHTTPError
from ..core.logging import get_logger
from .cache_store import UNSET, CacheStore
from .rate_limiter import RateLimiter

logger = get_logger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Playarr-Engine/1.0",
    "Accept": "*/*",
}


class UpstreamClient:
    """
    GET-only client for one upstream.

    Every request goes through the cache first; only cache misses wait
    on the rate limiter and hit the network.
    """

    def __init__(
        self,
        name: str,
        cache: CacheStore,
        limiter: RateLimiter,
        headers: Optional[Dict[str, str]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.name = name
        self.cache = cache
        self.limiter = limiter
        self.headers = {**DEFAULT_HEADERS, **(headers or {})}
        self.timeout_seconds = timeout_seconds or get_settings().http_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=httpx.Timeout(self.timeout_seconds, connect=10.0),
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                follow_redirects=True,
            )
        return self._client

    def set_header(self, name: str, value: str):
        self.headers[name] = value
        if self._client is not None and not self._client.is_closed:
            self._client.headers[name] = value

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def update_rate(self, concurrent: int, duration_seconds: float):
        await self.limiter.update(concurrent, duration_seconds)

    async def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        async with self.limiter:
            try:
                response = await self._get_client().get(url, params=params)
            except httpx.TimeoutException:
                raise TransientUpstreamError(url, "timeout")
            except httpx.RequestError as e:
                raise TransientUpstreamError(url, str(e) or type(e).__name__)

        if response.status_code >= 500:
            raise TransientUpstreamError(url, f"HTTP {response.status_code}", response.status_code)
        if response.status_code >= 400:
            raise UpstreamHTTPError(url, response.status_code)
        return response

    async def get_text(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        cache_key: Optional[List[str]] = None,
        ttl_hours: Any = UNSET,
    ) -> str:
        if cache_key:
            cached = await self.cache.get_text(cache_key)
            if cached is not None:
                return cached

        response = await self._request(url, params)
        text = response.text

        if cache_key:
            await self.cache.put_text(cache_key, text, ttl_hours)
        return text

    async def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        cache_key: Optional[List[str]] = None,
        ttl_hours: Any = UNSET,
    ) -> Any:
        if cache_key:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return cached

        response = await self._request(url, params)
        try:
            data = response.json()
        except ValueError:
            raise TransientUpstreamError(url, "invalid JSON response")

        if cache_key:
            await self.cache.put(cache_key, data, ttl_hours)
        return data
