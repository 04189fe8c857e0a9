"""
TMDB Client

Cached, rate-limited access to the TMDB v3 API.

Endpoints used:
- /search/{movie|tv}
- /find/{imdb_id}?external_source=imdb_id
- /{movie|tv}/{id}
- /tv/{id}/season/{n}
- /{movie|tv}/{id}/similar
"""

from typing import Any, Dict, List, Optional

from ..core.logging import get_logger
from .cache_store import CacheStore
from .http_client import UpstreamClient
from .rate_limiter import RateLimiter

logger = get_logger(__name__)

# Engine media types -> TMDB media types
MEDIA_TYPE_MAP = {
    "movies": "movie",
    "tvshows": "tv",
}

DEFAULT_CACHE_POLICIES: Dict[str, Optional[float]] = {
    "tmdb/search/movie": None,
    "tmdb/search/tv": None,
    "tmdb/movie/imdb": None,
    "tmdb/tv/imdb": None,
    "tmdb/movie/details": None,
    "tmdb/tv/details": None,
    "tmdb/tv/{tmdbId}/season": 6,
    "tmdb/movie/{tmdbId}/similar": None,
    "tmdb/tv/{tmdbId}/similar": None,
}


class TMDBClient:
    """TMDB v3 client authenticated with a read access token."""

    def __init__(
        self,
        cache: CacheStore,
        token: str,
        api_url: str = "https://api.themoviedb.org/3",
        concurrent: int = 40,
        duration_seconds: float = 1.0,
    ):
        self.cache = cache
        self.api_url = api_url.rstrip("/")
        self.http = UpstreamClient(
            "tmdb",
            cache,
            RateLimiter(concurrent, duration_seconds, name="tmdb"),
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        )
        cache.register(DEFAULT_CACHE_POLICIES)

    async def update_settings(self, token: Optional[str] = None, api_rate: Optional[Dict[str, Any]] = None):
        """Apply a new token and/or reservoir settings."""
        if token:
            self.http.set_header("Authorization", f"Bearer {token}")
            logger.info("tmdb_token_updated")
        if api_rate:
            concurrent = api_rate.get("concurrent", api_rate.get("concurrect"))
            duration = api_rate.get("duration_seconds")
            await self.http.update_rate(
                int(concurrent or self.http.limiter.capacity),
                float(duration or self.http.limiter.interval),
            )

    async def close(self):
        await self.http.close()

    async def search(self, media_type: str, query: str, year: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Search movies or TV shows by name.

        Args:
            media_type: "movie" or "tv"
            year: release year (first_air_date_year for TV)
        """
        params: Dict[str, Any] = {"query": query}
        if year:
            params["first_air_date_year" if media_type == "tv" else "year"] = year

        data = await self.http.get_json(
            f"{self.api_url}/search/{media_type}",
            params=params,
            cache_key=["tmdb", "search", media_type, f"{query}_{year or 'no-year'}.json"],
        )
        return data.get("results") or []

    async def find_by_imdb_id(self, imdb_id: str, media_type: str) -> Dict[str, Any]:
        return await self.http.get_json(
            f"{self.api_url}/find/{imdb_id}",
            params={"external_source": "imdb_id"},
            cache_key=["tmdb", media_type, "imdb", f"{imdb_id}.json"],
        )

    async def get_details(self, media_type: str, tmdb_id: int) -> Dict[str, Any]:
        return await self.http.get_json(
            f"{self.api_url}/{media_type}/{tmdb_id}",
            cache_key=["tmdb", media_type, "details", f"{tmdb_id}.json"],
        )

    async def get_season(self, tmdb_id: int, season_number: int) -> Dict[str, Any]:
        return await self.http.get_json(
            f"{self.api_url}/tv/{tmdb_id}/season/{season_number}",
            cache_key=["tmdb", "tv", str(tmdb_id), "season", f"{season_number}.json"],
        )

    async def get_similar(self, media_type: str, tmdb_id: int, page: int = 1) -> Dict[str, Any]:
        return await self.http.get_json(
            f"{self.api_url}/{media_type}/{tmdb_id}/similar",
            params={"page": page},
            cache_key=["tmdb", media_type, str(tmdb_id), "similar", f"page-{page}.json"],
        )
