"""Services for ingestion, matching and merging."""

from .rate_limiter import RateLimiter
from .cache_store import CacheStore
from .catalog_store import CatalogStore
from .http_client import UpstreamClient
from .progress import ProgressCoordinator
from .tmdb import TMDBClient
from .matcher import Matcher
from .merge_engine import MergeEngine

__all__ = [
    "RateLimiter",
    "CacheStore",
    "CatalogStore",
    "UpstreamClient",
    "ProgressCoordinator",
    "TMDBClient",
    "Matcher",
    "MergeEngine",
]
