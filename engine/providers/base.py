"""
Base IPTV Provider

Common interface of every provider adapter plus the shared plumbing
(rate limiter, cached HTTP client, progress ticker, cleanup rules).

Adapters implement the hooks; ProviderPipeline drives them:
- fetch_raw_titles(type)
- get_title_id(raw, type)
- should_skip(raw, existing, type)
- build_processed_title(raw, type)
- fetch_extended_info(raw, type) / parse_extended_info(title, extended)
"""

import re
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Pattern, Tuple

from ..core.logging import get_logger
from ..models.provider import BaseProviderConfig
from ..models.title import TitleData, generate_category_key
from ..services.cache_store import CacheStore
from ..services.http_client import UpstreamClient
from ..services.matcher import Matcher
from ..services.progress import ProgressCoordinator
from ..services.rate_limiter import RateLimiter
from .pipeline import ProviderPipeline

logger = get_logger(__name__)

CancelCheck = Callable[[], Awaitable[None]]

_JS_GROUP_REF_RE = re.compile(r"\$(\d+)")

BASE_CACHE_POLICIES: Dict[str, Optional[float]] = {
    "{providerId}/categories": 1,
    "{providerId}/metadata": 1,
}


def compile_cleanup_rules(rules: List[Tuple[str, str]]) -> List[Tuple[Pattern, str]]:
    """Compile (pattern, replacement) pairs; "$1" style references become "\\g<1>"."""
    compiled = []
    for pattern, replacement in rules:
        try:
            compiled.append((re.compile(pattern), _JS_GROUP_REF_RE.sub(r"\\g<\1>", replacement or "")))
        except re.error as e:
            logger.warning("cleanup_rule_invalid", pattern=pattern, error=str(e))
    return compiled


def streams_unchanged(new_streams: Dict[str, str], existing: Dict[str, Any]) -> bool:
    return set(new_streams or {}) == set((existing or {}).get("streams") or {})


class BaseIPTVProvider(ABC):
    """Abstract provider adapter."""

    provider_type: str = ""
    supports_categories: bool = False
    fixed_batch_size: Optional[int] = None

    def __init__(
        self,
        config: BaseProviderConfig,
        catalog,
        cache: CacheStore,
        matcher: Matcher,
    ):
        self.config = config
        self.catalog = catalog
        self.cache = cache
        self.matcher = matcher
        self.limiter = RateLimiter(
            config.api_rate.concurrent, config.api_rate.duration_seconds, name=config.id
        )
        self.http = UpstreamClient(config.id, cache, self.limiter)
        self.progress = ProgressCoordinator(name=config.id)
        self.pipeline = ProviderPipeline(self)
        self.logger = logger.bind(provider_id=config.id, provider_type=self.provider_type)
        self._cleanup = compile_cleanup_rules(config.cleanup_rules)

        cache.register(self.default_cache_policies())

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def batch_size(self) -> int:
        if self.fixed_batch_size:
            return self.fixed_batch_size
        return max(1, min(self.config.api_rate.concurrent * 2, 100))

    def get_type(self) -> str:
        return self.provider_type

    def default_cache_policies(self) -> Dict[str, Optional[float]]:
        return dict(BASE_CACHE_POLICIES)

    async def update_configuration(self, config: BaseProviderConfig):
        """Apply a reloaded config (rate limit, cleanup rules, categories)."""
        self.config = config
        self._cleanup = compile_cleanup_rules(config.cleanup_rules)
        await self.limiter.update(config.api_rate.concurrent, config.api_rate.duration_seconds)
        self.logger.info("provider_configuration_updated")

    async def close(self):
        await self.progress.stop()
        await self.http.close()

    # ----- shared helpers -----

    def apply_cleanup(self, title: Optional[str]) -> Optional[str]:
        """Apply cleanup rules in declared order."""
        if not title:
            return title
        for pattern, replacement in self._cleanup:
            title = pattern.sub(replacement, title)
        return title.strip()

    def is_category_enabled(self, media_type: str, category_id: Optional[str]) -> bool:
        if category_id is None:
            return False
        return generate_category_key(media_type, category_id) in self.config.enabled_categories.for_type(media_type)

    def metadata_cache_key(self, media_type: str, extension: str, page: Optional[int] = None) -> List[str]:
        name = f"{media_type}-{page}" if page is not None else media_type
        return [self.id, "metadata", f"{name}.{extension}"]

    # ----- interface -----

    async def fetch_categories(self, media_type: str) -> List[Dict[str, Any]]:
        """Upstream categories as {category_id, category_name, enabled}."""
        return []

    async def fetch_metadata(self, media_type: str, check_cancelled: Optional[CancelCheck] = None) -> Dict[str, Any]:
        """Fetch, filter, enrich and save this provider's titles of one type."""
        return await self.pipeline.run(media_type, check_cancelled)

    # ----- hooks -----

    @abstractmethod
    async def fetch_raw_titles(self, media_type: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def get_title_id(self, raw: Dict[str, Any], media_type: str) -> Optional[str]:
        ...

    def get_category_id(self, raw: Dict[str, Any], media_type: str) -> Optional[str]:
        return None

    @abstractmethod
    def should_skip(self, raw: Dict[str, Any], existing: Dict[str, Any], media_type: str) -> bool:
        """True when an existing title needs no reprocessing."""

    @abstractmethod
    def build_processed_title(self, raw: Dict[str, Any], media_type: str) -> TitleData:
        ...

    async def fetch_extended_info(self, raw: Dict[str, Any], media_type: str) -> Optional[Dict[str, Any]]:
        return None

    def parse_extended_info(self, title: TitleData, extended: Dict[str, Any]) -> TitleData:
        return title
