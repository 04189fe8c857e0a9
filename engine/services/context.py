"""
Application Context

Wires the engine together: MongoDB catalog, file cache, TMDB client,
matcher, merge engine and the loaded provider adapters, plus the
provider action queue fed by the control surface.
"""

from typing import Any, Dict, List, Optional, Set

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from ..config import Settings, get_settings
from ..core.exceptions import FatalConfigurationError, ProviderNotFoundError
from ..core.logging import get_logger
from ..models.job import ProviderAction
from ..models.provider import BaseProviderConfig, parse_provider_config
from ..providers import PROVIDER_CLASSES, BaseIPTVProvider
from .cache_store import CacheStore
from .catalog_store import CatalogStore
from .matcher import Matcher
from .merge_engine import MergeEngine
from .tmdb import TMDBClient

logger = get_logger(__name__)


class ApplicationContext:
    """
    Shared state for jobs and the control surface.

    `initialize()` must complete before any job runs; it raises
    FatalConfigurationError when MongoDB is unreachable or no TMDB token
    is configured.
    """

    def __init__(self, settings: Optional[Settings] = None, db=None):
        self.settings = settings or get_settings()
        self.client: Optional[AsyncIOMotorClient] = None
        self.db = db
        self.catalog: Optional[CatalogStore] = None
        self.cache: Optional[CacheStore] = None
        self.tmdb: Optional[TMDBClient] = None
        self.matcher: Optional[Matcher] = None
        self.merge_engine: Optional[MergeEngine] = None
        self.providers: Dict[str, BaseIPTVProvider] = {}
        self._action_queue: Dict[ProviderAction, Set[str]] = {action: set() for action in ProviderAction}

    async def _connect(self):
        if self.db is not None:
            return
        try:
            self.client = AsyncIOMotorClient(self.settings.mongodb_uri, serverSelectionTimeoutMS=5000)
            await self.client.admin.command("ping")
        except PyMongoError as e:
            raise FatalConfigurationError(f"Cannot connect to MongoDB: {e}") from e
        self.db = self.client[self.settings.mongodb_db_name]
        logger.info("mongodb_connected", database=self.settings.mongodb_db_name)

    def _tmdb_rate(self, stored: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        stored = stored or {}
        return {
            "concurrent": int(stored.get("concurrent", stored.get("concurrect")) or self.settings.tmdb_concurrent),
            "duration_seconds": float(stored.get("duration_seconds") or self.settings.tmdb_duration_seconds),
        }

    async def initialize(self):
        await self._connect()

        self.catalog = CatalogStore(self.db)
        await self.catalog.ensure_indexes()

        self.cache = CacheStore(self.settings.cache_dir, self.catalog)
        self.cache.load_policies(await self.catalog.get_cache_policies())

        stored = await self.catalog.get_settings()
        token = stored.get("tmdb_token") or self.settings.tmdb_read_access_token
        if not token:
            raise FatalConfigurationError("TMDB token is not configured")
        rate = self._tmdb_rate(stored.get("tmdb_api_rate"))

        self.tmdb = TMDBClient(
            self.cache,
            token,
            api_url=self.settings.tmdb_api_url,
            concurrent=rate["concurrent"],
            duration_seconds=rate["duration_seconds"],
        )
        self.matcher = Matcher(self.tmdb)
        self.merge_engine = MergeEngine(self.catalog, self.tmdb)

        for document in await self.catalog.get_iptv_providers():
            try:
                await self.add_provider(parse_provider_config(document))
            except ValueError as e:
                logger.error("provider_config_invalid", provider_id=document.get("id"), error=str(e))

        logger.info("context_initialized", providers=self.provider_ids())

    # ----- providers -----

    def create_provider_instance(self, config: BaseProviderConfig) -> BaseIPTVProvider:
        provider_class = PROVIDER_CLASSES.get(config.type)
        if provider_class is None:
            raise ValueError(f"Unknown provider type: {config.type}")
        return provider_class(config, self.catalog, self.cache, self.matcher)

    def has_provider(self, provider_id: str) -> bool:
        return provider_id in self.providers

    def get_provider(self, provider_id: str) -> BaseIPTVProvider:
        provider = self.providers.get(provider_id)
        if provider is None:
            raise ProviderNotFoundError(provider_id)
        return provider

    def get_providers(self, provider_id: Optional[str] = None) -> List[BaseIPTVProvider]:
        """Loaded adapters in priority order, or the single one asked for."""
        if provider_id:
            return [self.get_provider(provider_id)]
        return [self.providers[pid] for pid in self.provider_ids()]

    def provider_ids(self) -> List[str]:
        return sorted(self.providers, key=lambda pid: (self.providers[pid].config.priority, pid))

    async def add_provider(self, config: BaseProviderConfig) -> BaseIPTVProvider:
        """Build and register an adapter, replacing any loaded one."""
        if config.id in self.providers:
            await self.providers.pop(config.id).close()
        provider = self.create_provider_instance(config)
        self.providers[config.id] = provider
        logger.info("provider_loaded", provider_id=config.id, provider_type=config.type)
        return provider

    async def reload_provider(self, config: BaseProviderConfig) -> BaseIPTVProvider:
        """
        Apply a changed config to the loaded adapter.

        Disabled or deleted configs get a detached adapter that is not registered.
        """
        if config.deleted or not config.enabled:
            await self.remove_provider(config.id)
            return self.create_provider_instance(config)

        provider = self.providers.get(config.id)
        if provider is None or provider.get_type() != config.type:
            return await self.add_provider(config)
        await provider.update_configuration(config)
        return provider

    async def remove_provider(self, provider_id: str) -> bool:
        provider = self.providers.pop(provider_id, None)
        if provider is None:
            return False
        await provider.close()
        logger.info("provider_unloaded", provider_id=provider_id)
        return True

    # ----- cache policies -----

    async def reload_cache_policies(self):
        self.cache.load_policies(await self.catalog.get_cache_policies())

    # ----- action queue -----

    def add_provider_to_action_queue(self, action: ProviderAction, provider_id: str):
        self._action_queue[ProviderAction(action)].add(provider_id)
        logger.info("provider_action_queued", action=ProviderAction(action).value, provider_id=provider_id)

    def get_and_clear_provider_action_queue(self, action: ProviderAction) -> Set[str]:
        action = ProviderAction(action)
        queued = self._action_queue[action]
        self._action_queue[action] = set()
        return queued

    def pending_actions(self) -> Dict[str, List[str]]:
        return {action.value: sorted(ids) for action, ids in self._action_queue.items() if ids}

    async def close(self):
        for provider_id in list(self.providers):
            await self.remove_provider(provider_id)
        if self.tmdb is not None:
            await self.tmdb.close()
        if self.client is not None:
            self.client.close()
        logger.info("context_closed")
