"""
Purge Provider Cache Job

Removes cache directories and cache policies of providers that are
deleted or no longer configured.
"""

from typing import Any, Dict, Set

from .base import BaseJob
from .catalog import PURGE_PROVIDER_CACHE

# Top-level cache directories that do not belong to a provider
SHARED_CACHE_ROOTS = {"tmdb"}


class PurgeProviderCacheJob(BaseJob):
    name = PURGE_PROVIDER_CACHE

    async def execute(self, worker_data: Dict[str, Any]) -> Dict[str, Any]:
        cache = self.context.cache

        providers = await self.catalog.get_providers_changed_since(None)
        active: Set[str] = {p["id"] for p in providers if not p.get("deleted")}
        targets: Set[str] = {p["id"] for p in providers if p.get("deleted")}

        for root in await cache.list_roots():
            if root not in SHARED_CACHE_ROOTS and root not in active:
                targets.add(root)

        purged = []
        policies_removed = 0
        for provider_id in sorted(targets):
            if provider_id in active:
                continue
            cleared = await cache.clear([provider_id])
            removed = await self.catalog.delete_cache_policies_by_provider(provider_id)
            cache.drop_policies(provider_id)
            policies_removed += removed
            if cleared or removed:
                purged.append(provider_id)

        if purged:
            self.logger.info("provider_cache_purged", providers=purged, policies_removed=policies_removed)
        return {"providers_purged": purged, "policies_removed": policies_removed}
