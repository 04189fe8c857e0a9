"""
Provider Action Jobs

Each job drains one provider lifecycle queue (created, enabled,
disabled, deleted, categories-changed) and applies the matching
changes to adapters and stored data. A provider whose handling fails
is put back on the queue for the next run.
"""

from abc import abstractmethod
from typing import Any, Dict, List, Set

from ..core.exceptions import ProviderNotFoundError
from ..models.job import ProviderAction
from ..models.title import MEDIA_TYPES, generate_title_key
from .base import BaseJob
from .catalog import (
    PROVIDER_CATEGORIES_CHANGED,
    PROVIDER_CREATED,
    PROVIDER_DELETED,
    PROVIDER_DISABLED,
    PROVIDER_ENABLED,
)
from .sync_provider_categories import sync_categories
from .sync_provider_titles import fetch_provider_titles


class ProviderActionJob(BaseJob):
    """Drains the action queue and calls `handle_provider` per provider."""

    action: ProviderAction

    def _provider_ids(self, worker_data: Dict[str, Any]) -> List[str]:
        provider_ids = list(self.context.get_and_clear_provider_action_queue(self.action))
        requested = worker_data.get("providerId")
        if requested and requested not in provider_ids:
            provider_ids.append(requested)
        return provider_ids

    @abstractmethod
    async def handle_provider(self, provider_id: str) -> Dict[str, Any]:
        ...

    async def execute(self, worker_data: Dict[str, Any]) -> Dict[str, Any]:
        provider_ids = self._provider_ids(worker_data)
        if not provider_ids:
            self.run_post_execute = False
            return {"processed": 0}

        # The merge reloads every title of these providers
        self.post_execute_data = {"providerIds": provider_ids}

        results: Dict[str, Any] = {}
        failed: List[str] = []
        for provider_id in provider_ids:
            try:
                results[provider_id] = await self.handle_provider(provider_id)
            except ProviderNotFoundError as e:
                self.logger.warning("provider_action_skipped", provider_id=provider_id, error=e.message)
                results[provider_id] = {"error": e.message}
            except Exception as e:
                self.logger.error("provider_action_failed", provider_id=provider_id, error=str(e))
                self.context.add_provider_to_action_queue(self.action, provider_id)
                failed.append(provider_id)
                results[provider_id] = {"error": str(e)}

        self.logger.info("provider_action_processed", action=self.action.value, providers=provider_ids, failed=failed)
        return {"processed": len(provider_ids), "failed": failed, "providers": results}

    async def _require_config(self, provider_id: str):
        config = await self.get_provider_config(provider_id)
        if config is None:
            raise ProviderNotFoundError(provider_id)
        return config

    async def _remove_streams(self, provider_id: str) -> Dict[str, int]:
        """Drop the provider's sources from canonical titles and its stream documents."""
        removed = await self.catalog.remove_provider_from_titles(provider_id)
        removed["streams_removed"] += await self.catalog.delete_provider_title_streams(provider_id)
        removed["titles_deleted"] = await self.catalog.delete_titles_without_sources()
        return removed


class ProviderCreatedJob(ProviderActionJob):
    name = PROVIDER_CREATED
    action = ProviderAction.CREATED

    async def handle_provider(self, provider_id: str) -> Dict[str, Any]:
        config = await self._require_config(provider_id)
        if not config.enabled:
            return {"enabled": False}

        provider = await self.context.add_provider(config)
        result: Dict[str, Any] = {}
        if provider.supports_categories:
            result["categories"] = await sync_categories(self.context, provider)
        result["titles"] = await fetch_provider_titles(provider)
        return result


class ProviderEnabledJob(ProviderActionJob):
    name = PROVIDER_ENABLED
    action = ProviderAction.ENABLED

    async def handle_provider(self, provider_id: str) -> Dict[str, Any]:
        config = await self._require_config(provider_id)
        if not config.enabled:
            return {"enabled": False}
        provider = await self.context.reload_provider(config)
        return {"titles": await fetch_provider_titles(provider)}


class ProviderDisabledJob(ProviderActionJob):
    name = PROVIDER_DISABLED
    action = ProviderAction.DISABLED

    async def handle_provider(self, provider_id: str) -> Dict[str, Any]:
        await self.context.remove_provider(provider_id)
        return await self._remove_streams(provider_id)


class ProviderDeletedJob(ProviderActionJob):
    name = PROVIDER_DELETED
    action = ProviderAction.DELETED

    async def handle_provider(self, provider_id: str) -> Dict[str, Any]:
        await self.context.remove_provider(provider_id)
        result: Dict[str, Any] = await self._remove_streams(provider_id)
        result["provider_titles_deleted"] = await self.catalog.delete_provider_titles(provider_id)
        result["categories_deleted"] = await self.catalog.delete_provider_categories(provider_id)
        result["policies_deleted"] = await self.catalog.delete_cache_policies_by_provider(provider_id)
        self.context.cache.drop_policies(provider_id)
        return result


class ProviderCategoriesChangedJob(ProviderActionJob):
    """
    Removes titles of categories that were disabled and fetches titles
    again so newly enabled categories are picked up.
    """

    name = PROVIDER_CATEGORIES_CHANGED
    action = ProviderAction.CATEGORIES_CHANGED

    async def _remove_disabled_categories(self, provider, media_type: str) -> Set[str]:
        """Delete provider titles in disabled categories and return orphaned canonical keys."""
        titles = await self.catalog.get_provider_titles(provider.id, media_type=media_type)
        disabled: Set[str] = {
            str(t["category_id"])
            for t in titles
            if t.get("category_id") is not None
            and not provider.is_category_enabled(media_type, t["category_id"])
        }
        if not disabled:
            return set()

        removed = await self.catalog.delete_provider_titles_by_categories(
            provider.id, media_type, sorted(disabled)
        )
        removed_keys = {
            generate_title_key(media_type, t["tmdb_id"]) for t in removed if t.get("tmdb_id")
        }
        # A canonical title still reached through another category keeps its sources
        still_covered = {
            generate_title_key(media_type, t["tmdb_id"])
            for t in titles
            if t.get("tmdb_id") and not t.get("ignored") and str(t.get("category_id")) not in disabled
        }
        self.logger.info(
            "provider_categories_removed",
            provider_id=provider.id,
            type=media_type,
            categories=sorted(disabled),
            titles_removed=len(removed),
        )
        return removed_keys - still_covered

    async def handle_provider(self, provider_id: str) -> Dict[str, Any]:
        config = await self._require_config(provider_id)
        provider = await self.context.reload_provider(config)

        result: Dict[str, Any] = {}
        affected: Set[str] = set()
        if provider.supports_categories:
            for media_type in MEDIA_TYPES:
                affected |= await self._remove_disabled_categories(provider, media_type)

        if affected:
            result.update(await self.catalog.remove_provider_from_titles(provider_id, sorted(affected)))
            result["titles_deleted"] = await self.catalog.delete_titles_without_sources()

        if config.enabled:
            result["titles"] = await fetch_provider_titles(provider)
        return result


PROVIDER_ACTION_JOB_CLASSES: Dict[str, type] = {
    PROVIDER_CREATED: ProviderCreatedJob,
    PROVIDER_ENABLED: ProviderEnabledJob,
    PROVIDER_DISABLED: ProviderDisabledJob,
    PROVIDER_DELETED: ProviderDeletedJob,
    PROVIDER_CATEGORIES_CHANGED: ProviderCategoriesChangedJob,
}
