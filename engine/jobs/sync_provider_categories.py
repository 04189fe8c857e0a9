"""
Sync Provider Categories Job

Stores upstream categories for providers that have them and disables
enabled categories that no longer exist upstream.
"""

from typing import Any, Dict, List, Optional

from ..models.job import ProviderAction
from ..models.provider import EnabledCategories
from ..models.title import MEDIA_TYPES, generate_category_key
from .base import BaseJob
from .catalog import SYNC_PROVIDER_CATEGORIES


async def sync_categories(context, provider) -> Dict[str, Any]:
    """
    Save one provider's categories and prune vanished enabled ones.

    Returns:
        {"movies": saved, "tvshows": saved, "disabled": [category_key]}
    """
    catalog = context.catalog
    enabled = {media_type: provider.config.enabled_categories.for_type(media_type) for media_type in MEDIA_TYPES}
    summary: Dict[str, Any] = {"disabled": []}

    for media_type in MEDIA_TYPES:
        categories = await provider.fetch_categories(media_type)
        if not categories:
            # Empty listing is treated as an upstream hiccup, not a wipe
            provider.logger.warning("provider_categories_empty", type=media_type)
            summary[media_type] = 0
            continue

        saved = await catalog.save_provider_categories(provider.id, media_type, categories)
        summary[media_type] = saved["saved"]

        upstream = {generate_category_key(media_type, c["category_id"]) for c in categories}
        stored = await catalog.get_provider_categories(provider.id, media_type)
        vanished = [c["category_key"] for c in stored if c["category_key"] not in upstream]
        if vanished:
            await catalog.delete_provider_categories(provider.id, vanished)

        kept = [key for key in enabled[media_type] if key in upstream]
        summary["disabled"].extend(key for key in enabled[media_type] if key not in upstream)
        enabled[media_type] = kept

    if summary["disabled"]:
        await catalog.update_provider_categories(provider.id, enabled)
        provider.config = provider.config.model_copy(
            update={"enabled_categories": EnabledCategories(**enabled)}
        )
        context.add_provider_to_action_queue(ProviderAction.CATEGORIES_CHANGED, provider.id)
        provider.logger.info("provider_categories_disabled", categories=summary["disabled"])

    return summary


class SyncProviderCategoriesJob(BaseJob):
    name = SYNC_PROVIDER_CATEGORIES

    async def execute(self, worker_data: Dict[str, Any]) -> Dict[str, Any]:
        provider_id: Optional[str] = worker_data.get("providerId")
        providers = [p for p in self.context.get_providers(provider_id) if p.supports_categories]

        results: Dict[str, Any] = {}
        errors: List[str] = []
        for provider in providers:
            try:
                results[provider.id] = await sync_categories(self.context, provider)
            except Exception as e:
                self.logger.error("provider_categories_sync_failed", provider_id=provider.id, error=str(e))
                errors.append(provider.id)
                results[provider.id] = {"error": str(e)}

        return {"providers": results, "failed": errors}
