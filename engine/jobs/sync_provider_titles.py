"""
Sync Provider Titles Job

Fetch, filter, match and save titles for every enabled provider
(or a single one when `providerId` is given).
"""

import asyncio
from typing import Any, Dict, Optional

from ..core.exceptions import JobCancelledError
from ..models.title import MOVIES, TVSHOWS
from .base import BaseJob
from .catalog import SYNC_PROVIDER_TITLES


async def fetch_provider_titles(provider, check_cancelled=None) -> Dict[str, Any]:
    """
    Run fetch_metadata for movies and TV shows concurrently.

    Returns:
        {"movies": counts | {"error": msg}, "tvshows": ...}
    """
    results = await asyncio.gather(
        provider.fetch_metadata(MOVIES, check_cancelled),
        provider.fetch_metadata(TVSHOWS, check_cancelled),
        return_exceptions=True,
    )

    summary: Dict[str, Any] = {}
    for media_type, result in zip((MOVIES, TVSHOWS), results):
        if isinstance(result, JobCancelledError):
            raise result
        if isinstance(result, Exception):
            provider.logger.error("provider_titles_fetch_failed", type=media_type, error=str(result))
            summary[media_type] = {"error": getattr(result, "message", None) or str(result)}
        else:
            summary[media_type] = result
    return summary


class SyncProviderTitlesJob(BaseJob):
    """Titles sync across providers, one provider at a time."""

    name = SYNC_PROVIDER_TITLES

    async def execute(self, worker_data: Dict[str, Any]) -> Dict[str, Any]:
        provider_id: Optional[str] = worker_data.get("providerId")
        providers = self.context.get_providers(provider_id)

        results: Dict[str, Any] = {}
        for provider in providers:
            await self.check_cancelled()
            self.logger.info("provider_sync_started", provider_id=provider.id)
            results[provider.id] = await fetch_provider_titles(provider, self.check_cancelled)

        return {"providers": results, "provider_count": len(providers)}
