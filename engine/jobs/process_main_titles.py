"""
Process Main Titles Job

Merges provider titles changed since the last successful run into
canonical titles, then looks up similar titles for new ones.
With `providerId` (or `providerIds`), every title of those providers
is reprocessed. A run with titles that failed on transient TMDB errors
does not move last_execution, so the next run looks at them again.
"""

from typing import Any, Dict, List, Set

from .base import BaseJob
from .catalog import PROCESS_MAIN_TITLES


class ProcessMainTitlesJob(BaseJob):
    name = PROCESS_MAIN_TITLES

    @staticmethod
    def _full_reload_ids(worker_data: Dict[str, Any]) -> Set[str]:
        provider_ids = set(worker_data.get("providerIds") or [])
        if worker_data.get("providerId"):
            provider_ids.add(worker_data["providerId"])
        return provider_ids

    async def execute(self, worker_data: Dict[str, Any]) -> Dict[str, Any]:
        full_reload = self._full_reload_ids(worker_data)
        since = await self.get_last_execution()
        if since is None:
            self.logger.info("merge_full_update")
        else:
            self.logger.info("merge_incremental_update", since=since.isoformat(), full_reload=sorted(full_reload))

        order: List[str] = self.context.provider_ids()
        provider_titles: Dict[str, List[Dict[str, Any]]] = {}
        for pid in order:
            load_since = None if pid in full_reload else since
            provider_titles[pid] = await self.catalog.get_provider_titles(pid, since=load_since, ignored=False)

        await self.check_cancelled()
        merge = self.context.merge_engine
        result = await merge.process_main_titles(provider_titles, order, self.check_cancelled)

        if result["retryable"]:
            self.advance_last_execution = False
            self.logger.warning("merge_has_retryable_failures", retryable=result["retryable"])

        await self.check_cancelled()
        similar = await merge.enrich_similar_titles(result["titles"])

        summary = {
            "movies_processed": result["movies"],
            "tvshows_processed": result["tvshows"],
            "skipped": result["skipped"],
            "failed": result["failed"],
            "retryable": result["retryable"],
            "streams": result["streams"],
            "similar_enriched": similar["enriched"],
        }
        if full_reload:
            summary["triggered_by_provider"] = sorted(full_reload)
        return summary
