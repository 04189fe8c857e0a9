"""
Monitor Jobs

Incremental observers of the control-plane collections.
- settings-monitor: TMDB token / rate changes since the last run
- config-monitor: provider, settings and cache policy changes, each
  tracked with its own check timestamp
"""

from typing import Any, Dict, List

from ..models.job import JobStatus
from ..models.provider import parse_provider_config
from ..services.catalog_store import utc_now
from .base import BaseJob
from .catalog import CONFIG_MONITOR, PROCESS_MAIN_TITLES, SETTINGS_MONITOR, SYNC_PROVIDER_TITLES

TMDB_SETTINGS = ("tmdb_token", "tmdb_api_rate")

# Running jobs invalidated by a provider change
CANCEL_ON_PROVIDER_CHANGE = (SYNC_PROVIDER_TITLES, PROCESS_MAIN_TITLES)


async def apply_tmdb_settings(context, changed: Dict[str, Any]) -> bool:
    if not any(key in changed for key in TMDB_SETTINGS):
        return False
    await context.matcher.update_settings(
        token=changed.get("tmdb_token"),
        api_rate=changed.get("tmdb_api_rate"),
    )
    return True


class SettingsMonitorJob(BaseJob):
    name = SETTINGS_MONITOR

    async def execute(self, worker_data: Dict[str, Any]) -> Dict[str, Any]:
        since = await self.get_last_execution()
        changed = await self.catalog.get_settings_changed_since(since)
        applied = await apply_tmdb_settings(self.context, changed)
        if applied:
            self.logger.info("tmdb_settings_applied", keys=sorted(k for k in changed if k in TMDB_SETTINGS))
        return {"settings_changed": sorted(changed), "tmdb_updated": applied}


class ConfigMonitorJob(BaseJob):
    name = CONFIG_MONITOR

    async def _reconcile_providers(self, documents: List[Dict[str, Any]]) -> Dict[str, List[str]]:
        changes: Dict[str, List[str]] = {"added": [], "reloaded": [], "removed": []}
        for document in documents:
            provider_id = document.get("id")
            if not provider_id:
                continue
            if document.get("deleted") or not document.get("enabled", True):
                if self.context.has_provider(provider_id):
                    await self.context.remove_provider(provider_id)
                    changes["removed"].append(provider_id)
                continue

            config = parse_provider_config(document)
            if self.context.has_provider(provider_id):
                await self.context.reload_provider(config)
                changes["reloaded"].append(provider_id)
            else:
                await self.context.add_provider(config)
                changes["added"].append(provider_id)
        return changes

    async def _cancel_running_jobs(self) -> List[str]:
        cancelled = []
        for job_name in CANCEL_ON_PROVIDER_CHANGE:
            if await self.catalog.get_job_status(job_name) == JobStatus.RUNNING.value:
                await self.catalog.update_job_status(job_name, JobStatus.CANCELLED)
                cancelled.append(job_name)
        if cancelled:
            self.logger.warning("jobs_cancelled_on_provider_change", jobs=cancelled)
        return cancelled

    async def execute(self, worker_data: Dict[str, Any]) -> Dict[str, Any]:
        history = await self.catalog.get_job_history(self.name) or {}
        now = utc_now()
        result: Dict[str, Any] = {
            "last_provider_check": now,
            "last_settings_check": now,
            "last_policy_check": now,
        }

        last_provider_check = history.get("last_provider_check")
        if last_provider_check is not None:
            documents = await self.catalog.get_providers_changed_since(last_provider_check)
            if documents:
                changes = await self._reconcile_providers(documents)
                result["providers"] = changes
                result["cancelled_jobs"] = await self._cancel_running_jobs()

        # Loaded adapters whose provider is no longer enabled
        enabled_ids = {p["id"] for p in await self.catalog.get_iptv_providers()}
        stale = [pid for pid in self.context.provider_ids() if pid not in enabled_ids]
        for provider_id in stale:
            await self.context.remove_provider(provider_id)
        if stale:
            result["stale_removed"] = stale

        last_settings_check = history.get("last_settings_check")
        if last_settings_check is not None:
            changed = await self.catalog.get_settings_changed_since(last_settings_check)
            result["tmdb_updated"] = await apply_tmdb_settings(self.context, changed)

        last_policy_check = history.get("last_policy_check")
        if last_policy_check is not None:
            if await self.catalog.get_cache_policies_changed_since(last_policy_check):
                await self.context.reload_cache_policies()
                result["policies_reloaded"] = True

        return result
