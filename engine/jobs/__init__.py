"""
Engine Jobs

Scheduled and triggered units of work, keyed by job name.
"""

from typing import Dict

from .base import BaseJob
from .catalog import JOB_CATALOG, PROVIDER_ACTION_JOBS
from .monitors import ConfigMonitorJob, SettingsMonitorJob
from .process_main_titles import ProcessMainTitlesJob
from .provider_actions import (
    PROVIDER_ACTION_JOB_CLASSES,
    ProviderActionJob,
    ProviderCategoriesChangedJob,
    ProviderCreatedJob,
    ProviderDeletedJob,
    ProviderDisabledJob,
    ProviderEnabledJob,
)
from .purge_provider_cache import PurgeProviderCacheJob
from .sync_provider_categories import SyncProviderCategoriesJob, sync_categories
from .sync_provider_titles import SyncProviderTitlesJob, fetch_provider_titles

JOB_CLASSES: Dict[str, type] = {
    job_class.name: job_class
    for job_class in (
        SyncProviderCategoriesJob,
        SyncProviderTitlesJob,
        ProcessMainTitlesJob,
        PurgeProviderCacheJob,
        SettingsMonitorJob,
        ConfigMonitorJob,
    )
}
JOB_CLASSES.update(PROVIDER_ACTION_JOB_CLASSES)

__all__ = [
    "BaseJob",
    "JOB_CATALOG",
    "JOB_CLASSES",
    "PROVIDER_ACTION_JOBS",
    "ConfigMonitorJob",
    "SettingsMonitorJob",
    "ProcessMainTitlesJob",
    "ProviderActionJob",
    "ProviderCategoriesChangedJob",
    "ProviderCreatedJob",
    "ProviderDeletedJob",
    "ProviderDisabledJob",
    "ProviderEnabledJob",
    "PurgeProviderCacheJob",
    "SyncProviderCategoriesJob",
    "SyncProviderTitlesJob",
    "fetch_provider_titles",
    "sync_categories",
]
