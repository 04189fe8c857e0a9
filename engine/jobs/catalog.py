"""
Job Catalog

Every job the scheduler knows about, with its interval, initial delay,
chained jobs and blocking jobs.
"""

from typing import List

from ..models.job import JobDefinition

SYNC_PROVIDER_CATEGORIES = "sync-provider-categories"
SYNC_PROVIDER_TITLES = "sync-provider-titles"
PROCESS_MAIN_TITLES = "process-main-titles"
PURGE_PROVIDER_CACHE = "purge-provider-cache"
SETTINGS_MONITOR = "settings-monitor"
CONFIG_MONITOR = "config-monitor"
PROVIDER_CREATED = "provider-created"
PROVIDER_ENABLED = "provider-enabled"
PROVIDER_DISABLED = "provider-disabled"
PROVIDER_DELETED = "provider-deleted"
PROVIDER_CATEGORIES_CHANGED = "provider-categories-changed"

PROVIDER_ACTION_JOBS = [
    PROVIDER_CREATED,
    PROVIDER_ENABLED,
    PROVIDER_DISABLED,
    PROVIDER_DELETED,
    PROVIDER_CATEGORIES_CHANGED,
]

JOB_CATALOG: List[JobDefinition] = [
    JobDefinition(
        name=SYNC_PROVIDER_CATEGORIES,
        description="Sync categories from every enabled provider",
        interval="1h",
        timeout="30s",
    ),
    JobDefinition(
        name=SYNC_PROVIDER_TITLES,
        description="Fetch and match titles from every enabled provider",
        interval="1h",
        timeout="1m",
        post_execute=[PROCESS_MAIN_TITLES],
        skip_if_other_in_progress=[PROCESS_MAIN_TITLES, *PROVIDER_ACTION_JOBS],
    ),
    JobDefinition(
        name=PROCESS_MAIN_TITLES,
        description="Merge provider titles into canonical titles",
        skip_if_other_in_progress=[SYNC_PROVIDER_TITLES, PROVIDER_DISABLED, PROVIDER_DELETED, PROVIDER_CATEGORIES_CHANGED],
    ),
    JobDefinition(
        name=PURGE_PROVIDER_CACHE,
        description="Remove cache files and policies of deleted providers",
        interval="6h",
        timeout="5m",
        skip_if_other_in_progress=[PROVIDER_DELETED],
    ),
    JobDefinition(
        name=SETTINGS_MONITOR,
        description="Apply changed TMDB settings",
        interval="1m",
        timeout="10s",
    ),
    JobDefinition(
        name=CONFIG_MONITOR,
        description="Reconcile provider, settings and cache policy changes",
        interval="1m",
        timeout="15s",
    ),
    JobDefinition(
        name=PROVIDER_CREATED,
        description="Initialize newly created providers",
        interval="1m",
        timeout="20s",
        post_execute=[PROCESS_MAIN_TITLES],
        skip_if_other_in_progress=[SYNC_PROVIDER_TITLES, PROCESS_MAIN_TITLES],
    ),
    JobDefinition(
        name=PROVIDER_ENABLED,
        description="Reload enabled providers and fetch their titles",
        interval="1m",
        timeout="20s",
        post_execute=[PROCESS_MAIN_TITLES],
        skip_if_other_in_progress=[SYNC_PROVIDER_TITLES, PROCESS_MAIN_TITLES],
    ),
    JobDefinition(
        name=PROVIDER_DISABLED,
        description="Remove streams of disabled providers",
        interval="1m",
        timeout="20s",
        skip_if_other_in_progress=[PROCESS_MAIN_TITLES],
    ),
    JobDefinition(
        name=PROVIDER_DELETED,
        description="Remove everything stored for deleted providers",
        interval="1m",
        timeout="20s",
        post_execute=[PURGE_PROVIDER_CACHE],
        skip_if_other_in_progress=[PROCESS_MAIN_TITLES],
    ),
    JobDefinition(
        name=PROVIDER_CATEGORIES_CHANGED,
        description="Apply enabled-category changes",
        interval="1m",
        timeout="20s",
        post_execute=[PROCESS_MAIN_TITLES],
        skip_if_other_in_progress=[SYNC_PROVIDER_TITLES, PROCESS_MAIN_TITLES],
    ),
]
