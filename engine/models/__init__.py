"""Pydantic models for Playarr Engine."""

from .provider import (
    ApiRate,
    EnabledCategories,
    AGTVProviderConfig,
    XtreamProviderConfig,
    ProviderConfig,
    parse_provider_config,
)
from .title import (
    MOVIES,
    TVSHOWS,
    MEDIA_TYPES,
    MAIN_STREAM_KEY,
    TitleData,
    ProviderTitle,
    StreamDocument,
    generate_title_key,
    parse_title_key,
    generate_category_key,
    format_episode_key,
    parse_episode_key,
)
from .job import (
    JobStatus,
    ProviderAction,
    JobDefinition,
    JobTriggerRequest,
    ProviderActionRequest,
)

__all__ = [
    "ApiRate",
    "EnabledCategories",
    "AGTVProviderConfig",
    "XtreamProviderConfig",
    "ProviderConfig",
    "parse_provider_config",
    "MOVIES",
    "TVSHOWS",
    "MEDIA_TYPES",
    "MAIN_STREAM_KEY",
    "TitleData",
    "ProviderTitle",
    "StreamDocument",
    "generate_title_key",
    "parse_title_key",
    "generate_category_key",
    "format_episode_key",
    "parse_episode_key",
    "JobStatus",
    "ProviderAction",
    "JobDefinition",
    "JobTriggerRequest",
    "ProviderActionRequest",
]
