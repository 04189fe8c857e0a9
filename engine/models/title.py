"""
Title Models

Provider titles (raw, per provider) and stream documents (per canonical
title, stream and provider), plus the key helpers shared by both spaces.
"""

import re
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

MOVIES = "movies"
TVSHOWS = "tvshows"
MEDIA_TYPES = (MOVIES, TVSHOWS)

MAIN_STREAM_KEY = "main"

_EPISODE_KEY_RE = re.compile(r"^S(\d+)-E(\d+)$")


def generate_title_key(media_type: str, title_id: Any) -> str:
    """Build the natural key "{type}-{id}"."""
    return f"{media_type}-{title_id}"


def parse_title_key(title_key: str) -> Tuple[str, str]:
    """
    Split a title key back into (type, id).

    Raises:
        ValueError: if the key does not start with a known media type
    """
    media_type, sep, title_id = title_key.partition("-")
    if not sep or media_type not in MEDIA_TYPES or not title_id:
        raise ValueError(f"Invalid title key: {title_key}")
    return media_type, title_id


def generate_category_key(media_type: str, category_id: Any) -> str:
    return f"{media_type}-{category_id}"


def format_episode_key(season: int, episode: int) -> str:
    """Stream key for an episode, e.g. S01-E02."""
    return f"S{int(season):02d}-E{int(episode):02d}"


def parse_episode_key(stream_key: str) -> Optional[Tuple[int, int]]:
    match = _EPISODE_KEY_RE.match(stream_key)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


class TitleData(BaseModel):
    """
    Working record for one upstream title while it moves through the pipeline.

    Built from the adapter's raw entry, enriched in place (extended info,
    cleanup, matching) and finally turned into a ProviderTitle.
    """

    title_id: str
    type: str
    title: Optional[str] = None
    tmdb_id: Optional[int] = None
    category_id: Optional[str] = None
    release_date: Optional[str] = None
    modified: Optional[datetime] = None
    streams: Dict[str, str] = Field(default_factory=dict)
    ignored: bool = False
    ignored_reason: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def title_key(self) -> str:
        return generate_title_key(self.type, self.title_id)

    def mark_ignored(self, reason: str):
        self.ignored = True
        self.ignored_reason = reason


class ProviderTitle(BaseModel):
    """Persisted provider title (provider_titles collection)."""

    title_id: str
    type: str
    title: Optional[str] = None
    tmdb_id: Optional[int] = None
    category_id: Optional[str] = None
    release_date: Optional[str] = None
    streams: Dict[str, str] = Field(default_factory=dict)
    ignored: bool = False
    ignored_reason: Optional[str] = None

    @property
    def title_key(self) -> str:
        return generate_title_key(self.type, self.title_id)

    @classmethod
    def from_title_data(cls, data: TitleData) -> "ProviderTitle":
        return cls(
            title_id=data.title_id,
            type=data.type,
            title=data.title,
            tmdb_id=data.tmdb_id,
            category_id=data.category_id,
            release_date=data.release_date,
            streams=dict(data.streams),
            ignored=data.ignored,
            ignored_reason=data.ignored_reason if data.ignored else None,
        )

    def to_document(self) -> Dict[str, Any]:
        document = self.model_dump()
        document["title_key"] = self.title_key
        return document


class StreamDocument(BaseModel):
    """One playable stream of a canonical title from one provider (title_streams)."""

    title_key: str
    stream_id: str
    provider_id: str
    tvg_id: str = Field(alias="tvg-id")
    tvg_name: str = Field(alias="tvg-name")
    tvg_type: str = Field(alias="tvg-type")
    tvg_logo: Optional[str] = Field(None, alias="tvg-logo")
    group_title: str = Field("", alias="group-title")
    proxy_url: str
    proxy_path: str
    tvg_season_num: Optional[int] = Field(None, alias="tvg-season-num")
    tvg_episode_num: Optional[int] = Field(None, alias="tvg-episode-num")

    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
