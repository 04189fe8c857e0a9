"""
Xtream Codes Provider

player_api.php listings with per-title extended info.
- Movies: get_vod_categories, get_vod_streams, get_vod_info
- TV shows: get_series_categories, get_series, get_series_info
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..models.title import MAIN_STREAM_KEY, MOVIES, TVSHOWS, TitleData, format_episode_key
from .base import BaseIPTVProvider, streams_unchanged

CATEGORY_ACTIONS = {
    MOVIES: "get_vod_categories",
    TVSHOWS: "get_series_categories",
}

LIST_ACTIONS = {
    MOVIES: "get_vod_streams",
    TVSHOWS: "get_series",
}

INFO_ACTIONS = {
    MOVIES: ("get_vod_info", "vod_id"),
    TVSHOWS: ("get_series_info", "series_id"),
}

ID_FIELDS = {
    MOVIES: "stream_id",
    TVSHOWS: "series_id",
}

STREAM_PATHS = {
    MOVIES: "movie",
    TVSHOWS: "series",
}


def parse_modified(value: Any) -> Optional[datetime]:
    """Upstream modification time (epoch seconds or ISO 8601) as naive UTC."""
    if value in (None, "", 0, "0"):
        return None
    try:
        if isinstance(value, (int, float)) or str(value).isdigit():
            return datetime.fromtimestamp(int(value), timezone.utc).replace(tzinfo=None)
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _to_int(value: Any) -> Optional[int]:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


class XtreamProvider(BaseIPTVProvider):
    """Xtream Codes adapter."""

    provider_type = "xtream"
    supports_categories = True

    def default_cache_policies(self) -> Dict[str, Optional[float]]:
        return {
            **super().default_cache_policies(),
            "{providerId}/extended/movies": None,
            "{providerId}/extended/tvshows": 6,
        }

    @property
    def api_url(self) -> str:
        return f"{self.config.api_url.rstrip('/')}/player_api.php"

    def _params(self, action: str, **extra) -> Dict[str, Any]:
        return {
            "username": self.config.username,
            "password": self.config.password,
            "action": action,
            **extra,
        }

    def stream_url(self, media_type: str, stream_id: Any, extension: Optional[str]) -> str:
        return (
            f"/{STREAM_PATHS[media_type]}/{self.config.username}/{self.config.password}/"
            f"{stream_id}.{extension or 'mp4'}"
        )

    async def fetch_categories(self, media_type: str) -> List[Dict[str, Any]]:
        data = await self.http.get_json(
            self.api_url,
            params=self._params(CATEGORY_ACTIONS[media_type]),
            cache_key=[self.id, "categories", f"{media_type}.json"],
        )
        if not isinstance(data, list):
            return []

        categories = []
        for item in data:
            category_id = item.get("category_id")
            if category_id in (None, ""):
                continue
            categories.append({
                "category_id": str(category_id),
                "category_name": item.get("category_name"),
                "enabled": self.is_category_enabled(media_type, str(category_id)),
            })
        return categories

    async def fetch_raw_titles(self, media_type: str) -> List[Dict[str, Any]]:
        data = await self.http.get_json(
            self.api_url,
            params=self._params(LIST_ACTIONS[media_type]),
            cache_key=self.metadata_cache_key(media_type, "json"),
        )
        return data if isinstance(data, list) else []

    def get_title_id(self, raw: Dict[str, Any], media_type: str) -> Optional[str]:
        value = raw.get(ID_FIELDS[media_type])
        return str(value) if value not in (None, "") else None

    def get_category_id(self, raw: Dict[str, Any], media_type: str) -> Optional[str]:
        value = raw.get("category_id")
        return str(value) if value not in (None, "") else None

    def should_skip(self, raw: Dict[str, Any], existing: Dict[str, Any], media_type: str) -> bool:
        if media_type == MOVIES:
            return True

        modified = parse_modified(raw.get("last_modified") or raw.get("modified"))
        last_updated = existing.get("lastUpdated")
        if modified is not None and last_updated is not None:
            return modified <= last_updated

        # Listings without timestamps: compare episode keys when the entry has them
        if raw.get("streams"):
            return streams_unchanged(raw["streams"], existing)
        return False

    def build_processed_title(self, raw: Dict[str, Any], media_type: str) -> TitleData:
        return TitleData(
            title_id=str(raw[ID_FIELDS[media_type]]),
            type=media_type,
            title=raw.get("name"),
            category_id=self.get_category_id(raw, media_type),
            modified=parse_modified(raw.get("last_modified") or raw.get("modified")),
            raw=raw,
        )

    async def fetch_extended_info(self, raw: Dict[str, Any], media_type: str) -> Optional[Dict[str, Any]]:
        action, id_param = INFO_ACTIONS[media_type]
        title_id = raw[ID_FIELDS[media_type]]
        return await self.http.get_json(
            self.api_url,
            params=self._params(action, **{id_param: title_id}),
            cache_key=[self.id, "extended", media_type, f"{title_id}.json"],
        )

    def parse_extended_info(self, title: TitleData, extended: Dict[str, Any]) -> TitleData:
        if title.type == MOVIES:
            return self._parse_movie_info(title, extended)
        return self._parse_series_info(title, extended)

    def _parse_movie_info(self, title: TitleData, extended: Dict[str, Any]) -> TitleData:
        movie_data = extended.get("movie_data") if isinstance(extended, dict) else None
        info = extended.get("info") if isinstance(extended, dict) else None
        if not movie_data or not info:
            raise ValueError("missing movie_data or info")

        stream_id = movie_data.get("stream_id")
        if stream_id in (None, ""):
            raise ValueError("missing stream_id")

        title.streams = {
            MAIN_STREAM_KEY: self.stream_url(MOVIES, stream_id, movie_data.get("container_extension")),
        }
        title.tmdb_id = _to_int(info.get("tmdb_id")) or None
        title.release_date = info.get("releasedate") or None
        return title

    def _parse_series_info(self, title: TitleData, extended: Dict[str, Any]) -> TitleData:
        if not isinstance(extended, dict):
            raise ValueError("invalid series info")
        info = extended.get("info")
        episodes = extended.get("episodes")
        if extended.get("seasons") is None or not info or not episodes:
            raise ValueError("missing seasons, info or episodes")

        if isinstance(episodes, dict):
            groups = list(episodes.values())
        else:
            groups = [g if isinstance(g, list) else [g] for g in episodes]

        streams: Dict[str, str] = {}
        for group in groups:
            for episode in group or []:
                episode_id = episode.get("id")
                if episode_id in (None, ""):
                    continue
                season_num = _to_int(episode.get("season_num", episode.get("season")))
                episode_num = _to_int(episode.get("episode_num"))
                if season_num is None:
                    season_num = 1
                if episode_num is None:
                    episode_num = 1
                streams[format_episode_key(season_num, episode_num)] = self.stream_url(
                    TVSHOWS, episode_id, episode.get("container_extension")
                )

        title.streams = streams
        title.release_date = info.get("releaseDate") or info.get("release_date") or None
        return title
