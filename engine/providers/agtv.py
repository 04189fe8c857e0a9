"""
AGTV Provider

M3U8 listings per media type:
    {api_url}/api/list/{user}/{pass}/m3u8/{movies|tvshows}[/{page}]

Titles are keyed by their IMDB id (tvg-id). TV listings are paginated
and carry one line per episode; episodes are grouped by tvg-id.
"""

import re
from typing import Any, Dict, List, Optional

from ..core.exceptions import EndOfPaginationError, UpstreamHTTPError
from ..models.title import MAIN_STREAM_KEY, MOVIES, TVSHOWS, TitleData, format_episode_key
from .base import BaseIPTVProvider, streams_unchanged

# A full page holds this many streams; fewer means last page
PAGE_STREAM_LIMIT = 5000

_EXTINF_RE = re.compile(r"^#EXTINF:(-?\d+(?:\.\d+)?)(.*)$")
_ATTR_RE = re.compile(r'([\w-]+)="([^"]*)"')
_LEADING_NUMBER_RE = re.compile(r"^(\d+)")


def parse_m3u8(text: str) -> List[Dict[str, Any]]:
    """
    Parse an M3U8 listing into entries.

    Each "#EXTINF" line opens an entry, the next non-comment line is its URL.

    Returns:
        [{"tvg-id", "tvg-name", "tvg-type", "group-title", ..., "titleName", "url"}]
    """
    entries: List[Dict[str, Any]] = []
    current: Optional[Dict[str, Any]] = None

    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue

        if line.startswith("#EXTINF:"):
            match = _EXTINF_RE.match(line)
            if not match:
                current = None
                continue
            rest = match.group(2)
            entry: Dict[str, Any] = dict(_ATTR_RE.findall(rest))
            remainder = _ATTR_RE.sub("", rest)
            entry["titleName"] = remainder.split(",", 1)[1].strip() if "," in remainder else ""
            entry["duration"] = match.group(1)
            current = entry
        elif line.startswith("#"):
            continue
        elif current is not None:
            current["url"] = line
            entries.append(current)
            current = None

    return entries


def parse_episode_from_url(url: str) -> Optional[tuple]:
    """Season and episode from the last two URL path segments."""
    segments = [s for s in url.split("?", 1)[0].rstrip("/").split("/") if s]
    if len(segments) < 2:
        return None
    season = _LEADING_NUMBER_RE.match(segments[-2])
    episode = _LEADING_NUMBER_RE.match(segments[-1])
    if not season or not episode:
        return None
    return int(season.group(1)), int(episode.group(1))


class AGTVProvider(BaseIPTVProvider):
    """AGTV adapter."""

    provider_type = "agtv"
    supports_categories = False
    fixed_batch_size = 500

    def _list_url(self, media_type: str, page: Optional[int] = None) -> str:
        base = self.config.api_url.rstrip("/")
        url = f"{base}/api/list/{self.config.username}/{self.config.password}/m3u8/{media_type}"
        return f"{url}/{page}" if page is not None else url

    async def _fetch_page(self, media_type: str, page: int) -> List[Dict[str, Any]]:
        try:
            text = await self.http.get_text(
                self._list_url(media_type, page),
                cache_key=self.metadata_cache_key(media_type, "m3u8", page),
            )
        except UpstreamHTTPError as e:
            if e.upstream_status == 404 and page > 1:
                raise EndOfPaginationError(page)
            raise
        return parse_m3u8(text)

    async def fetch_raw_titles(self, media_type: str) -> List[Dict[str, Any]]:
        if media_type == MOVIES:
            text = await self.http.get_text(
                self._list_url(media_type),
                cache_key=self.metadata_cache_key(media_type, "m3u8"),
            )
            return parse_m3u8(text)

        entries: List[Dict[str, Any]] = []
        page = 1
        while True:
            try:
                page_entries = await self._fetch_page(media_type, page)
            except EndOfPaginationError:
                break
            if not page_entries:
                break
            entries.extend(page_entries)
            self.logger.debug("agtv_page_fetched", type=media_type, page=page, streams=len(page_entries))
            if len(page_entries) < PAGE_STREAM_LIMIT:
                break
            page += 1

        return self._group_episodes(entries)

    def _group_episodes(self, entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        shows: Dict[str, Dict[str, Any]] = {}
        unparsed = 0
        for entry in entries:
            tvg_id = entry.get("tvg-id")
            url = entry.get("url")
            episode = parse_episode_from_url(url or "")
            if not tvg_id or episode is None:
                unparsed += 1
                continue

            show = shows.get(tvg_id)
            if show is None:
                show = {
                    "tvg-id": tvg_id,
                    "tvg-name": entry.get("tvg-name"),
                    "tvg-type": entry.get("tvg-type"),
                    "group-title": entry.get("group-title"),
                    "titleName": entry.get("titleName"),
                    "streams": {},
                }
                shows[tvg_id] = show
            show["streams"][format_episode_key(*episode)] = url

        if unparsed:
            self.logger.warning("agtv_episodes_unparsed", count=unparsed)
        return list(shows.values())

    def get_title_id(self, raw: Dict[str, Any], media_type: str) -> Optional[str]:
        return raw.get("tvg-id")

    def should_skip(self, raw: Dict[str, Any], existing: Dict[str, Any], media_type: str) -> bool:
        if media_type == TVSHOWS:
            return streams_unchanged(raw.get("streams") or {}, existing)
        return True

    def build_processed_title(self, raw: Dict[str, Any], media_type: str) -> TitleData:
        if media_type == MOVIES:
            streams = {MAIN_STREAM_KEY: raw["url"]}
        else:
            streams = dict(raw.get("streams") or {})

        return TitleData(
            title_id=str(raw["tvg-id"]),
            type=media_type,
            title=raw.get("tvg-name") or raw.get("titleName"),
            streams=streams,
            raw=raw,
        )
