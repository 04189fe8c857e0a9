"""
Merge Engine

Builds canonical titles from matched provider titles.
- Groups provider titles by (type, tmdb_id)
- Regenerates a canonical title only when a contributing provider title changed
- Inverts provider streams into per-stream source lists
- Writes one stream document per (title, stream, provider)
- Enriches new titles with similar titles from TMDB
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..core.exceptions import TransientUpstreamError
from ..core.logging import get_logger
from ..models.title import (
    MAIN_STREAM_KEY,
    MOVIES,
    StreamDocument,
    format_episode_key,
    generate_title_key,
    parse_episode_key,
)
from .catalog_store import chunks, utc_now
from .tmdb import MEDIA_TYPE_MAP, TMDBClient

logger = get_logger(__name__)

MERGE_BATCH_SIZE = 50
SIMILAR_BATCH_SIZE = 20
SIMILAR_MAX_PAGES = 10
SIMILAR_MAX_FAILURES = 3

GroupKey = Tuple[str, int]
Member = Tuple[str, Dict[str, Any]]


def _title_label(title: Dict[str, Any]) -> str:
    name = title.get("title") or str(title.get("title_id"))
    year = str(title.get("release_date") or "")[:4]
    return f"{name} ({year})" if year else name


def _path_safe(value: str) -> str:
    return value.replace("/", "-").replace("\\", "-")


class MergeEngine:
    """Canonical title materialization and stream-source inversion."""

    def __init__(self, catalog, tmdb: TMDBClient):
        self.catalog = catalog
        self.tmdb = tmdb

    # ----- grouping -----

    @staticmethod
    def group_titles(
        provider_titles: Dict[str, List[Dict[str, Any]]],
        provider_order: Optional[List[str]] = None,
    ) -> Dict[GroupKey, List[Member]]:
        """Group matched, non-ignored provider titles by (type, tmdb_id)."""
        order = provider_order or list(provider_titles)
        groups: Dict[GroupKey, List[Member]] = {}
        for provider_id in order:
            for title in provider_titles.get(provider_id) or []:
                if title.get("ignored") or title.get("tmdb_id") in (None, ""):
                    continue
                key = (title["type"], int(title["tmdb_id"]))
                members = groups.setdefault(key, [])
                if any(pid == provider_id for pid, _ in members):
                    continue
                members.append((provider_id, title))
        return groups

    async def _complete_groups(
        self, groups: Dict[GroupKey, List[Member]], provider_order: List[str]
    ) -> Dict[GroupKey, List[Member]]:
        """Add the unchanged titles of other providers that share a TMDB id."""
        by_type: Dict[str, List[int]] = {}
        for media_type, tmdb_id in groups:
            by_type.setdefault(media_type, []).append(tmdb_id)

        complete: Dict[str, List[Dict[str, Any]]] = {pid: [] for pid in provider_order}
        for media_type, tmdb_ids in by_type.items():
            for title in await self.catalog.get_provider_titles_by_tmdb_ids(media_type, tmdb_ids, provider_order):
                complete.setdefault(title["provider_id"], []).append(title)

        # Titles passed in win over the stored copies
        for (media_type, tmdb_id), members in groups.items():
            for provider_id, title in members:
                stored = complete.setdefault(provider_id, [])
                stored[:] = [
                    t for t in stored
                    if not (t["type"] == media_type and t.get("tmdb_id") == tmdb_id)
                ]
                stored.append(title)

        return self.group_titles(complete, provider_order)

    @staticmethod
    def needs_regeneration(members: List[Member], existing: Optional[Dict[str, Any]]) -> bool:
        if existing is None:
            return True
        canonical_updated = existing.get("lastUpdated")
        if canonical_updated is None:
            return True
        if any(
            title.get("lastUpdated") is not None and title["lastUpdated"] > canonical_updated
            for _, title in members
        ):
            return True
        # A provider taken out of the sources (disabled, then enabled again) comes back
        present = {
            pid for entry in (existing.get("streams") or {}).values() for pid in entry.get("sources") or []
        }
        return any(title.get("streams") and pid not in present for pid, title in members)

    # ----- materialization -----

    async def _build_episode_streams(
        self, tmdb_id: int, details: Dict[str, Any], members: List[Member]
    ) -> Dict[str, Dict[str, Any]]:
        seasons = [
            s["season_number"] for s in details.get("seasons") or []
            if s.get("season_number") is not None and s["season_number"] >= 0
        ]
        season_data = await asyncio.gather(*(self.tmdb.get_season(tmdb_id, n) for n in seasons))

        episodes: Dict[str, Dict[str, Any]] = {}
        for season_number, season in zip(seasons, season_data):
            for episode in season.get("episodes") or []:
                number = episode.get("episode_number")
                if number is None:
                    continue
                key = format_episode_key(episode.get("season_number", season_number), number)
                episodes[key] = {
                    "air_date": episode.get("air_date"),
                    "name": episode.get("name"),
                    "overview": episode.get("overview"),
                    "still_path": episode.get("still_path"),
                    "sources": [],
                }

        for provider_id, title in members:
            for stream_key in title.get("streams") or {}:
                entry = episodes.get(stream_key)
                if entry is not None and provider_id not in entry["sources"]:
                    entry["sources"].append(provider_id)

        return {key: entry for key, entry in episodes.items() if entry["sources"]}

    async def build_title(
        self,
        media_type: str,
        tmdb_id: int,
        members: List[Member],
        existing: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Materialize one canonical title from TMDB details and its members."""
        details = await self.tmdb.get_details(MEDIA_TYPE_MAP[media_type], tmdb_id)

        if media_type == MOVIES:
            sources = [pid for pid, title in members if (title.get("streams") or {}).get(MAIN_STREAM_KEY)]
            streams = {MAIN_STREAM_KEY: {"sources": sources}} if sources else {}
        else:
            streams = await self._build_episode_streams(tmdb_id, details, members)

        now = utc_now()
        return {
            "title_id": tmdb_id,
            "type": media_type,
            "title_key": generate_title_key(media_type, tmdb_id),
            "title": details.get("title") or details.get("name"),
            "release_date": details.get("release_date") or details.get("first_air_date"),
            "vote_average": details.get("vote_average"),
            "overview": details.get("overview"),
            "poster_path": details.get("poster_path"),
            "genres": details.get("genres") or [],
            "streams": streams,
            "createdAt": existing["createdAt"] if existing and existing.get("createdAt") else now,
            "lastUpdated": now,
        }

    @staticmethod
    def build_stream_documents(title: Dict[str, Any], members: List[Member]) -> List[Dict[str, Any]]:
        """One stream document per stream key and source provider."""
        by_provider = {pid: t for pid, t in members}
        label = _title_label(title)
        folder = f"{title['type']}/{_path_safe(label)} [tmdb={title['title_id']}]"
        genres = ", ".join(g.get("name") for g in title.get("genres") or [] if g.get("name"))

        documents = []
        for stream_key, entry in (title.get("streams") or {}).items():
            for provider_id in entry.get("sources") or []:
                url = ((by_provider.get(provider_id) or {}).get("streams") or {}).get(stream_key)
                if not url:
                    continue

                fields: Dict[str, Any] = {
                    "title_key": title["title_key"],
                    "stream_id": stream_key,
                    "provider_id": provider_id,
                    "tvg_logo": title.get("poster_path"),
                    "group_title": genres,
                    "proxy_url": url,
                }
                if title["type"] == MOVIES:
                    fields.update(
                        tvg_id=f"tmdb-{title['title_id']}",
                        tvg_name=label,
                        tvg_type="movie",
                        proxy_path=f"{folder}/{_path_safe(label)}.strm",
                    )
                else:
                    season, episode = parse_episode_key(stream_key) or (0, 0)
                    tag = f"S{season:02d}E{episode:02d}"
                    fields.update(
                        tvg_id=f"tmdb-{title['title_id']}-{tag}",
                        tvg_name=f"{label} {tag}",
                        tvg_type="series",
                        tvg_season_num=season,
                        tvg_episode_num=episode,
                        proxy_path=(
                            f"{folder}/Season {season:02d}/"
                            f"{_path_safe(label)} S{season:02d}-E{episode:02d}.strm"
                        ),
                    )
                documents.append(StreamDocument(**fields).to_document())
        return documents

    @staticmethod
    def stale_sources(old: Optional[Dict[str, Any]], new: Dict[str, Any]) -> Dict[str, List[str]]:
        """provider_id -> stream keys the provider no longer serves for this title."""
        stale: Dict[str, List[str]] = {}
        if not old:
            return stale
        new_streams = new.get("streams") or {}
        for stream_key, entry in (old.get("streams") or {}).items():
            kept = set((new_streams.get(stream_key) or {}).get("sources") or [])
            for provider_id in entry.get("sources") or []:
                if provider_id not in kept:
                    stale.setdefault(provider_id, []).append(stream_key)
        return stale

    # ----- runs -----

    async def process_main_titles(
        self,
        provider_titles: Dict[str, List[Dict[str, Any]]],
        provider_order: Optional[List[str]] = None,
        check_cancelled: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> Dict[str, Any]:
        """
        Merge provider titles into canonical titles.

        Args:
            provider_titles: provider_id -> changed provider titles
            provider_order: enabled provider ids by priority; sources follow this order

        Returns:
            {"movies": n, "tvshows": n, "skipped": n, "failed": n, "retryable": n,
             "streams": n, "titles": [...]}

            `retryable` counts failures on transient TMDB errors.
            `titles` holds the saved titles that still have streams.
        """
        order = provider_order or list(provider_titles)
        groups = self.group_titles(provider_titles, order)
        if groups:
            groups = await self._complete_groups(groups, order)

        existing = {
            t["title_key"]: t
            for t in await self.catalog.get_main_titles_by_keys(
                generate_title_key(media_type, tmdb_id) for media_type, tmdb_id in groups
            )
        }

        result: Dict[str, Any] = {"movies": 0, "tvshows": 0, "skipped": 0, "failed": 0, "retryable": 0, "streams": 0}
        pending = []
        for (media_type, tmdb_id), members in groups.items():
            current = existing.get(generate_title_key(media_type, tmdb_id))
            if self.needs_regeneration(members, current):
                pending.append((media_type, tmdb_id, members, current))
            else:
                result["skipped"] += 1

        logger.info("merge_started", groups=len(groups), regenerate=len(pending), skipped=result["skipped"])

        saved_titles: List[Dict[str, Any]] = []
        for batch in chunks(pending, MERGE_BATCH_SIZE):
            if check_cancelled is not None:
                await check_cancelled()

            built = await asyncio.gather(
                *(self.build_title(media_type, tmdb_id, members, current)
                  for media_type, tmdb_id, members, current in batch),
                return_exceptions=True,
            )

            titles = []
            documents = []
            stale = []
            for (media_type, tmdb_id, members, current), title in zip(batch, built):
                if isinstance(title, Exception):
                    result["failed"] += 1
                    if isinstance(title, TransientUpstreamError):
                        result["retryable"] += 1
                    logger.warning(
                        "title_build_failed",
                        title_key=generate_title_key(media_type, tmdb_id),
                        error=str(title),
                    )
                    continue
                titles.append(title)
                documents.extend(self.build_stream_documents(title, members))
                stale.append((title["title_key"], self.stale_sources(current, title)))
                result[media_type] += 1

            await self.catalog.save_main_titles(titles)
            await self.catalog.save_title_streams(documents)
            for title_key, by_provider in stale:
                for provider_id, stream_ids in by_provider.items():
                    await self.catalog.delete_title_streams(title_key, provider_id, stream_ids)

            result["streams"] += len(documents)
            saved_titles.extend(titles)

        if any(not t["streams"] for t in saved_titles):
            await self.catalog.delete_titles_without_sources()

        logger.info(
            "merge_completed",
            movies=result["movies"],
            tvshows=result["tvshows"],
            skipped=result["skipped"],
            failed=result["failed"],
            retryable=result["retryable"],
            streams=result["streams"],
        )
        # Titles left without sources were deleted above
        result["titles"] = [t for t in saved_titles if t["streams"]]
        return result

    @staticmethod
    def needs_similar(title: Dict[str, Any]) -> bool:
        """New and never enriched."""
        return (
            "similar" not in title
            and title.get("similar_enriched_at") is None
            and title.get("createdAt") is not None
            and title.get("createdAt") == title.get("lastUpdated")
        )

    async def _fetch_similar(self, title: Dict[str, Any], known_keys: set) -> List[str]:
        media_type = MEDIA_TYPE_MAP[title["type"]]
        similar: List[str] = []
        failures = 0

        for page in range(1, SIMILAR_MAX_PAGES + 1):
            try:
                data = await self.tmdb.get_similar(media_type, title["title_id"], page)
            except Exception as e:
                failures += 1
                logger.debug("similar_page_failed", title_key=title["title_key"], page=page, error=str(e))
                if failures >= SIMILAR_MAX_FAILURES:
                    break
                continue
            failures = 0

            for item in data.get("results") or []:
                key = generate_title_key(title["type"], item.get("id"))
                if key in known_keys and key != title["title_key"] and key not in similar:
                    similar.append(key)

            if page >= (data.get("total_pages") or 0):
                break

        return similar

    async def enrich_similar_titles(self, titles: List[Dict[str, Any]]) -> Dict[str, int]:
        """Record similar titles (within the catalog) for new titles."""
        candidates = [t for t in titles if self.needs_similar(t)]
        if not candidates:
            return {"enriched": 0}

        known_keys = set(await self.catalog.get_main_title_keys())
        enriched = 0
        for batch in chunks(candidates, SIMILAR_BATCH_SIZE):
            results = await asyncio.gather(*(self._fetch_similar(t, known_keys) for t in batch))
            now = utc_now()
            updates = []
            for title, similar in zip(batch, results):
                title["similar"] = similar
                title["similar_enriched_at"] = now
                title["lastUpdated"] = now
                updates.append({
                    "title_key": title["title_key"],
                    "similar": similar,
                    "similar_enriched_at": now,
                    "lastUpdated": now,
                })
            await self.catalog.save_main_titles(updates, upsert=False)
            enriched += len(updates)

        logger.info("similar_titles_enriched", count=enriched)
        return {"enriched": enriched}
