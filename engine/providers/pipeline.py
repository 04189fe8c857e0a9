"""
Provider Pipeline

fetch -> filter -> enrich in bounded batches -> incremental save.

Enriched titles collect in a TitleAccumulator that the provider's
ProgressCoordinator flushes periodically and once more at the end.
"""

import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from ..config import get_settings
from ..core.exceptions import PersistenceError
from ..core.logging import get_logger
from ..models.title import ProviderTitle, TitleData, generate_title_key
from ..services.catalog_store import chunks, utc_now

logger = get_logger(__name__)

EXTENDED_INFO_FAILED = "Extended info fetch failed: {}"
MATCHING_FAILED = "TMDB matching failed"


class TitleAccumulator:
    """
    Titles waiting to be saved.

    A flush saves a snapshot and removes it only when both writes
    succeeded; titles added meanwhile stay for the next flush.
    """

    def __init__(self, provider_id: str, catalog):
        self.provider_id = provider_id
        self.catalog = catalog
        self._titles: List[TitleData] = []
        self._lock = asyncio.Lock()
        self.inserted = 0
        self.updated = 0
        self.ignored = 0

    def add(self, title: TitleData):
        self._titles.append(title)

    def __len__(self) -> int:
        return len(self._titles)

    async def flush(self):
        async with self._lock:
            if not self._titles:
                return

            pending = list(self._titles)
            documents = [ProviderTitle.from_title_data(t).to_document() for t in pending]
            ignored = {t.title_key: t.ignored_reason for t in pending if t.ignored}

            try:
                result = await self.catalog.save_provider_titles(self.provider_id, documents)
                await self.catalog.save_ignored_titles(self.provider_id, ignored)
            except Exception as e:
                logger.error(
                    "titles_flush_failed",
                    provider_id=self.provider_id,
                    pending=len(pending),
                    error=str(e),
                )
                return

            del self._titles[:len(pending)]
            self.inserted += result["inserted"]
            self.updated += result["updated"]
            self.ignored += len(ignored)
            logger.debug(
                "titles_flushed",
                provider_id=self.provider_id,
                saved=len(pending),
                inserted=result["inserted"],
                updated=result["updated"],
                ignored=len(ignored),
            )


class ProviderPipeline:
    """Runs one provider's fetch_metadata for a media type."""

    def __init__(self, provider):
        self.provider = provider

    def filter_titles(
        self,
        media_type: str,
        raw_titles: List[Dict[str, Any]],
        existing: Dict[str, Dict[str, Any]],
    ) -> Tuple[List[Tuple[Dict[str, Any], str]], Dict[str, int]]:
        """
        Select raw titles that need processing.

        Ignored titles are left alone until `ignored_retry_hours` after
        their last update, then re-examined regardless of should_skip.

        Returns:
            ([(raw, title_id)], counts per drop reason)
        """
        provider = self.provider
        retry_cutoff = utc_now() - timedelta(hours=get_settings().ignored_retry_hours)
        counts = {"missing_id": 0, "duplicate": 0, "category_disabled": 0, "ignored": 0, "unchanged": 0}
        selected: List[Tuple[Dict[str, Any], str]] = []
        seen = set()

        for raw in raw_titles:
            title_id = provider.get_title_id(raw, media_type)
            if title_id is None or str(title_id).strip() == "":
                counts["missing_id"] += 1
                continue
            title_id = str(title_id)

            title_key = generate_title_key(media_type, title_id)
            if title_key in seen:
                counts["duplicate"] += 1
                continue
            seen.add(title_key)

            if provider.supports_categories and not provider.is_category_enabled(
                media_type, provider.get_category_id(raw, media_type)
            ):
                counts["category_disabled"] += 1
                continue

            current = existing.get(title_key)
            if current is not None and current.get("ignored"):
                last_updated = current.get("lastUpdated")
                if last_updated is None or last_updated > retry_cutoff:
                    counts["ignored"] += 1
                    continue
            elif current is not None and provider.should_skip(raw, current, media_type):
                counts["unchanged"] += 1
                continue

            selected.append((raw, title_id))

        return selected, counts

    async def process_title(self, raw: Dict[str, Any], media_type: str) -> Optional[TitleData]:
        """Enrich one raw title. Returns None when the raw entry is unusable."""
        provider = self.provider
        try:
            title = provider.build_processed_title(raw, media_type)
        except (KeyError, TypeError, ValueError) as e:
            provider.logger.warning("raw_title_invalid", type=media_type, error=str(e))
            return None

        try:
            extended = await provider.fetch_extended_info(raw, media_type)
            if extended is not None:
                title = provider.parse_extended_info(title, extended)
        except Exception as e:
            title.mark_ignored(EXTENDED_INFO_FAILED.format(getattr(e, "message", None) or str(e)))

        title.title = provider.apply_cleanup(title.title)

        if title.ignored:
            return title

        if title.tmdb_id is None:
            try:
                title.tmdb_id = await provider.matcher.match(title, provider.provider_type)
            except Exception as e:
                provider.logger.warning(
                    "title_match_error", title_key=title.title_key, error=str(e)
                )
                title.tmdb_id = None

        if title.tmdb_id is None:
            title.mark_ignored(MATCHING_FAILED)
        else:
            title.ignored = False
            title.ignored_reason = None
        return title

    async def run(self, media_type: str, check_cancelled=None) -> Dict[str, Any]:
        """
        fetch_metadata for one media type.

        Returns:
            Counts: fetched, filtered, processed, inserted, updated, ignored
        """
        provider = self.provider
        log = provider.logger.bind(type=media_type)

        existing_docs = await provider.catalog.get_provider_titles(provider.id, media_type=media_type)
        existing = {doc["title_key"]: doc for doc in existing_docs}

        raw_titles = await provider.fetch_raw_titles(media_type)
        selected, counts = self.filter_titles(media_type, raw_titles, existing)
        log.info("titles_filtered", fetched=len(raw_titles), selected=len(selected), **counts)

        accumulator = TitleAccumulator(provider.id, provider.catalog)
        progress_key = f"{provider.id}:{media_type}"
        remaining = len(selected)
        provider.progress.register(progress_key, remaining, accumulator.flush)

        processed = 0
        try:
            for batch in chunks(selected, provider.batch_size):
                if check_cancelled is not None:
                    await check_cancelled()

                results = await asyncio.gather(
                    *(self.process_title(raw, media_type) for raw, _ in batch)
                )
                for title in results:
                    if title is not None:
                        accumulator.add(title)
                        processed += 1

                remaining -= len(batch)
                provider.progress.update(progress_key, remaining)
        finally:
            provider.progress.update(progress_key, 0)
            await provider.progress.unregister(progress_key)

        if len(accumulator):
            raise PersistenceError("provider_titles", f"{len(accumulator)} titles could not be saved")

        summary = {
            "fetched": len(raw_titles),
            "filtered": len(raw_titles) - len(selected),
            "processed": processed,
            "inserted": accumulator.inserted,
            "updated": accumulator.updated,
            "ignored": accumulator.ignored,
        }
        log.info("titles_processed", **summary)
        return summary
