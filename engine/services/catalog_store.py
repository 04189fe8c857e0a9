"""
Catalog Store Service

MongoDB access for the whole engine (motor).
Bulk operations run in batches of 1000 documents.

Collections:
- provider_titles: raw titles per provider
- titles: canonical titles keyed by title_key
- title_streams: one document per (title_key, stream_id, provider_id)
- provider_categories, iptv_providers, job_history, cache_policy, settings
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional

from pymongo import ASCENDING, UpdateOne
from pymongo.errors import PyMongoError

from ..core.exceptions import PersistenceError
from ..core.logging import get_logger
from ..models.job import JobStatus
from ..models.title import generate_category_key, generate_title_key

logger = get_logger(__name__)

BATCH_SIZE = 1000

PROVIDER_TITLES = "provider_titles"
TITLES = "titles"
TITLE_STREAMS = "title_streams"
PROVIDER_CATEGORIES = "provider_categories"
IPTV_PROVIDERS = "iptv_providers"
JOB_HISTORY = "job_history"
CACHE_POLICY = "cache_policy"
SETTINGS = "settings"

CHECK_FIELDS = ("last_provider_check", "last_settings_check", "last_policy_check")


def canonical_key(title: Dict[str, Any]) -> Optional[str]:
    """Canonical title key a provider title contributes to, if any."""
    if title.get("ignored") or title.get("tmdb_id") in (None, ""):
        return None
    return generate_title_key(title["type"], title["tmdb_id"])


def utc_now() -> datetime:
    """Naive UTC now at millisecond precision (what MongoDB stores)."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def chunks(items: List[Any], size: int = BATCH_SIZE) -> Iterator[List[Any]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class CatalogStore:
    """Typed operations over the engine's MongoDB collections."""

    def __init__(self, db):
        self.db = db

    # ----- setup -----

    async def ensure_indexes(self):
        """Create the unique indexes the catalog relies on."""
        await self.db[PROVIDER_TITLES].create_index(
            [("provider_id", ASCENDING), ("title_key", ASCENDING)], unique=True
        )
        await self.db[PROVIDER_TITLES].create_index([("provider_id", ASCENDING), ("lastUpdated", ASCENDING)])
        await self.db[TITLES].create_index([("title_key", ASCENDING)], unique=True)
        await self.db[TITLE_STREAMS].create_index(
            [("title_key", ASCENDING), ("stream_id", ASCENDING), ("provider_id", ASCENDING)],
            unique=True,
        )
        await self.db[TITLE_STREAMS].create_index([("provider_id", ASCENDING)])
        await self.db[PROVIDER_CATEGORIES].create_index(
            [("provider_id", ASCENDING), ("category_key", ASCENDING)], unique=True
        )
        await self.db[JOB_HISTORY].create_index(
            [("job_name", ASCENDING), ("provider_id", ASCENDING)], unique=True
        )
        await self.db[IPTV_PROVIDERS].create_index([("id", ASCENDING)], unique=True)
        logger.info("catalog_indexes_ensured")

    async def _bulk_write(self, collection: str, operations: List[UpdateOne]) -> Dict[str, int]:
        upserted = 0
        modified = 0
        try:
            for batch in chunks(operations):
                result = await self.db[collection].bulk_write(batch, ordered=False)
                upserted += result.upserted_count
                modified += result.modified_count
        except PyMongoError as e:
            raise PersistenceError(collection, str(e))
        return {"inserted": upserted, "updated": modified}

    # ----- provider titles -----

    async def get_provider_titles(
        self,
        provider_id: str,
        since: Optional[datetime] = None,
        media_type: Optional[str] = None,
        ignored: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"provider_id": provider_id}
        if since is not None:
            query["lastUpdated"] = {"$gt": since}
        if media_type is not None:
            query["type"] = media_type
        if ignored is True:
            query["ignored"] = True
        elif ignored is False:
            query["ignored"] = {"$ne": True}
        return await self.db[PROVIDER_TITLES].find(query, {"_id": 0}).to_list(length=None)

    async def save_provider_titles(self, provider_id: str, titles: List[Dict[str, Any]]) -> Dict[str, int]:
        """
        Insert new titles and update existing ones whose stored fields differ.

        Existence is probed first, in batches, on (provider_id, title_key).
        An update that moves a title off its canonical title (now ignored,
        or matched to another TMDB id) removes the provider from that
        canonical title and drops its stream documents there.

        Returns:
            {"inserted": n, "updated": n, "released": n}
        """
        if not titles:
            return {"inserted": 0, "updated": 0, "released": 0}

        collection = self.db[PROVIDER_TITLES]
        by_key = {t["title_key"]: t for t in titles}
        keys = list(by_key)

        existing: Dict[str, Dict[str, Any]] = {}
        try:
            for batch in chunks(keys):
                cursor = collection.find({"provider_id": provider_id, "title_key": {"$in": batch}})
                async for doc in cursor:
                    existing[doc["title_key"]] = doc
        except PyMongoError as e:
            raise PersistenceError(PROVIDER_TITLES, str(e))

        now = utc_now()
        inserts: List[Dict[str, Any]] = []
        updates: List[UpdateOne] = []
        released: List[str] = []
        for key, title in by_key.items():
            current = existing.get(key)
            if current is None:
                inserts.append({**title, "provider_id": provider_id, "createdAt": now, "lastUpdated": now})
            elif any(current.get(field) != value for field, value in title.items()):
                updates.append(UpdateOne({"_id": current["_id"]}, {"$set": {**title, "lastUpdated": now}}))
                previous = canonical_key(current)
                if previous is not None and previous != canonical_key({**current, **title}):
                    released.append(previous)

        try:
            for batch in chunks(inserts):
                await collection.insert_many(batch, ordered=False)
        except PyMongoError as e:
            raise PersistenceError(PROVIDER_TITLES, str(e))
        result = await self._bulk_write(PROVIDER_TITLES, updates)

        if released:
            released = sorted(set(released))
            await self.remove_provider_from_titles(provider_id, released)
            await self.delete_titles_without_sources()
            logger.info("provider_titles_released", provider_id=provider_id, titles=len(released))

        return {"inserted": len(inserts), "updated": result["updated"], "released": len(released)}

    async def save_ignored_titles(self, provider_id: str, ignored: Dict[str, str]) -> int:
        """
        Mark provider titles as ignored.

        Args:
            ignored: title_key -> reason

        Returns:
            Number of documents modified
        """
        if not ignored:
            return 0

        groups: Dict[str, List[str]] = {}
        for title_key, reason in ignored.items():
            groups.setdefault(reason, []).append(title_key)

        now = utc_now()
        modified = 0
        try:
            for reason, keys in groups.items():
                for batch in chunks(keys):
                    result = await self.db[PROVIDER_TITLES].update_many(
                        {"provider_id": provider_id, "title_key": {"$in": batch}},
                        {"$set": {"ignored": True, "ignored_reason": reason, "lastUpdated": now}},
                    )
                    modified += result.modified_count
        except PyMongoError as e:
            raise PersistenceError(PROVIDER_TITLES, str(e))
        return modified

    async def get_provider_titles_by_tmdb_ids(
        self, media_type: str, tmdb_ids: Iterable[int], provider_ids: List[str]
    ) -> List[Dict[str, Any]]:
        """Matched, non-ignored titles of the given providers for a set of TMDB ids."""
        ids = list(dict.fromkeys(tmdb_ids))
        titles: List[Dict[str, Any]] = []
        for batch in chunks(ids):
            cursor = self.db[PROVIDER_TITLES].find(
                {
                    "type": media_type,
                    "tmdb_id": {"$in": batch},
                    "provider_id": {"$in": list(provider_ids)},
                    "ignored": {"$ne": True},
                },
                {"_id": 0},
            )
            titles.extend(await cursor.to_list(length=None))
        return titles

    async def delete_provider_titles(self, provider_id: str, title_keys: Optional[List[str]] = None) -> int:
        collection = self.db[PROVIDER_TITLES]
        if title_keys is None:
            result = await collection.delete_many({"provider_id": provider_id})
            return result.deleted_count

        deleted = 0
        for batch in chunks(title_keys):
            result = await collection.delete_many({"provider_id": provider_id, "title_key": {"$in": batch}})
            deleted += result.deleted_count
        return deleted

    async def delete_provider_titles_by_categories(
        self, provider_id: str, media_type: str, category_ids: List[str]
    ) -> List[Dict[str, Any]]:
        """Delete a provider's titles in the given categories and return them."""
        if not category_ids:
            return []
        query = {"provider_id": provider_id, "type": media_type, "category_id": {"$in": list(category_ids)}}
        removed = await self.db[PROVIDER_TITLES].find(query, {"_id": 0}).to_list(length=None)
        if removed:
            await self.db[PROVIDER_TITLES].delete_many(query)
        return removed

    # ----- canonical titles -----

    async def get_main_titles(self, query: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self.db[TITLES].find(query or {}, {"_id": 0}).to_list(length=None)

    async def get_main_titles_by_keys(self, title_keys: Iterable[str]) -> List[Dict[str, Any]]:
        keys = list(dict.fromkeys(title_keys))
        titles: List[Dict[str, Any]] = []
        for batch in chunks(keys):
            titles.extend(
                await self.db[TITLES].find({"title_key": {"$in": batch}}, {"_id": 0}).to_list(length=None)
            )
        return titles

    async def get_main_title_keys(self) -> List[str]:
        return await self.db[TITLES].distinct("title_key")

    async def save_main_titles(self, titles: List[Dict[str, Any]], upsert: bool = True) -> Dict[str, int]:
        """Write canonical titles; with upsert=False only existing titles are touched."""
        operations = [
            UpdateOne({"title_key": t["title_key"]}, {"$set": t}, upsert=upsert)
            for t in titles
        ]
        return await self._bulk_write(TITLES, operations)

    async def delete_titles_without_sources(self) -> int:
        result = await self.db[TITLES].delete_many(
            {"$or": [{"streams": {}}, {"streams": {"$exists": False}}, {"streams": None}]}
        )
        if result.deleted_count:
            logger.info("titles_without_sources_deleted", count=result.deleted_count)
        return result.deleted_count

    # ----- title streams -----

    async def save_title_streams(self, docs: List[Dict[str, Any]]) -> Dict[str, int]:
        now = utc_now()
        operations = []
        for doc in docs:
            fields = {k: v for k, v in doc.items() if k != "createdAt"}
            fields["lastUpdated"] = now
            operations.append(
                UpdateOne(
                    {"title_key": doc["title_key"], "stream_id": doc["stream_id"], "provider_id": doc["provider_id"]},
                    {"$set": fields, "$setOnInsert": {"createdAt": now}},
                    upsert=True,
                )
            )
        return await self._bulk_write(TITLE_STREAMS, operations)

    async def get_title_streams(self, query: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self.db[TITLE_STREAMS].find(query or {}, {"_id": 0}).to_list(length=None)

    async def delete_provider_title_streams(self, provider_id: str) -> int:
        result = await self.db[TITLE_STREAMS].delete_many({"provider_id": provider_id})
        return result.deleted_count

    async def delete_title_streams_by_titles(self, provider_id: str, title_keys: List[str]) -> int:
        deleted = 0
        for batch in chunks(list(title_keys)):
            result = await self.db[TITLE_STREAMS].delete_many(
                {"provider_id": provider_id, "title_key": {"$in": batch}}
            )
            deleted += result.deleted_count
        return deleted

    async def delete_title_streams(self, title_key: str, provider_id: str, stream_ids: List[str]) -> int:
        """Delete a provider's documents for specific streams of one title."""
        if not stream_ids:
            return 0
        result = await self.db[TITLE_STREAMS].delete_many(
            {"title_key": title_key, "provider_id": provider_id, "stream_id": {"$in": list(stream_ids)}}
        )
        return result.deleted_count

    async def remove_provider_from_titles(
        self, provider_id: str, title_keys: Optional[List[str]] = None
    ) -> Dict[str, int]:
        """
        Remove a provider from canonical stream sources and drop its stream documents.

        The canonical titles touched are the ones the provider has stream
        documents for (or `title_keys` when given). A stream left without
        sources is removed; sibling metadata of the others is preserved.
        """
        if title_keys is None:
            title_keys = await self.db[TITLE_STREAMS].distinct("title_key", {"provider_id": provider_id})
        if not title_keys:
            return {"titles_updated": 0, "streams_removed": 0}

        titles = await self.get_main_titles_by_keys(title_keys)

        now = utc_now()
        operations = []
        for title in titles:
            streams = title.get("streams") or {}
            changed = False
            remaining: Dict[str, Any] = {}
            for stream_key, entry in streams.items():
                sources = entry.get("sources") or []
                if provider_id in sources:
                    changed = True
                    sources = [s for s in sources if s != provider_id]
                    if not sources:
                        continue
                    entry = {**entry, "sources": sources}
                remaining[stream_key] = entry
            if changed:
                operations.append(
                    UpdateOne(
                        {"title_key": title["title_key"]},
                        {"$set": {"streams": remaining, "lastUpdated": now}},
                    )
                )

        result = await self._bulk_write(TITLES, operations)
        streams_removed = await self.delete_title_streams_by_titles(provider_id, list(title_keys))

        logger.info(
            "provider_removed_from_titles",
            provider_id=provider_id,
            titles_updated=result["updated"],
            streams_removed=streams_removed,
        )
        return {"titles_updated": result["updated"], "streams_removed": streams_removed}

    # ----- categories -----

    async def get_provider_categories(
        self, provider_id: str, media_type: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"provider_id": provider_id}
        if media_type is not None:
            query["type"] = media_type
        return await self.db[PROVIDER_CATEGORIES].find(query, {"_id": 0}).to_list(length=None)

    async def save_provider_categories(
        self, provider_id: str, media_type: str, categories: List[Dict[str, Any]]
    ) -> Dict[str, int]:
        now = utc_now()
        operations = []
        for category in categories:
            category_key = generate_category_key(media_type, category["category_id"])
            operations.append(
                UpdateOne(
                    {"provider_id": provider_id, "category_key": category_key},
                    {
                        "$set": {
                            "category_id": str(category["category_id"]),
                            "category_name": category.get("category_name"),
                            "type": media_type,
                            "enabled": bool(category.get("enabled", False)),
                            "lastUpdated": now,
                        },
                        "$setOnInsert": {"createdAt": now},
                    },
                    upsert=True,
                )
            )
        result = await self._bulk_write(PROVIDER_CATEGORIES, operations)
        return {"saved": len(operations), **result}

    async def delete_provider_categories(
        self, provider_id: str, category_keys: Optional[List[str]] = None
    ) -> int:
        query: Dict[str, Any] = {"provider_id": provider_id}
        if category_keys is not None:
            query["category_key"] = {"$in": list(category_keys)}
        result = await self.db[PROVIDER_CATEGORIES].delete_many(query)
        return result.deleted_count

    # ----- providers -----

    async def get_iptv_providers(self) -> List[Dict[str, Any]]:
        """Enabled, not deleted providers ordered by priority."""
        cursor = self.db[IPTV_PROVIDERS].find(
            {"enabled": True, "deleted": {"$ne": True}}, {"_id": 0}
        ).sort("priority", ASCENDING)
        return await cursor.to_list(length=None)

    async def get_iptv_provider(self, provider_id: str) -> Optional[Dict[str, Any]]:
        return await self.db[IPTV_PROVIDERS].find_one({"id": provider_id}, {"_id": 0})

    async def get_deleted_providers(self) -> List[Dict[str, Any]]:
        return await self.db[IPTV_PROVIDERS].find({"deleted": True}, {"_id": 0}).to_list(length=None)

    async def get_providers_changed_since(self, since: Optional[datetime]) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if since is not None:
            query["lastUpdated"] = {"$gt": since}
        return await self.db[IPTV_PROVIDERS].find(query, {"_id": 0}).to_list(length=None)

    async def update_provider_categories(self, provider_id: str, enabled_categories: Dict[str, List[str]]):
        """Rewrite a provider's enabled category keys."""
        await self.db[IPTV_PROVIDERS].update_one(
            {"id": provider_id}, {"$set": {"enabled_categories": enabled_categories}}
        )

    # ----- jobs -----

    async def get_job_history(self, job_name: str, provider_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return await self.db[JOB_HISTORY].find_one(
            {"job_name": job_name, "provider_id": provider_id}, {"_id": 0}
        )

    async def get_job_status(self, job_name: str, provider_id: Optional[str] = None) -> Optional[str]:
        history = await self.get_job_history(job_name, provider_id)
        return history.get("status") if history else None

    async def update_job_status(self, job_name: str, status: JobStatus, provider_id: Optional[str] = None):
        now = utc_now()
        await self.db[JOB_HISTORY].update_one(
            {"job_name": job_name, "provider_id": provider_id},
            {
                "$set": {"status": JobStatus(status).value, "lastUpdated": now},
                "$setOnInsert": {"createdAt": now, "execution_count": 0},
            },
            upsert=True,
        )

    async def update_job_history(
        self,
        job_name: str,
        result: Optional[Dict[str, Any]] = None,
        provider_id: Optional[str] = None,
        advance: bool = True,
    ):
        """
        Record the outcome of a run.

        Status is failed when `result["error"]` is set, completed otherwise.
        last_execution only advances on success, and not at all with
        advance=False. Check timestamps are lifted out of the result onto
        the document.
        """
        result = dict(result or {})
        checks = {field: result.pop(field) for field in CHECK_FIELDS if field in result}
        error = result.get("error")

        now = utc_now()
        fields: Dict[str, Any] = {
            "status": (JobStatus.FAILED if error else JobStatus.COMPLETED).value,
            "last_result": result,
            "lastUpdated": now,
            **checks,
        }
        if advance and not error:
            fields["last_execution"] = now

        await self.db[JOB_HISTORY].update_one(
            {"job_name": job_name, "provider_id": provider_id},
            {"$set": fields, "$inc": {"execution_count": 1}, "$setOnInsert": {"createdAt": now}},
            upsert=True,
        )

    async def reset_in_progress_jobs(self) -> int:
        """Move every running job to cancelled (startup recovery)."""
        result = await self.db[JOB_HISTORY].update_many(
            {"status": JobStatus.RUNNING.value},
            {"$set": {"status": JobStatus.CANCELLED.value, "lastUpdated": utc_now()}},
        )
        return result.modified_count

    # ----- cache policies -----

    async def get_cache_policies(self) -> Dict[str, Optional[float]]:
        docs = await self.db[CACHE_POLICY].find({}).to_list(length=None)
        return {doc["_id"]: doc.get("value") for doc in docs}

    async def get_cache_policies_changed_since(self, since: Optional[datetime]) -> Dict[str, Optional[float]]:
        query: Dict[str, Any] = {}
        if since is not None:
            query["lastUpdated"] = {"$gt": since}
        docs = await self.db[CACHE_POLICY].find(query).to_list(length=None)
        return {doc["_id"]: doc.get("value") for doc in docs}

    async def update_cache_policy(self, policy_key: str, value: Optional[float], provider_id: Optional[str] = None):
        fields: Dict[str, Any] = {"value": value, "lastUpdated": utc_now()}
        if provider_id is not None:
            fields["provider_id"] = provider_id
        await self.db[CACHE_POLICY].update_one({"_id": policy_key}, {"$set": fields}, upsert=True)

    async def delete_cache_policies_by_provider(self, provider_id: str) -> int:
        result = await self.db[CACHE_POLICY].delete_many(
            {"$or": [
                {"provider_id": provider_id},
                {"_id": {"$regex": f"^{re.escape(provider_id)}/"}},
            ]}
        )
        return result.deleted_count

    # ----- settings -----

    async def get_settings(self) -> Dict[str, Any]:
        docs = await self.db[SETTINGS].find({}).to_list(length=None)
        return {doc["_id"]: doc.get("value") for doc in docs}

    async def get_settings_changed_since(self, since: Optional[datetime]) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if since is not None:
            query["lastUpdated"] = {"$gt": since}
        docs = await self.db[SETTINGS].find(query).to_list(length=None)
        return {doc["_id"]: doc.get("value") for doc in docs}
