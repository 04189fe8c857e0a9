"""
Tests for CatalogStore

Runs against mongomock-motor.
"""

from datetime import timedelta

import pytest

from engine.models.job import JobStatus
from engine.services.catalog_store import (
    CACHE_POLICY,
    IPTV_PROVIDERS,
    JOB_HISTORY,
    TITLE_STREAMS,
    TITLES,
    utc_now,
)


def _provider_title(title_id: str, **fields):
    title = {
        "title_id": title_id,
        "type": "movies",
        "title_key": f"movies-{title_id}",
        "title": f"Title {title_id}",
        "tmdb_id": None,
        "category_id": None,
        "release_date": None,
        "streams": {"main": f"http://a/{title_id}"},
        "ignored": False,
        "ignored_reason": None,
    }
    title.update(fields)
    return title


@pytest.mark.asyncio
async def test_save_provider_titles_inserts_then_updates_changed_only(catalog):
    await catalog.ensure_indexes()

    result = await catalog.save_provider_titles("p1", [_provider_title("1"), _provider_title("2")])
    assert result == {"inserted": 2, "updated": 0, "released": 0}

    stored = {t["title_key"]: t for t in await catalog.get_provider_titles("p1")}
    assert stored["movies-1"]["createdAt"] == stored["movies-1"]["lastUpdated"]
    assert stored["movies-1"]["provider_id"] == "p1"

    result = await catalog.save_provider_titles(
        "p1", [_provider_title("1"), _provider_title("2", tmdb_id=42)]
    )
    assert result == {"inserted": 0, "updated": 1, "released": 0}

    titles = {t["title_key"]: t for t in await catalog.get_provider_titles("p1")}
    assert titles["movies-2"]["tmdb_id"] == 42
    assert titles["movies-1"]["lastUpdated"] == stored["movies-1"]["lastUpdated"]


@pytest.mark.asyncio
async def test_get_provider_titles_filters(catalog):
    await catalog.save_provider_titles(
        "p1",
        [
            _provider_title("1"),
            _provider_title("2", ignored=True, ignored_reason="TMDB matching failed"),
            _provider_title("3", type="tvshows", title_key="tvshows-3"),
        ],
    )

    assert len(await catalog.get_provider_titles("p1")) == 3
    assert [t["title_id"] for t in await catalog.get_provider_titles("p1", ignored=True)] == ["2"]
    assert {t["title_id"] for t in await catalog.get_provider_titles("p1", ignored=False)} == {"1", "3"}
    assert [t["title_id"] for t in await catalog.get_provider_titles("p1", media_type="tvshows")] == ["3"]
    assert await catalog.get_provider_titles("p1", since=utc_now() + timedelta(minutes=1)) == []


@pytest.mark.asyncio
async def test_save_ignored_titles_groups_by_reason(catalog):
    await catalog.save_provider_titles("p1", [_provider_title("1"), _provider_title("2"), _provider_title("3")])

    modified = await catalog.save_ignored_titles(
        "p1",
        {
            "movies-1": "TMDB matching failed",
            "movies-2": "Extended info fetch failed: timeout",
        },
    )

    assert modified == 2
    titles = {t["title_key"]: t for t in await catalog.get_provider_titles("p1")}
    assert titles["movies-1"]["ignored_reason"] == "TMDB matching failed"
    assert titles["movies-2"]["ignored_reason"] == "Extended info fetch failed: timeout"
    assert titles["movies-3"]["ignored"] is False


@pytest.mark.asyncio
async def test_remove_provider_from_titles(catalog, db):
    """Canonical sources [P1, P2] minus P2 leave [P1] and drop P2's stream document."""
    now = utc_now()
    await db[TITLES].insert_many([
        {
            "title_key": "movies-278",
            "title_id": 278,
            "type": "movies",
            "streams": {"main": {"sources": ["P1", "P2"]}},
            "createdAt": now,
            "lastUpdated": now,
        },
        {
            "title_key": "movies-603",
            "title_id": 603,
            "type": "movies",
            "streams": {"main": {"sources": ["P2"]}},
            "createdAt": now,
            "lastUpdated": now,
        },
    ])
    await db[TITLE_STREAMS].insert_many([
        {"title_key": "movies-278", "stream_id": "main", "provider_id": "P1"},
        {"title_key": "movies-278", "stream_id": "main", "provider_id": "P2"},
        {"title_key": "movies-603", "stream_id": "main", "provider_id": "P2"},
    ])

    result = await catalog.remove_provider_from_titles("P2")
    deleted = await catalog.delete_titles_without_sources()

    assert result == {"titles_updated": 2, "streams_removed": 2}
    assert deleted == 1

    titles = await catalog.get_main_titles()
    assert [t["title_key"] for t in titles] == ["movies-278"]
    assert titles[0]["streams"] == {"main": {"sources": ["P1"]}}

    streams = await catalog.get_title_streams()
    assert streams == [{"title_key": "movies-278", "stream_id": "main", "provider_id": "P1"}]


async def _seed_canonical(db, title_key, sources):
    now = utc_now()
    await db[TITLES].insert_one({
        "title_key": title_key,
        "type": "movies",
        "streams": {"main": {"sources": list(sources)}},
        "createdAt": now,
        "lastUpdated": now,
    })
    await db[TITLE_STREAMS].insert_many([
        {"title_key": title_key, "stream_id": "main", "provider_id": pid} for pid in sources
    ])


@pytest.mark.asyncio
async def test_title_turned_ignored_leaves_its_canonical_title(catalog, db):
    await catalog.save_provider_titles("p1", [_provider_title("1", tmdb_id=278)])
    await _seed_canonical(db, "movies-278", ["p1"])

    result = await catalog.save_provider_titles(
        "p1",
        [_provider_title("1", ignored=True, ignored_reason="Extended info fetch failed: x")],
    )

    assert result["released"] == 1
    assert await catalog.get_main_titles() == []
    assert await catalog.get_title_streams({"provider_id": "p1"}) == []


@pytest.mark.asyncio
async def test_rematched_title_keeps_other_sources(catalog, db):
    await catalog.save_provider_titles("p1", [_provider_title("1", tmdb_id=278)])
    await _seed_canonical(db, "movies-278", ["p1", "p2"])

    result = await catalog.save_provider_titles("p1", [_provider_title("1", tmdb_id=603)])

    assert result["released"] == 1
    titles = await catalog.get_main_titles()
    assert titles[0]["streams"] == {"main": {"sources": ["p2"]}}
    streams = await catalog.get_title_streams()
    assert [s["provider_id"] for s in streams] == ["p2"]


@pytest.mark.asyncio
async def test_unchanged_match_releases_nothing(catalog, db):
    await catalog.save_provider_titles("p1", [_provider_title("1", tmdb_id=278)])
    await _seed_canonical(db, "movies-278", ["p1"])

    result = await catalog.save_provider_titles(
        "p1", [_provider_title("1", tmdb_id=278, title="Renamed")]
    )

    assert result == {"inserted": 0, "updated": 1, "released": 0}
    assert len(await catalog.get_title_streams()) == 1


@pytest.mark.asyncio
async def test_save_main_titles_without_upsert_skips_missing(catalog):
    await catalog.save_main_titles([{"title_key": "movies-1", "similar": []}], upsert=False)

    assert await catalog.get_main_titles() == []


@pytest.mark.asyncio
async def test_save_main_titles_and_streams_upsert(catalog):
    await catalog.save_main_titles([{"title_key": "movies-1", "title": "A", "streams": {}}])
    await catalog.save_main_titles([{"title_key": "movies-1", "title": "B", "streams": {}}])
    assert [t["title"] for t in await catalog.get_main_titles()] == ["B"]

    doc = {"title_key": "movies-1", "stream_id": "main", "provider_id": "p1", "proxy_url": "u1"}
    await catalog.save_title_streams([doc])
    await catalog.save_title_streams([{**doc, "proxy_url": "u2"}])

    streams = await catalog.get_title_streams()
    assert len(streams) == 1
    assert streams[0]["proxy_url"] == "u2"
    assert "createdAt" in streams[0]


@pytest.mark.asyncio
async def test_delete_provider_titles_by_categories(catalog):
    await catalog.save_provider_titles(
        "p1",
        [
            _provider_title("1", category_id="10"),
            _provider_title("2", category_id="11"),
        ],
    )

    removed = await catalog.delete_provider_titles_by_categories("p1", "movies", ["11"])

    assert [t["title_id"] for t in removed] == ["2"]
    assert [t["title_id"] for t in await catalog.get_provider_titles("p1")] == ["1"]


@pytest.mark.asyncio
async def test_job_history_success_and_failure(catalog):
    await catalog.update_job_status("sync-provider-titles", JobStatus.RUNNING)
    assert await catalog.get_job_status("sync-provider-titles") == "running"

    await catalog.update_job_history("sync-provider-titles", {"provider_count": 2})
    history = await catalog.get_job_history("sync-provider-titles")
    assert history["status"] == "completed"
    assert history["execution_count"] == 1
    assert history["last_result"] == {"provider_count": 2}
    first_execution = history["last_execution"]

    await catalog.update_job_history("sync-provider-titles", {"error": "boom"})
    history = await catalog.get_job_history("sync-provider-titles")
    assert history["status"] == "failed"
    assert history["execution_count"] == 2
    assert history["last_execution"] == first_execution


@pytest.mark.asyncio
async def test_job_history_without_advance_keeps_last_execution(catalog):
    await catalog.update_job_history("process-main-titles", {"movies_processed": 1})
    first_execution = (await catalog.get_job_history("process-main-titles"))["last_execution"]

    await catalog.update_job_history("process-main-titles", {"retryable": 2}, advance=False)

    history = await catalog.get_job_history("process-main-titles")
    assert history["status"] == "completed"
    assert history["last_result"] == {"retryable": 2}
    assert history["last_execution"] == first_execution


@pytest.mark.asyncio
async def test_job_history_lifts_check_timestamps(catalog):
    now = utc_now()
    await catalog.update_job_history("config-monitor", {"last_provider_check": now, "changed": 0})

    history = await catalog.get_job_history("config-monitor")
    assert history["last_provider_check"] == now
    assert history["last_result"] == {"changed": 0}


@pytest.mark.asyncio
async def test_reset_in_progress_jobs(catalog, db):
    """Rows left running by a crash become cancelled."""
    for name in ("sync-provider-titles", "process-main-titles", "config-monitor"):
        await catalog.update_job_status(name, JobStatus.RUNNING)
    await catalog.update_job_status("settings-monitor", JobStatus.COMPLETED)

    reset = await catalog.reset_in_progress_jobs()

    assert reset == 3
    assert await db[JOB_HISTORY].count_documents({"status": "running"}) == 0
    assert await db[JOB_HISTORY].count_documents({"status": "cancelled"}) == 3
    assert await catalog.get_job_status("settings-monitor") == "completed"


@pytest.mark.asyncio
async def test_cache_policies_by_provider(catalog, db):
    await catalog.update_cache_policy("xt1/metadata", 1)
    await catalog.update_cache_policy("xt1/extended/tvshows", 6, provider_id="xt1")
    await catalog.update_cache_policy("tmdb/search/movie", None)

    assert await catalog.get_cache_policies() == {
        "xt1/metadata": 1,
        "xt1/extended/tvshows": 6,
        "tmdb/search/movie": None,
    }

    removed = await catalog.delete_cache_policies_by_provider("xt1")

    assert removed == 2
    assert await db[CACHE_POLICY].count_documents({}) == 1


@pytest.mark.asyncio
async def test_iptv_providers_enabled_by_priority(catalog, db):
    await db[IPTV_PROVIDERS].insert_many([
        {"id": "b", "type": "xtream", "enabled": True, "priority": 2},
        {"id": "a", "type": "agtv", "enabled": True, "priority": 1},
        {"id": "c", "type": "agtv", "enabled": False, "priority": 0},
        {"id": "d", "type": "agtv", "enabled": True, "deleted": True, "priority": 0},
    ])

    assert [p["id"] for p in await catalog.get_iptv_providers()] == ["a", "b"]
    assert [p["id"] for p in await catalog.get_deleted_providers()] == ["d"]


@pytest.mark.asyncio
async def test_settings_changed_since(catalog, db):
    old = utc_now() - timedelta(hours=1)
    await db["settings"].insert_many([
        {"_id": "tmdb_token", "value": "abc", "lastUpdated": utc_now()},
        {"_id": "tmdb_api_rate", "value": {"concurrent": 10}, "lastUpdated": old},
    ])

    assert await catalog.get_settings() == {"tmdb_token": "abc", "tmdb_api_rate": {"concurrent": 10}}
    assert await catalog.get_settings_changed_since(old + timedelta(minutes=1)) == {"tmdb_token": "abc"}
