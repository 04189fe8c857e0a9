"""
Tests for MergeEngine

Grouping, source inversion, stream documents, skip rules and similar titles.
"""

from datetime import timedelta

import pytest
from unittest.mock import AsyncMock

from engine.core.exceptions import JobCancelledError
from engine.models.title import MOVIES, TVSHOWS
from engine.services.catalog_store import TITLES, TITLE_STREAMS, utc_now
from engine.services.merge_engine import MergeEngine

SHAWSHANK = {
    "id": 278,
    "title": "The Shawshank Redemption",
    "release_date": "1994-09-23",
    "poster_path": "/q6y0Go1tsGEsmtFryDOJo3dEmqu.jpg",
    "genres": [{"id": 18, "name": "Drama"}, {"id": 80, "name": "Crime"}],
}

GAME_OF_THRONES = {
    "id": 1399,
    "name": "Game of Thrones",
    "first_air_date": "2011-04-17",
    "seasons": [{"season_number": 1}],
}


def _season(season_number: int, count: int):
    return {
        "episodes": [
            {"season_number": season_number, "episode_number": n, "name": f"Episode {n}"}
            for n in range(1, count + 1)
        ]
    }


def _provider_title(provider_id: str, title_id: str, media_type: str, tmdb_id, streams, **fields):
    title = {
        "provider_id": provider_id,
        "title_id": title_id,
        "type": media_type,
        "title_key": f"{media_type}-{title_id}",
        "tmdb_id": tmdb_id,
        "streams": streams,
        "ignored": False,
        "lastUpdated": utc_now() - timedelta(minutes=5),
    }
    title.update(fields)
    return title


@pytest.fixture
def merge_engine(catalog, mock_tmdb):
    return MergeEngine(catalog, mock_tmdb)


def test_group_titles_skips_ignored_and_unmatched():
    titles = {
        "p1": [
            _provider_title("p1", "1", MOVIES, 278, {"main": "u1"}),
            _provider_title("p1", "2", MOVIES, 603, {"main": "u2"}, ignored=True),
            _provider_title("p1", "3", MOVIES, None, {"main": "u3"}),
        ],
        "p2": [_provider_title("p2", "9", MOVIES, "278", {"main": "u9"})],
    }

    groups = MergeEngine.group_titles(titles, ["p2", "p1"])

    assert list(groups) == [(MOVIES, 278)]
    assert [pid for pid, _ in groups[(MOVIES, 278)]] == ["p2", "p1"]


@pytest.mark.asyncio
async def test_movie_canonical_title_and_stream(merge_engine, catalog, mock_tmdb):
    """An AGTV movie matched to 278 yields one canonical title and one stream document."""
    mock_tmdb.get_details.return_value = SHAWSHANK
    titles = {"agtv1": [_provider_title("agtv1", "tt0111161", MOVIES, 278, {"main": "http://a/x"})]}

    result = await merge_engine.process_main_titles(titles, ["agtv1"])

    assert result["movies"] == 1
    assert result["streams"] == 1
    canonical = (await catalog.get_main_titles())[0]
    assert canonical["title_key"] == "movies-278"
    assert canonical["title"] == "The Shawshank Redemption"
    assert canonical["streams"] == {"main": {"sources": ["agtv1"]}}

    stream = (await catalog.get_title_streams())[0]
    assert stream["tvg-id"] == "tmdb-278"
    assert stream["tvg-name"] == "The Shawshank Redemption (1994)"
    assert stream["tvg-type"] == "movie"
    assert stream["group-title"] == "Drama, Crime"
    assert stream["proxy_url"] == "http://a/x"
    assert stream["proxy_path"] == (
        "movies/The Shawshank Redemption (1994) [tmdb=278]/The Shawshank Redemption (1994).strm"
    )


@pytest.mark.asyncio
async def test_tv_episode_sources_are_inverted(merge_engine, catalog, mock_tmdb):
    mock_tmdb.get_details.return_value = GAME_OF_THRONES
    mock_tmdb.get_season.return_value = _season(1, 3)
    titles = {
        "p1": [_provider_title("p1", "a", TVSHOWS, 1399, {"S01-E01": "p1/1", "S01-E02": "p1/2"})],
        "p2": [_provider_title("p2", "b", TVSHOWS, 1399, {"S01-E02": "p2/2", "S01-E03": "p2/3", "S05-E01": "p2/x"})],
    }

    result = await merge_engine.process_main_titles(titles, ["p1", "p2"])

    assert result["tvshows"] == 1
    canonical = (await catalog.get_main_titles())[0]
    assert {key: entry["sources"] for key, entry in canonical["streams"].items()} == {
        "S01-E01": ["p1"],
        "S01-E02": ["p1", "p2"],
        "S01-E03": ["p2"],
    }
    assert canonical["streams"]["S01-E02"]["name"] == "Episode 2"

    streams = await catalog.get_title_streams({"stream_id": "S01-E02"})
    assert {s["provider_id"]: s["proxy_url"] for s in streams} == {"p1": "p1/2", "p2": "p2/2"}
    assert streams[0]["tvg-season-num"] == 1
    assert streams[0]["tvg-episode-num"] == 2
    assert streams[0]["tvg-name"] == "Game of Thrones (2011) S01E02"
    assert result["streams"] == 4


@pytest.mark.asyncio
async def test_unchanged_group_is_skipped(merge_engine, mock_tmdb):
    mock_tmdb.get_details.return_value = SHAWSHANK
    titles = {"agtv1": [_provider_title("agtv1", "tt0111161", MOVIES, 278, {"main": "http://a/x"})]}

    await merge_engine.process_main_titles(titles, ["agtv1"])
    result = await merge_engine.process_main_titles(titles, ["agtv1"])

    assert result["movies"] == 0
    assert result["skipped"] == 1
    assert mock_tmdb.get_details.await_count == 1


@pytest.mark.asyncio
async def test_unchanged_members_are_pulled_from_store(merge_engine, catalog, mock_tmdb):
    mock_tmdb.get_details.return_value = SHAWSHANK
    await catalog.save_provider_titles(
        "p2", [{"title_id": "x", "type": MOVIES, "title_key": "movies-x", "tmdb_id": 278,
                "streams": {"main": "p2/x"}, "ignored": False}]
    )
    titles = {"p1": [_provider_title("p1", "tt0111161", MOVIES, 278, {"main": "p1/x"})]}

    await merge_engine.process_main_titles(titles, ["p1", "p2"])

    canonical = (await catalog.get_main_titles())[0]
    assert canonical["streams"] == {"main": {"sources": ["p1", "p2"]}}


@pytest.mark.asyncio
async def test_stale_sources_lose_their_stream_documents(merge_engine, catalog, db, mock_tmdb):
    mock_tmdb.get_details.return_value = SHAWSHANK
    old = utc_now() - timedelta(days=1)
    await db[TITLES].insert_one({
        "title_key": "movies-278",
        "title_id": 278,
        "type": MOVIES,
        "streams": {"main": {"sources": ["p1", "p2"]}},
        "createdAt": old,
        "lastUpdated": old,
    })
    await db[TITLE_STREAMS].insert_one({"title_key": "movies-278", "stream_id": "main", "provider_id": "p2"})
    titles = {"p1": [_provider_title("p1", "tt0111161", MOVIES, 278, {"main": "p1/x"})]}

    await merge_engine.process_main_titles(titles, ["p1", "p2"])

    canonical = (await catalog.get_main_titles())[0]
    assert canonical["streams"] == {"main": {"sources": ["p1"]}}
    assert canonical["createdAt"] == old
    assert [s["provider_id"] for s in await catalog.get_title_streams()] == ["p1"]


def test_stale_sources():
    old = {"streams": {"S01-E01": {"sources": ["p1", "p2"]}, "S01-E02": {"sources": ["p2"]}}}
    new = {"streams": {"S01-E01": {"sources": ["p1"]}}}

    assert MergeEngine.stale_sources(old, new) == {"p2": ["S01-E01", "S01-E02"]}
    assert MergeEngine.stale_sources(None, new) == {}


@pytest.mark.asyncio
async def test_build_failure_counts_and_continues(merge_engine, catalog, mock_tmdb):
    async def details(media_type, tmdb_id):
        if tmdb_id == 603:
            raise RuntimeError("tmdb down")
        return SHAWSHANK

    mock_tmdb.get_details.side_effect = details
    titles = {
        "p1": [
            _provider_title("p1", "a", MOVIES, 278, {"main": "p1/a"}),
            _provider_title("p1", "b", MOVIES, 603, {"main": "p1/b"}),
        ]
    }

    result = await merge_engine.process_main_titles(titles, ["p1"])

    assert result["movies"] == 1
    assert result["failed"] == 1
    assert [t["title_key"] for t in await catalog.get_main_titles()] == ["movies-278"]


@pytest.mark.asyncio
async def test_titles_without_sources_are_removed(merge_engine, catalog, mock_tmdb):
    mock_tmdb.get_details.return_value = GAME_OF_THRONES
    mock_tmdb.get_season.return_value = _season(1, 1)
    titles = {"p1": [_provider_title("p1", "a", TVSHOWS, 1399, {"S09-E01": "p1/x"})]}

    result = await merge_engine.process_main_titles(titles, ["p1"])

    assert result["tvshows"] == 1
    assert result["titles"] == []
    assert await catalog.get_main_titles() == []


@pytest.mark.asyncio
async def test_merge_checks_cancellation(merge_engine, catalog, mock_tmdb):
    titles = {"p1": [_provider_title("p1", "a", MOVIES, 278, {"main": "p1/a"})]}
    check_cancelled = AsyncMock(side_effect=JobCancelledError("process-main-titles"))

    with pytest.raises(JobCancelledError):
        await merge_engine.process_main_titles(titles, ["p1"], check_cancelled)

    mock_tmdb.get_details.assert_not_awaited()


@pytest.mark.asyncio
async def test_similar_titles_limited_to_catalog(merge_engine, catalog, mock_tmdb):
    now = utc_now()
    await catalog.save_main_titles([
        {"title_key": "movies-278", "title_id": 278, "type": MOVIES, "createdAt": now, "lastUpdated": now},
        {"title_key": "movies-680", "title_id": 680, "type": MOVIES, "createdAt": now, "lastUpdated": now},
    ])
    mock_tmdb.get_similar.return_value = {"results": [{"id": 680}, {"id": 999}, {"id": 278}], "total_pages": 1}
    title = {"title_key": "movies-278", "title_id": 278, "type": MOVIES, "createdAt": now, "lastUpdated": now}

    result = await merge_engine.enrich_similar_titles([title])

    assert result == {"enriched": 1}
    stored = (await catalog.get_main_titles_by_keys(["movies-278"]))[0]
    assert stored["similar"] == ["movies-680"]
    assert stored["similar_enriched_at"] is not None
    mock_tmdb.get_similar.assert_awaited_once_with("movie", 278, 1)


@pytest.mark.asyncio
async def test_similar_gives_up_after_consecutive_failures(merge_engine, catalog, mock_tmdb):
    now = utc_now()
    mock_tmdb.get_similar.side_effect = RuntimeError("tmdb down")
    title = {"title_key": "movies-278", "title_id": 278, "type": MOVIES, "createdAt": now, "lastUpdated": now}

    await merge_engine.enrich_similar_titles([title])

    assert mock_tmdb.get_similar.await_count == 3
    assert title["similar"] == []


@pytest.mark.asyncio
async def test_existing_titles_are_not_enriched(merge_engine, mock_tmdb):
    now = utc_now()
    title = {
        "title_key": "movies-278",
        "title_id": 278,
        "type": MOVIES,
        "createdAt": now - timedelta(days=1),
        "lastUpdated": now,
    }

    assert await merge_engine.enrich_similar_titles([title]) == {"enriched": 0}
    mock_tmdb.get_similar.assert_not_awaited()


@pytest.mark.asyncio
async def test_similar_update_does_not_recreate_deleted_title(merge_engine, catalog, mock_tmdb):
    now = utc_now()
    title = {"title_key": "tvshows-1399", "title_id": 1399, "type": TVSHOWS, "createdAt": now, "lastUpdated": now}

    await merge_engine.enrich_similar_titles([title])

    assert await catalog.get_main_titles() == []


def test_missing_member_source_needs_regeneration():
    now = utc_now()
    existing = {"lastUpdated": now, "streams": {"main": {"sources": ["p1"]}}}
    older = now - timedelta(hours=1)
    p1 = _provider_title("p1", "a", MOVIES, 278, {"main": "p1/a"}, lastUpdated=older)
    p2 = _provider_title("p2", "b", MOVIES, 278, {"main": "p2/b"}, lastUpdated=older)

    assert not MergeEngine.needs_regeneration([("p1", p1)], existing)
    assert MergeEngine.needs_regeneration([("p1", p1), ("p2", p2)], existing)


@pytest.mark.asyncio
async def test_title_turned_ignored_is_released_from_canonical(merge_engine, catalog, mock_tmdb):
    """A matched title that later fails reprocessing stops contributing streams."""
    mock_tmdb.get_details.return_value = SHAWSHANK
    stored = {"title_id": "tt0111161", "type": MOVIES, "title_key": "movies-tt0111161", "tmdb_id": 278,
              "streams": {"main": "p1/x"}, "ignored": False, "ignored_reason": None}
    await catalog.save_provider_titles("p1", [stored])
    await merge_engine.process_main_titles({"p1": await catalog.get_provider_titles("p1")}, ["p1"])
    assert len(await catalog.get_title_streams({"provider_id": "p1"})) == 1

    await catalog.save_provider_titles(
        "p1", [{**stored, "tmdb_id": None, "ignored": True, "ignored_reason": "Extended info fetch failed: x"}]
    )
    result = await merge_engine.process_main_titles(
        {"p1": await catalog.get_provider_titles("p1", ignored=False)}, ["p1"]
    )

    assert result["movies"] == 0
    assert await catalog.get_main_titles() == []
    assert await catalog.get_title_streams({"provider_id": "p1"}) == []
