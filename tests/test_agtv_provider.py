"""
Tests for AGTV Provider

M3U8 parsing, pagination and episode grouping.
"""

import pytest
import respx
from httpx import Response

from engine.models.title import MOVIES, TVSHOWS
from engine.providers import agtv
from engine.providers.agtv import parse_episode_from_url, parse_m3u8

BASE_URL = "http://agtv1.example.com/api/list/user/pass/m3u8"

MOVIES_M3U8 = """#EXTM3U
#EXTINF:-1 tvg-id="tt0111161" tvg-name="The Shawshank Redemption (1994)" tvg-type="movies" group-title="Drama",The Shawshank Redemption
http://a/x
#EXTINF:-1 tvg-id="tt0068646" tvg-type="movies",The Godfather (1972)
http://a/y
"""


def _episode_lines(tvg_id: str, name: str, episodes):
    lines = []
    for season, episode in episodes:
        lines.append(f'#EXTINF:-1 tvg-id="{tvg_id}" tvg-name="{name}" tvg-type="tvshows",{name}')
        lines.append(f"http://a/series/{tvg_id}/{season}/{episode}")
    return "\n".join(["#EXTM3U", *lines]) + "\n"


def test_parse_m3u8_attributes_and_title():
    entries = parse_m3u8(MOVIES_M3U8)

    assert len(entries) == 2
    assert entries[0]["tvg-id"] == "tt0111161"
    assert entries[0]["tvg-name"] == "The Shawshank Redemption (1994)"
    assert entries[0]["group-title"] == "Drama"
    assert entries[0]["titleName"] == "The Shawshank Redemption"
    assert entries[0]["url"] == "http://a/x"
    assert entries[1]["titleName"] == "The Godfather (1972)"
    assert "tvg-name" not in entries[1]


def test_parse_m3u8_skips_entries_without_url():
    text = '#EXTM3U\n#EXTINF:-1 tvg-id="tt1",One\n#EXTINF:-1 tvg-id="tt2",Two\nhttp://a/2\n'

    entries = parse_m3u8(text)

    assert [e["tvg-id"] for e in entries] == ["tt2"]


def test_parse_episode_from_url():
    assert parse_episode_from_url("http://a/series/tt1/2/13") == (2, 13)
    assert parse_episode_from_url("http://a/series/tt1/02/05.mkv") == (2, 5)
    assert parse_episode_from_url("http://a/series/tt1/extra") is None


@pytest.mark.asyncio
async def test_fetch_movies_single_request(agtv_provider):
    with respx.mock:
        route = respx.get(f"{BASE_URL}/movies").mock(return_value=Response(200, text=MOVIES_M3U8))

        raw = await agtv_provider.fetch_raw_titles(MOVIES)

    assert route.call_count == 1
    assert [r["tvg-id"] for r in raw] == ["tt0111161", "tt0068646"]

    title = agtv_provider.build_processed_title(raw[0], MOVIES)
    assert title.title_id == "tt0111161"
    assert title.title == "The Shawshank Redemption (1994)"
    assert title.streams == {"main": "http://a/x"}

    fallback = agtv_provider.build_processed_title(raw[1], MOVIES)
    assert fallback.title == "The Godfather (1972)"


@pytest.mark.asyncio
async def test_fetch_tvshows_paginates_until_404(agtv_provider, monkeypatch):
    monkeypatch.setattr(agtv, "PAGE_STREAM_LIMIT", 2)
    page_1 = _episode_lines("tt0903747", "Breaking Bad", [(1, 1), (1, 2)])
    page_2 = (
        _episode_lines("tt0903747", "Breaking Bad", [(2, 1)])
        + _episode_lines("tt0944947", "Game of Thrones", [(1, 1)]).replace("#EXTM3U\n", "", 1)
    )

    with respx.mock:
        respx.get(f"{BASE_URL}/tvshows/1").mock(return_value=Response(200, text=page_1))
        respx.get(f"{BASE_URL}/tvshows/2").mock(return_value=Response(200, text=page_2))
        page_3 = respx.get(f"{BASE_URL}/tvshows/3").mock(return_value=Response(404))

        raw = await agtv_provider.fetch_raw_titles(TVSHOWS)

    assert page_3.call_count == 1
    shows = {r["tvg-id"]: r for r in raw}
    assert set(shows) == {"tt0903747", "tt0944947"}
    assert shows["tt0903747"]["streams"] == {
        "S01-E01": "http://a/series/tt0903747/1/1",
        "S01-E02": "http://a/series/tt0903747/1/2",
        "S02-E01": "http://a/series/tt0903747/2/1",
    }


@pytest.mark.asyncio
async def test_fetch_tvshows_stops_on_short_page(agtv_provider):
    page_1 = _episode_lines("tt0903747", "Breaking Bad", [(1, 1)])

    with respx.mock:
        respx.get(f"{BASE_URL}/tvshows/1").mock(return_value=Response(200, text=page_1))
        page_2 = respx.get(f"{BASE_URL}/tvshows/2").mock(return_value=Response(200, text="#EXTM3U\n"))

        raw = await agtv_provider.fetch_raw_titles(TVSHOWS)

    assert page_2.call_count == 0
    assert len(raw) == 1


def test_should_skip(agtv_provider):
    assert agtv_provider.should_skip({"url": "http://a/x"}, {"streams": {"main": "http://a/x"}}, MOVIES)

    existing = {"streams": {"S01-E01": "u1"}}
    assert agtv_provider.should_skip({"streams": {"S01-E01": "u1"}}, existing, TVSHOWS)
    assert not agtv_provider.should_skip({"streams": {"S01-E01": "u1", "S01-E02": "u2"}}, existing, TVSHOWS)


def test_agtv_has_no_categories_and_fixed_batch(agtv_provider):
    assert agtv_provider.get_type() == "agtv"
    assert agtv_provider.supports_categories is False
    assert agtv_provider.batch_size == 500
