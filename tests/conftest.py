"""
Pytest Fixtures

Shared mocks and fixtures for testing.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from typing import Any, Dict

from mongomock_motor import AsyncMongoMockClient

from engine.models.provider import parse_provider_config
from engine.providers import AGTVProvider, XtreamProvider
from engine.services.cache_store import CacheStore
from engine.services.catalog_store import CatalogStore
from engine.services.context import ApplicationContext


def provider_document(provider_id: str, provider_type: str, **overrides) -> Dict[str, Any]:
    """An iptv_providers document."""
    document = {
        "id": provider_id,
        "type": provider_type,
        "api_url": f"http://{provider_id}.example.com",
        "username": "user",
        "password": "pass",
        "enabled": True,
        "priority": 1,
        "api_rate": {"concurrent": 10, "duration_seconds": 1},
    }
    document.update(overrides)
    return document


@pytest.fixture
def db():
    """In-memory motor-compatible database."""
    return AsyncMongoMockClient()["playarr_test"]


@pytest.fixture
def catalog(db):
    return CatalogStore(db)


@pytest.fixture
def cache(tmp_path, catalog):
    return CacheStore(str(tmp_path / "cache"), catalog)


@pytest.fixture
def mock_tmdb():
    """TMDB client with empty answers."""
    tmdb = MagicMock()
    tmdb.search = AsyncMock(return_value=[])
    tmdb.find_by_imdb_id = AsyncMock(return_value={})
    tmdb.get_details = AsyncMock(return_value={})
    tmdb.get_season = AsyncMock(return_value={"episodes": []})
    tmdb.get_similar = AsyncMock(return_value={"results": [], "total_pages": 1})
    tmdb.update_settings = AsyncMock()
    tmdb.close = AsyncMock()
    return tmdb


@pytest.fixture
def mock_matcher():
    """Matcher that matches nothing unless told otherwise."""
    matcher = MagicMock()
    matcher.match = AsyncMock(return_value=None)
    matcher.update_settings = AsyncMock()
    return matcher


@pytest.fixture
def make_provider_document():
    return provider_document


@pytest.fixture
def make_provider_config():
    def _make(provider_id: str, provider_type: str, **overrides):
        return parse_provider_config(provider_document(provider_id, provider_type, **overrides))
    return _make


@pytest.fixture
def agtv_config():
    return parse_provider_config(provider_document("agtv1", "agtv"))


@pytest.fixture
def xtream_config():
    return parse_provider_config(
        provider_document(
            "xt1",
            "xtream",
            enabled_categories={"movies": ["movies-10"], "tvshows": ["tvshows-20"]},
        )
    )


@pytest.fixture
def agtv_provider(agtv_config, catalog, cache, mock_matcher):
    return AGTVProvider(agtv_config, catalog, cache, mock_matcher)


@pytest.fixture
def xtream_provider(xtream_config, catalog, cache, mock_matcher):
    return XtreamProvider(xtream_config, catalog, cache, mock_matcher)


@pytest.fixture
def app_context(db, catalog, cache, mock_tmdb, mock_matcher):
    """ApplicationContext wired to the in-memory database and mocks."""
    context = ApplicationContext(db=db)
    context.catalog = catalog
    context.cache = cache
    context.tmdb = mock_tmdb
    context.matcher = mock_matcher
    context.merge_engine = MagicMock()
    return context
