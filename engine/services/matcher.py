"""
Title Matcher

Resolves provider titles to TMDB ids.
1. IMDB id lookup for AGTV titles ("tt...")
2. Name + year search, retried without the year
"""

import re
from typing import Any, Dict, Optional

from ..core.logging import get_logger
from ..models.title import MOVIES, TitleData
from .tmdb import MEDIA_TYPE_MAP, TMDBClient

logger = get_logger(__name__)

_YEAR_FROM_DATE_RE = re.compile(r"^(\d{4})")
_YEAR_IN_TITLE_RE = re.compile(r"\((\d{4})")
_TRAILING_YEAR_RE = re.compile(r"\s*\(\d{4}(?:-\d{4})?\)\s*$")


def extract_year(release_date: Optional[str], title: Optional[str]) -> Optional[int]:
    """Year from the release date, else from "(YYYY)" in the title."""
    if release_date:
        match = _YEAR_FROM_DATE_RE.match(str(release_date))
        if match:
            return int(match.group(1))
    if title:
        match = _YEAR_IN_TITLE_RE.search(title)
        if match:
            return int(match.group(1))
    return None


def base_title(title: str) -> str:
    """Strip a trailing "(YYYY)" or "(YYYY-YYYY)"."""
    return _TRAILING_YEAR_RE.sub("", title).strip()


class Matcher:
    """Title -> TMDB id resolution."""

    def __init__(self, tmdb: TMDBClient):
        self.tmdb = tmdb

    async def update_settings(self, token: Optional[str] = None, api_rate: Optional[Dict[str, Any]] = None):
        await self.tmdb.update_settings(token=token, api_rate=api_rate)

    async def match(self, title: TitleData, provider_type: str) -> Optional[int]:
        """
        Find the TMDB id for a title.

        Returns:
            The TMDB id, or None when nothing matched. Upstream errors
            propagate to the caller.
        """
        tmdb_type = MEDIA_TYPE_MAP[title.type]

        if provider_type == "agtv" and str(title.title_id).startswith("tt"):
            found = await self.tmdb.find_by_imdb_id(title.title_id, tmdb_type)
            results = found.get("movie_results" if title.type == MOVIES else "tv_results") or []
            if results:
                return int(results[0]["id"])

        if not title.title:
            return None

        year = extract_year(title.release_date, title.title)
        query = base_title(title.title)
        if not query:
            return None

        results = await self.tmdb.search(tmdb_type, query, year)
        if not results and year:
            results = await self.tmdb.search(tmdb_type, query)

        if not results:
            logger.debug("title_not_matched", title=title.title, type=title.type, year=year)
            return None
        return int(results[0]["id"])
