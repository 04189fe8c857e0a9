"""
Cache Store Service

File-based cache for upstream responses with policy-driven TTLs.

Keys are lists of parts, e.g. ["tmdb", "movie", "details", "603.json"].
The policy key is every part but the filename ("tmdb/movie/details").
Policies map a policy key to a TTL in hours, or None for never expire.
Policy keys may contain {providerId} / {tmdbId} wildcards.
"""

import asyncio
import json
import os
import re
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern, Tuple

from ..core.logging import get_logger

logger = get_logger(__name__)

UNSET = object()

_WILDCARD_RE = re.compile(r"^\{\w+\}$")


def compile_policy_pattern(policy_key: str) -> Optional[Pattern]:
    """Compile a wildcard policy key into a regex, or None when it has no wildcard."""
    segments = policy_key.split("/")
    if not any(_WILDCARD_RE.match(s) for s in segments):
        return None
    parts = ["[^/]+" if _WILDCARD_RE.match(s) else re.escape(s) for s in segments]
    return re.compile("^" + "/".join(parts) + "$")


class CacheStore:
    """
    Blob cache on disk.

    Two policy layers are kept: defaults declared by adapters and clients
    (`register`) and the authoritative table loaded from the catalog
    (`load_policies`). Authoritative values win.
    """

    def __init__(self, cache_dir: str, catalog=None):
        self.cache_dir = Path(cache_dir)
        self.catalog = catalog
        self._defaults: Dict[str, Optional[float]] = {}
        self._authoritative: Dict[str, Optional[float]] = {}
        self._policies: Dict[str, Optional[float]] = {}
        self._patterns: List[Tuple[Pattern, Optional[float]]] = []

    # ----- keys -----

    @staticmethod
    def _validate(key_parts: List[str]) -> List[str]:
        if not key_parts:
            raise ValueError("Cache key must have at least one part")
        parts = [str(p).replace("/", "_").replace("\\", "_") for p in key_parts]
        if "." not in parts[-1]:
            raise ValueError(f"Cache key must end with a filename: {'/'.join(parts)}")
        return parts

    @staticmethod
    def policy_key(key_parts: List[str]) -> str:
        return "/".join(str(p) for p in key_parts[:-1])

    def _path(self, key_parts: List[str]) -> Path:
        return self.cache_dir.joinpath(*self._validate(key_parts))

    # ----- policies -----

    def _rebuild(self):
        self._policies = {**self._defaults, **self._authoritative}
        self._patterns = []
        for key, ttl in self._policies.items():
            pattern = compile_policy_pattern(key)
            if pattern is not None:
                self._patterns.append((pattern, ttl))

    def register(self, policies: Dict[str, Optional[float]]):
        """Merge declared default policies."""
        self._defaults.update(policies)
        self._rebuild()

    def load_policies(self, policies: Dict[str, Optional[float]]):
        """Replace the authoritative policy table."""
        self._authoritative = dict(policies)
        self._rebuild()
        logger.info("cache_policies_loaded", count=len(self._authoritative))

    def drop_policies(self, prefix: str):
        """Forget every literal policy under `prefix/` (deleted provider)."""
        marker = f"{prefix}/"
        self._defaults = {k: v for k, v in self._defaults.items() if not k.startswith(marker)}
        self._authoritative = {
            k: v for k, v in self._authoritative.items() if not k.startswith(marker)
        }
        self._rebuild()

    def get_policy(self, policy_key: str) -> Tuple[bool, Optional[float]]:
        """Return (found, ttl_hours) for a policy key."""
        if policy_key in self._policies:
            return True, self._policies[policy_key]
        for pattern, ttl in self._patterns:
            if pattern.match(policy_key):
                return True, ttl
        return False, None

    @property
    def policies(self) -> Dict[str, Optional[float]]:
        return dict(self._policies)

    async def _set_policy(self, policy_key: str, ttl_hours: Optional[float]):
        found, current = self.get_policy(policy_key)
        if found and current == ttl_hours:
            return
        self._authoritative[policy_key] = ttl_hours
        self._rebuild()
        if self.catalog is not None:
            await self.catalog.update_cache_policy(policy_key, ttl_hours)

    # ----- blobs -----

    def _age_hours(self, path: Path) -> float:
        return (time.time() - path.stat().st_mtime) / 3600

    async def is_expired(self, key_parts: List[str]) -> bool:
        path = self._path(key_parts)
        if not await asyncio.to_thread(path.exists):
            return True

        found, ttl_hours = self.get_policy(self.policy_key(self._validate(key_parts)))
        if not found or ttl_hours is None:
            return False

        age = await asyncio.to_thread(self._age_hours, path)
        return age > ttl_hours

    async def get_text(self, key_parts: List[str]) -> Optional[str]:
        """Cached text, or None when missing or expired."""
        if await self.is_expired(key_parts):
            return None
        path = self._path(key_parts)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None

    async def get(self, key_parts: List[str]) -> Optional[Any]:
        """Cached JSON blob, or None when missing, expired or unreadable."""
        text = await self.get_text(key_parts)
        if text is None:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("cache_entry_corrupt", key="/".join(key_parts), error=str(e))
            return None

    @staticmethod
    def _write_atomic(path: Path, text: str):
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    async def put_text(self, key_parts: List[str], text: str, ttl_hours: Any = UNSET):
        """Write text atomically. Passing `ttl_hours` (None included) upserts its policy."""
        parts = self._validate(key_parts)
        await asyncio.to_thread(self._write_atomic, self._path(parts), text)
        if ttl_hours is not UNSET:
            await self._set_policy(self.policy_key(parts), ttl_hours)

    async def put(self, key_parts: List[str], blob: Any, ttl_hours: Any = UNSET):
        await self.put_text(key_parts, json.dumps(blob), ttl_hours)

    async def list_roots(self) -> List[str]:
        """Top-level cache directories."""
        def _list() -> List[str]:
            if not self.cache_dir.exists():
                return []
            return sorted(p.name for p in self.cache_dir.iterdir() if p.is_dir())

        return await asyncio.to_thread(_list)

    async def clear(self, parts: List[str]) -> bool:
        """Remove a whole subtree. Returns False when nothing was there."""
        path = self.cache_dir.joinpath(*[str(p) for p in parts])
        if not await asyncio.to_thread(path.exists):
            return False
        await asyncio.to_thread(shutil.rmtree, path)
        logger.info("cache_cleared", path=str(path))
        return True
