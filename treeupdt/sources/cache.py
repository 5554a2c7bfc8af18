"""On-disk cache for version source responses.

Each entry is one ``<sha256>.json`` file holding ``{"data": ..., "timestamp": ...}``.
Expired entries are removed lazily when read.
"""

from __future__ import annotations

import hashlib
import json
import os
import time
from pathlib import Path
from typing import Any

import structlog

from treeupdt.engines.dependency_scanner.models import SourceType
from treeupdt.sources.base import VersionSource
from treeupdt.sources.models import UpdateInfo, Version

log = structlog.get_logger("treeupdt.sources")

DEFAULT_TTL = 3600


def default_cache_dir() -> Path:
    base = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(base) / "treeupdt"


class FileCache:
    def __init__(self, root: Path | None = None, ttl: int = DEFAULT_TTL) -> None:
        self.root = Path(root) if root is not None else default_cache_dir()
        self.ttl = ttl

    @staticmethod
    def key(source: str, identifier: str, operation: str) -> str:
        return hashlib.sha256(f"{source}:{identifier}:{operation}".encode()).hexdigest()

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def get(self, key: str) -> Any | None:
        path = self._path(key)
        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            log.warning("cache.corrupt_entry", path=str(path))
            path.unlink(missing_ok=True)
            return None
        if time.time() - entry.get("timestamp", 0) > self.ttl:
            path.unlink(missing_ok=True)
            return None
        return entry.get("data")

    def set(self, key: str, data: Any) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self._path(key).write_text(
                json.dumps({"data": data, "timestamp": time.time()}), encoding="utf-8"
            )
        except OSError as exc:
            # a read-only cache must not break lookups
            log.warning("cache.write_failed", root=str(self.root), error=str(exc))

    def clear(self) -> int:
        """Remove every cache entry; returns how many were removed."""
        if not self.root.is_dir():
            return 0
        removed = 0
        for path in self.root.glob("*.json"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed


class CachedSource(VersionSource):
    """Wraps another source and memoizes its answers in a :class:`FileCache`."""

    def __init__(self, inner: VersionSource, name: str, cache: FileCache) -> None:
        self.inner = inner
        self.name = name
        self.cache = cache

    @property
    def source_type(self) -> SourceType:  # type: ignore[override]
        return self.inner.source_type

    async def close(self) -> None:
        await self.inner.close()

    def _lookup(self, identifier: str, operation: str) -> tuple[str, Any | None]:
        key = FileCache.key(self.name, identifier, operation)
        data = self.cache.get(key)
        if data is None:
            log.debug("source.cache_miss", source=self.name, identifier=identifier, op=operation)
        else:
            log.debug("source.cache_hit", source=self.name, identifier=identifier, op=operation)
        return key, data

    async def get_versions(self, identifier: str) -> list[Version]:
        key, data = self._lookup(identifier, "versions")
        if data is not None:
            return [Version.model_validate(v) for v in data]
        versions = await self.inner.get_versions(identifier)
        self.cache.set(key, [v.model_dump(mode="json") for v in versions])
        return versions

    async def get_latest_version(self, identifier: str) -> Version:
        key, data = self._lookup(identifier, "latest")
        if data is not None:
            return Version.model_validate(data)
        version = await self.inner.get_latest_version(identifier)
        self.cache.set(key, version.model_dump(mode="json"))
        return version

    async def check_update(self, identifier: str, current_version: str) -> UpdateInfo:
        key, data = self._lookup(identifier, f"check:{current_version}")
        if data is not None:
            return UpdateInfo.model_validate(data)
        info = await self.inner.check_update(identifier, current_version)
        self.cache.set(key, info.model_dump(mode="json"))
        return info
