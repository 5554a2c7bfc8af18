"""Source registry: map a source type to a (possibly cached) version source."""

from __future__ import annotations

from pathlib import Path

import structlog

from treeupdt.engines.dependency_scanner.models import Declaration, SourceHint, SourceType
from treeupdt.exceptions import SourceError
from treeupdt.sources.base import VersionSource
from treeupdt.sources.cache import CachedSource, FileCache
from treeupdt.sources.crates_io import CratesIoSource
from treeupdt.sources.git import GitSource
from treeupdt.sources.github import GitHubSource
from treeupdt.sources.models import UpdateInfo
from treeupdt.sources.npm import NpmSource

log = structlog.get_logger("treeupdt.sources")

# source type -> (cache namespace, ttl seconds)
CACHE_SETTINGS: dict[SourceType, tuple[str, int]] = {
    SourceType.GITHUB: ("github", 3600),
    SourceType.CRATES: ("crates_io", 1800),
    SourceType.NPM: ("npm", 1800),
    SourceType.GIT: ("git", 300),
}


class SourceRegistry:
    def __init__(
        self,
        use_cache: bool = True,
        cache_dir: Path | None = None,
        max_ttl: int | None = None,
        sources: dict[SourceType, VersionSource] | None = None,
    ) -> None:
        if sources is None:
            sources = {
                SourceType.GITHUB: GitHubSource(),
                SourceType.CRATES: CratesIoSource(),
                SourceType.NPM: NpmSource(),
                SourceType.GIT: GitSource(),
            }
        if use_cache:
            sources = {
                st: self._cached(st, src, cache_dir, max_ttl) for st, src in sources.items()
            }
        self._sources = sources

    @staticmethod
    def _cached(
        source_type: SourceType,
        source: VersionSource,
        cache_dir: Path | None,
        max_ttl: int | None,
    ) -> VersionSource:
        name, ttl = CACHE_SETTINGS.get(source_type, (source_type.value, 3600))
        if max_ttl is not None:
            ttl = min(ttl, max_ttl)
        return CachedSource(source, name, FileCache(cache_dir, ttl=ttl))

    def get(self, source_type: SourceType) -> VersionSource | None:
        return self._sources.get(source_type)

    async def close(self) -> None:
        for source in self._sources.values():
            await source.close()

    async def __aenter__(self) -> SourceRegistry:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def check(self, declaration: Declaration) -> tuple[SourceHint, UpdateInfo] | None:
        """Ask each of the declaration's sources in order; the first answer wins."""
        for hint in declaration.sources:
            source = self.get(hint.source_type)
            if source is None:
                continue
            try:
                info = await source.check_update(hint.identifier, declaration.current_version)
            except SourceError as exc:
                log.warning(
                    "source.check_failed",
                    name=declaration.name,
                    source=hint.source_type.value,
                    identifier=hint.identifier,
                    error=str(exc),
                )
                continue
            return hint, info
        return None
