"""Version source interface and version-string helpers."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

from treeupdt.engines.dependency_scanner.models import SourceType, UpdateStrategy
from treeupdt.exceptions import SourceError
from treeupdt.sources.models import UpdateInfo, Version

_SEMVER_RE = re.compile(
    r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)
_PRERELEASE_RE = re.compile(r"-|alpha|beta|rc\d*\b|\bpre", re.IGNORECASE)
_RANGE_PREFIX_RE = re.compile(r"^[\^~>=<\s]+")


def parse_timestamp(value: str | None) -> datetime | None:
    """ISO-8601 timestamp from an API payload; None if absent or malformed."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def clean_version(tag: str) -> str:
    """Strip ``version-``, ``release-`` or ``v`` from a tag name."""
    for prefix in ("version-", "release-", "v"):
        if tag.startswith(prefix):
            return tag[len(prefix):]
    return tag


def bare_version(version: str) -> str:
    """``^1.2.3`` -> ``1.2.3``; ``v1.7.0`` -> ``1.7.0``."""
    return clean_version(_RANGE_PREFIX_RE.sub("", version.strip()))


def is_prerelease(version: str) -> bool:
    return bool(_PRERELEASE_RE.search(version))


def version_key(version: str) -> tuple:
    """Sort key ordering semver-like strings; unparseable strings sort lowest."""
    m = _SEMVER_RE.match(version.strip())
    if not m:
        return (0, (), 0, (), version)
    nums = tuple(int(g) if g is not None else 0 for g in m.group(1, 2, 3))
    pre = m.group(4)
    if pre is None:
        return (1, nums, 1, (), version)
    parts = tuple((0, int(p)) if p.isdigit() else (1, p) for p in pre.split("."))
    return (1, nums, 0, parts, version)


def sort_versions(versions: Iterable[Version]) -> list[Version]:
    """Newest first."""
    return sorted(versions, key=lambda v: version_key(v.version), reverse=True)


def build_update_info(
    current_version: str,
    versions: list[Version],
    latest: Version | None = None,
) -> UpdateInfo:
    """Assemble an :class:`UpdateInfo` from versions ordered newest first."""
    if latest is None:
        latest = next((v for v in versions if not v.yanked), None)
    if latest is None:
        raise SourceError("no versions found")
    stable = next((v for v in versions if not v.yanked and not v.pre_release), None)
    return UpdateInfo(
        current_version=current_version,
        latest_version=latest,
        latest_stable_version=stable,
        all_versions=versions,
        update_available=latest.version != bare_version(current_version),
    )


def select_version(
    info: UpdateInfo, strategy: UpdateStrategy, current_version: str | None = None
) -> Version | None:
    """Pick the version a declaration should move to under *strategy*.

    ``conservative`` stays within the current major (and minor for 0.x),
    ``stable`` takes the newest stable release, ``latest`` and
    ``aggressive`` take the newest release of any kind.
    """
    if strategy in (UpdateStrategy.LATEST, UpdateStrategy.AGGRESSIVE):
        return info.latest_version
    if strategy == UpdateStrategy.STABLE:
        return info.latest_stable_version

    current = bare_version(current_version or info.current_version)
    m = _SEMVER_RE.match(current)
    if not m:
        return info.latest_stable_version
    major = int(m.group(1))
    minor = int(m.group(2) or 0)
    candidates = []
    for v in info.all_versions:
        if v.yanked or v.pre_release:
            continue
        vm = _SEMVER_RE.match(v.version)
        if not vm or int(vm.group(1)) != major:
            continue
        if major == 0 and int(vm.group(2) or 0) != minor:
            continue
        candidates.append(v)
    if not candidates:
        return None
    return max(candidates, key=lambda v: version_key(v.version))


class VersionSource(ABC):
    """Answers version questions for one kind of upstream."""

    source_type: SourceType

    @abstractmethod
    async def get_versions(self, identifier: str) -> list[Version]:
        """All known versions, newest first."""

    async def get_latest_version(self, identifier: str) -> Version:
        versions = await self.get_versions(identifier)
        if not versions:
            raise SourceError(f"no versions found for {identifier}")
        return versions[0]

    async def check_update(self, identifier: str, current_version: str) -> UpdateInfo:
        versions = await self.get_versions(identifier)
        return build_update_info(current_version, versions)

    async def close(self) -> None:
        return None


def match_version_style(current: str, new: str) -> str:
    """Keep a leading ``v`` when the current version has one (``v1.7.0`` -> ``v1.8.0``)."""
    if current.startswith("v") and new[:1].isdigit():
        return "v" + new
    return new
