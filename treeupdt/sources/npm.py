"""The npm registry as a version source."""

from __future__ import annotations

import httpx

from treeupdt.engines.dependency_scanner.models import SourceType
from treeupdt.exceptions import SourceError
from treeupdt.sources.base import (
    VersionSource,
    build_update_info,
    is_prerelease,
    parse_timestamp,
    sort_versions,
)
from treeupdt.sources.models import UpdateInfo, Version

NPM_REGISTRY = "https://registry.npmjs.org"


class NpmSource(VersionSource):
    """Versions from the registry document; ``dist-tags.latest`` marks the latest."""

    source_type = SourceType.NPM

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=30.0)

    async def close(self) -> None:
        await self._client.aclose()

    async def _fetch(self, package: str) -> dict:
        # scoped packages are addressed as @scope%2Fname
        path = package.replace("/", "%2F")
        try:
            resp = await self._client.get(f"{NPM_REGISTRY}/{path}")
        except httpx.HTTPError as exc:
            raise SourceError(f"npm request for {package} failed: {exc}") from exc
        if resp.status_code != 200:
            raise SourceError(f"npm registry error {resp.status_code} for {package}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise SourceError(f"npm returned invalid JSON for {package}: {exc}") from exc
        if not isinstance(data, dict):
            raise SourceError(f"npm returned an unexpected payload for {package}")
        return data

    @staticmethod
    def _versions(data: dict, package: str) -> list[Version]:
        try:
            times = data.get("time") or {}
            versions = [
                Version(
                    version=num,
                    published_at=parse_timestamp(times.get(num)),
                    yanked=bool(info.get("deprecated")),
                    pre_release=is_prerelease(num),
                )
                for num, info in (data.get("versions") or {}).items()
            ]
        except (TypeError, AttributeError, ValueError) as exc:
            raise SourceError(f"malformed npm response for {package}: {exc!r}") from exc
        return sort_versions(versions)

    @staticmethod
    def _latest(data: dict, versions: list[Version], package: str) -> Version:
        tags = data.get("dist-tags")
        tag = tags.get("latest") if isinstance(tags, dict) else None
        if not isinstance(tag, str):
            raise SourceError(f"npm package {package} has no 'latest' dist-tag")
        for v in versions:
            if v.version == tag:
                return v
        return Version(version=tag, pre_release=is_prerelease(tag))

    async def get_versions(self, identifier: str) -> list[Version]:
        return self._versions(await self._fetch(identifier), identifier)

    async def get_latest_version(self, identifier: str) -> Version:
        data = await self._fetch(identifier)
        return self._latest(data, self._versions(data, identifier), identifier)

    async def check_update(self, identifier: str, current_version: str) -> UpdateInfo:
        data = await self._fetch(identifier)
        versions = self._versions(data, identifier)
        latest = self._latest(data, versions, identifier)
        return build_update_info(current_version, versions, latest=latest)
