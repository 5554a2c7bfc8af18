"""crates.io as a version source."""

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

CRATES_IO_API = "https://crates.io/api/v1/crates"


class CratesIoSource(VersionSource):
    source_type = SourceType.CRATES

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        # crates.io rejects requests without a User-Agent
        self._client = client or httpx.AsyncClient(
            timeout=30.0,
            headers={"User-Agent": "treeupdt/0.1.0"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _fetch(self, crate: str) -> dict:
        try:
            resp = await self._client.get(f"{CRATES_IO_API}/{crate}")
        except httpx.HTTPError as exc:
            raise SourceError(f"crates.io request for {crate} failed: {exc}") from exc
        if resp.status_code != 200:
            raise SourceError(f"crates.io error {resp.status_code} for {crate}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise SourceError(f"crates.io returned invalid JSON for {crate}: {exc}") from exc
        if not isinstance(data, dict):
            raise SourceError(f"crates.io returned an unexpected payload for {crate}")
        return data

    @staticmethod
    def _parse(data: dict, crate: str) -> tuple[list[Version], Version]:
        """All versions (newest first) and the registry's ``max_version``."""
        try:
            versions = [
                Version(
                    version=v["num"],
                    published_at=parse_timestamp(v.get("created_at")),
                    yanked=bool(v.get("yanked")),
                    pre_release=is_prerelease(v["num"]),
                )
                for v in data.get("versions", [])
            ]
            max_version = data["crate"]["max_version"]
            latest = Version(version=max_version, pre_release=is_prerelease(max_version))
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise SourceError(f"malformed crates.io response for {crate}: {exc!r}") from exc
        return sort_versions(versions), latest

    async def get_versions(self, identifier: str) -> list[Version]:
        versions, _ = self._parse(await self._fetch(identifier), identifier)
        return versions

    async def get_latest_version(self, identifier: str) -> Version:
        _, latest = self._parse(await self._fetch(identifier), identifier)
        return latest

    async def check_update(self, identifier: str, current_version: str) -> UpdateInfo:
        versions, latest = self._parse(await self._fetch(identifier), identifier)
        return build_update_info(current_version, versions, latest=latest)
