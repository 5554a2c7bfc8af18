"""GitHub releases as a version source."""

from __future__ import annotations

import os
from typing import Any

import httpx
import structlog

from treeupdt.engines.dependency_scanner.models import SourceType
from treeupdt.exceptions import SourceError
from treeupdt.sources.base import (
    VersionSource,
    clean_version,
    is_prerelease,
    parse_timestamp,
)
from treeupdt.sources.models import Version

log = structlog.get_logger("treeupdt.sources")

GITHUB_API = "https://api.github.com"


def parse_identifier(identifier: str) -> tuple[str, str]:
    """``owner/repo`` -> ``("owner", "repo")``; anything else is rejected."""
    parts = identifier.split("/")
    if len(parts) != 2 or not all(parts):
        raise SourceError(f"invalid GitHub identifier {identifier!r}, expected owner/repo")
    return parts[0], parts[1]


class GitHubSource(VersionSource):
    """Releases of a repository, falling back to its tags when it has none."""

    source_type = SourceType.GITHUB

    def __init__(self, token: str | None = None, client: httpx.AsyncClient | None = None) -> None:
        resolved_token = token or os.environ.get("GITHUB_TOKEN")
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "treeupdt",
        }
        if resolved_token:
            headers["Authorization"] = f"Bearer {resolved_token}"
        self._client = client or httpx.AsyncClient(
            base_url=GITHUB_API,
            headers=headers,
            timeout=30.0,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str) -> list[Any]:
        try:
            resp = await self._client.get(path, params={"per_page": 100})
        except httpx.HTTPError as exc:
            raise SourceError(f"GitHub request {path} failed: {exc}") from exc
        if resp.status_code != 200:
            raise SourceError(f"GitHub API error {resp.status_code} for {path}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise SourceError(f"GitHub returned invalid JSON for {path}: {exc}") from exc
        if not isinstance(data, list):
            raise SourceError(f"GitHub returned an unexpected payload for {path}")
        return data

    async def get_versions(self, identifier: str) -> list[Version]:
        owner, repo = parse_identifier(identifier)
        releases = await self._get_json(f"/repos/{owner}/{repo}/releases")
        try:
            versions = [
                Version(
                    version=clean_version(r["tag_name"]),
                    published_at=parse_timestamp(r.get("published_at")),
                    pre_release=bool(r.get("prerelease")),
                    metadata={"tag": r["tag_name"]},
                )
                for r in releases
                if not r.get("draft")
            ]
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise SourceError(f"malformed GitHub release for {identifier}: {exc!r}") from exc
        if versions:
            return versions

        log.debug("github.no_releases", repo=identifier)
        tags = await self._get_json(f"/repos/{owner}/{repo}/tags")
        try:
            return [
                Version(
                    version=clean_version(t["name"]),
                    pre_release=is_prerelease(clean_version(t["name"])),
                    metadata={"tag": t["name"], "commit": (t.get("commit") or {}).get("sha")},
                )
                for t in tags
            ]
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise SourceError(f"malformed GitHub tag for {identifier}: {exc!r}") from exc
