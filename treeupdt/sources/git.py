"""Plain git remotes as a version source, via ``git ls-remote``."""

from __future__ import annotations

import asyncio

from treeupdt.engines.dependency_scanner.models import SourceType
from treeupdt.exceptions import SourceError
from treeupdt.sources.base import VersionSource
from treeupdt.sources.models import UpdateInfo, Version

DEFAULT_BRANCH = "main"


def parse_git_identifier(identifier: str) -> tuple[str, str]:
    """``url#branch`` -> ``(url, branch)``; the branch defaults to ``main``.

    Flake-style ``git+`` prefixes and query strings are dropped, and a bare
    Go module path such as ``github.com/owner/repo`` gets an https scheme.
    """
    url, _, branch = identifier.partition("#")
    url = url.removeprefix("git+").split("?", 1)[0]
    if "://" not in url and "@" not in url and not url.startswith(("/", ".")):
        url = f"https://{url}"
    return url, branch or DEFAULT_BRANCH


class GitSource(VersionSource):
    """The head commit of a branch is the only version a git remote offers."""

    source_type = SourceType.GIT

    async def _ls_remote(self, url: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                "git",
                "ls-remote",
                "--heads",
                url,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SourceError(f"cannot run git: {exc}") from exc
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise SourceError(
                f"git ls-remote failed (exit {proc.returncode}): {stderr.decode().strip()}"
            )
        return stdout.decode()

    async def get_latest_version(self, identifier: str) -> Version:
        url, branch = parse_git_identifier(identifier)
        output = await self._ls_remote(url)
        for line in output.splitlines():
            parts = line.split()
            if len(parts) == 2 and parts[1] == f"refs/heads/{branch}":
                sha = parts[0]
                return Version(
                    version=sha,
                    metadata={"branch": branch, "short_sha": sha[:7], "repository": url},
                )
        raise SourceError(f"branch {branch!r} not found in {url}")

    async def get_versions(self, identifier: str) -> list[Version]:
        return [await self.get_latest_version(identifier)]

    async def check_update(self, identifier: str, current_version: str) -> UpdateInfo:
        latest = await self.get_latest_version(identifier)
        # either side may be an abbreviated sha
        same = latest.version.startswith(current_version) or current_version.startswith(
            latest.version
        )
        return UpdateInfo(
            current_version=current_version,
            latest_version=latest,
            latest_stable_version=latest,
            all_versions=[latest],
            update_available=not same,
        )
