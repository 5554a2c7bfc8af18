"""Directory walker used by every scanner.

Symlinks are followed. Cycles are broken with a visited set of
``(st_dev, st_ino)`` pairs, so a link pointing back up the tree is only
entered once.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import structlog

log = structlog.get_logger("treeupdt.scanner")

DEFAULT_SKIP_DIRS = frozenset({".git", "node_modules"})


class DirectoryWalker:
    """Yield regular files below a root directory, depth first, sorted by name."""

    def __init__(self, skip_dirs: frozenset[str] | set[str] = DEFAULT_SKIP_DIRS) -> None:
        self._skip_dirs = frozenset(skip_dirs)

    def walk(self, root: Path) -> Iterator[Path]:
        root = Path(root)
        if root.is_file():
            yield root
            return
        visited: set[tuple[int, int]] = set()
        yield from self._walk_dir(root, visited)

    def _walk_dir(self, directory: Path, visited: set[tuple[int, int]]) -> Iterator[Path]:
        try:
            st = directory.stat()
        except OSError as exc:
            log.warning("walker.stat_failed", path=str(directory), error=str(exc))
            return
        inode = (st.st_dev, st.st_ino)
        if inode in visited:
            log.debug("walker.cycle_skipped", path=str(directory))
            return
        visited.add(inode)

        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as exc:
            log.warning("walker.list_failed", path=str(directory), error=str(exc))
            return

        subdirs: list[Path] = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=True):
                    if entry.name not in self._skip_dirs:
                        subdirs.append(Path(entry.path))
                elif entry.is_file(follow_symlinks=True):
                    yield Path(entry.path)
            except OSError:
                # dangling symlink
                continue

        for sub in subdirs:
            yield from self._walk_dir(sub, visited)
