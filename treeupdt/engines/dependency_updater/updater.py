"""Apply a new version to the file a declaration came from."""

from __future__ import annotations

import os
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path

import structlog

# Ensure updaters are registered before any update runs.
import treeupdt.engines.dependency_updater.updaters  # noqa: F401
from treeupdt.engines.dependency_scanner.models import Declaration
from treeupdt.engines.dependency_updater.registry import get_updater
from treeupdt.exceptions import ManifestIOError

log = structlog.get_logger("treeupdt.updater")


@dataclass
class FileUpdate:
    """Outcome of one declaration update."""

    path: str
    name: str
    old_version: str
    new_version: str
    old_content: str
    new_content: str
    written: bool = False

    @property
    def changed(self) -> bool:
        return self.old_content != self.new_content


def _read(path: Path) -> str:
    try:
        with open(path, encoding="utf-8", newline="") as fh:
            return fh.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestIOError(f"failed to read {path}: {exc}") from exc


def _write(path: Path, content: str) -> None:
    """Write to a sibling temp file, then swap it in; the manifest is never half-written."""
    tmp: str | None = None
    try:
        mode = stat.S_IMODE(path.stat().st_mode)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(content)
        os.chmod(tmp, mode)
        os.replace(tmp, path)
        tmp = None
    except OSError as exc:
        raise ManifestIOError(f"failed to write {path}: {exc}") from exc
    finally:
        if tmp is not None:
            Path(tmp).unlink(missing_ok=True)


def mutate(declaration: Declaration, new_version: str) -> str:
    """Return the declaration's file content with *new_version* applied. Nothing is written."""
    content = _read(Path(declaration.path))
    return get_updater(declaration.format).update(content, declaration, new_version)


def update_file(declaration: Declaration, new_version: str, write: bool = True) -> FileUpdate:
    """Read, mutate and (if *write* and something changed) rewrite the file.

    The file is only opened for writing after the mutation succeeded, so a
    failed update leaves it untouched.
    """
    file_path = Path(declaration.path)
    content = _read(file_path)
    new_content = get_updater(declaration.format).update(content, declaration, new_version)
    result = FileUpdate(
        path=declaration.path,
        name=declaration.name,
        old_version=declaration.current_version,
        new_version=new_version,
        old_content=content,
        new_content=new_content,
    )
    if not result.changed:
        log.debug("updater.unchanged", path=declaration.path, name=declaration.name)
        return result
    if write:
        _write(file_path, new_content)
        result.written = True
        log.info(
            "updater.file_written",
            path=declaration.path,
            name=declaration.name,
            old=declaration.current_version,
            new=new_version,
        )
    return result
