"""Scan a directory tree with every registered manifest parser."""

from __future__ import annotations

from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import structlog

# Ensure parsers are registered before any scan runs.
import treeupdt.engines.dependency_scanner.parsers  # noqa: F401
from treeupdt.engines.dependency_scanner.models import ManifestFormat, ScanResult
from treeupdt.engines.dependency_scanner.registry import discover_manifests, scan_one
from treeupdt.engines.dependency_scanner.walker import DirectoryWalker

log = structlog.get_logger("treeupdt.scanner")


def scan(
    root: Path,
    walker: DirectoryWalker | None = None,
    formats: Iterable[ManifestFormat] | None = None,
    max_workers: int | None = None,
) -> ScanResult:
    """Scan *root* (a directory or a single manifest) for declarations.

    Files are parsed concurrently; results keep walk order. A file that
    fails to parse is recorded in ``failures`` and the scan carries on.
    """
    matches = discover_manifests(Path(root), walker)
    if formats is not None:
        wanted = set(formats)
        matches = [(p, f) for p, f in matches if p.format in wanted]

    result = ScanResult()
    if not matches:
        return result

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        for partial in pool.map(lambda m: scan_one(*m), matches):
            result.extend(partial)

    log.info(
        "scanner.done",
        root=str(root),
        files=len(matches),
        declarations=len(result.declarations),
        failures=len(result.failures),
    )
    return result
