"""Parser registry: discover manifest files and match them to parsers."""

from __future__ import annotations

from fnmatch import fnmatchcase
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

from treeupdt.engines.dependency_scanner.models import (
    Declaration,
    ManifestFormat,
    ScanFailure,
    ScanResult,
)
from treeupdt.engines.dependency_scanner.walker import DirectoryWalker
from treeupdt.exceptions import ManifestIOError, TreeupdtError, UnsupportedFormatError

log = structlog.get_logger("treeupdt.scanner")


@runtime_checkable
class ManifestParser(Protocol):
    """Interface that every manifest parser must satisfy."""

    format: ManifestFormat
    file_patterns: list[str]

    def matches(self, file_path: Path) -> bool: ...

    def parse(self, file_path: Path, content: str) -> list[Declaration]: ...

    def parse_file(self, file_path: Path) -> list[Declaration]: ...


class BaseManifestParser:
    """Shared file matching and per-file error isolation for parsers."""

    format: ManifestFormat
    file_patterns: list[str] = []

    def matches(self, file_path: Path) -> bool:
        return any(fnmatchcase(file_path.name, p) for p in self.file_patterns)

    def parse(self, file_path: Path, content: str) -> list[Declaration]:
        raise NotImplementedError

    def parse_file(self, file_path: Path) -> list[Declaration]:
        try:
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ManifestIOError(f"failed to read {file_path}: {exc}") from exc
        return self.parse(file_path, content)

    def scan(self, root: Path, walker: DirectoryWalker | None = None) -> ScanResult:
        """Scan every matching file below *root*; failures never abort the walk."""
        walker = walker or DirectoryWalker()
        result = ScanResult()
        for file_path in walker.walk(Path(root)):
            if not self.matches(file_path):
                continue
            result.extend(scan_one(self, file_path))
        return result


def scan_one(parser: ManifestParser, file_path: Path) -> ScanResult:
    """Parse a single file, converting a failure into a :class:`ScanFailure`."""
    try:
        declarations = parser.parse_file(file_path)
    except TreeupdtError as exc:
        log.warning(
            "scanner.file_failed",
            path=str(file_path),
            format=parser.format.value,
            error=str(exc),
        )
        return ScanResult(failures=[ScanFailure(path=str(file_path), error=str(exc))])
    return ScanResult(declarations=declarations)


PARSER_REGISTRY: dict[ManifestFormat, ManifestParser] = {}


def register_parser(parser: ManifestParser) -> None:
    """Register a parser instance by its manifest format."""
    PARSER_REGISTRY[parser.format] = parser


def get_parser(fmt: ManifestFormat) -> ManifestParser:
    try:
        return PARSER_REGISTRY[fmt]
    except KeyError:
        raise UnsupportedFormatError(f"no parser registered for {fmt.value}") from None


def parser_for_path(file_path: Path) -> ManifestParser | None:
    """Route a file to its parser by filename; None if no format claims it."""
    for parser in PARSER_REGISTRY.values():
        if parser.matches(file_path):
            return parser
    return None


def discover_manifests(
    root: Path, walker: DirectoryWalker | None = None
) -> list[tuple[ManifestParser, Path]]:
    """Walk *root* and match manifest files to registered parsers.

    Returns a list of (parser, matched_file) pairs in walk order.
    """
    walker = walker or DirectoryWalker()
    matches: list[tuple[ManifestParser, Path]] = []
    for file_path in walker.walk(Path(root)):
        parser = parser_for_path(file_path)
        if parser is not None:
            matches.append((parser, file_path))
    return matches
