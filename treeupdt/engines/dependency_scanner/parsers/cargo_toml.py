"""Parser for Rust Cargo.toml files.

Values are read with ``tomllib``. Because ``tomllib`` discards positions,
:class:`CargoLayout` re-reads the raw lines to find where each table and
key lives; the scanner uses it to correlate comments and the updater uses
it to rewrite a single version literal in place.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from treeupdt.engines.dependency_scanner.annotations import correlate_annotations
from treeupdt.engines.dependency_scanner.models import (
    Declaration,
    ManifestFormat,
    SourceHint,
    SourceType,
)
from treeupdt.engines.dependency_scanner.registry import BaseManifestParser, register_parser
from treeupdt.exceptions import ParseError

DEP_SECTIONS = ("dependencies", "dev-dependencies", "build-dependencies")

_BARE_KEY_CHARS = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-"
)


# ── raw layout ───────────────────────────────────────────────────────────


def _read_quoted(text: str, pos: int) -> tuple[str, int] | None:
    """Read a basic or literal quoted key starting at ``text[pos]``."""
    quote = text[pos]
    i = pos + 1
    out: list[str] = []
    while i < len(text):
        ch = text[i]
        if quote == '"' and ch == "\\" and i + 1 < len(text):
            out.append(text[i + 1])
            i += 2
            continue
        if ch == quote:
            return "".join(out), i + 1
        out.append(ch)
        i += 1
    return None


def read_dotted_key(text: str, pos: int = 0) -> tuple[tuple[str, ...], int] | None:
    """Read a (possibly dotted, possibly quoted) TOML key.

    Returns the key parts and the offset just past the key, or None.
    """
    parts: list[str] = []
    i = pos
    while True:
        while i < len(text) and text[i] in " \t":
            i += 1
        if i >= len(text):
            return None
        if text[i] in "\"'":
            read = _read_quoted(text, i)
            if read is None:
                return None
            part, i = read
        else:
            start = i
            while i < len(text) and text[i] in _BARE_KEY_CHARS:
                i += 1
            if i == start:
                return None
            part = text[start:i]
        parts.append(part)
        while i < len(text) and text[i] in " \t":
            i += 1
        if i < len(text) and text[i] == ".":
            i += 1
            continue
        return tuple(parts), i


def value_extent(line: str, start: int) -> int:
    """Offset where the value beginning at *start* ends (before any comment)."""
    quote: str | None = None
    i = start
    end = start
    while i < len(line):
        ch = line[i]
        if quote is None:
            if ch == "#":
                break
            if ch in "\"'":
                quote = ch
        elif ch == "\\" and quote == '"':
            i += 2
            end = i
            continue
        elif ch == quote:
            quote = None
        if not ch.isspace():
            end = i + 1
        i += 1
    return end


def string_span(content: str, start: int, end: int) -> tuple[int, int] | None:
    """Span of the characters inside a one-line quoted string at ``content[start:end]``."""
    text = content[start:end]
    if len(text) < 2 or text[0] not in "\"'" or text[-1] != text[0]:
        return None
    if text.startswith(('"""', "'''")):
        return None
    return start + 1, end - 1


def inline_table_version_span(content: str, start: int, end: int) -> tuple[int, int] | None:
    """Span of the ``version`` string inside an inline table ``{ ... }``."""
    text = content[start:end]
    if not text.startswith("{"):
        return None
    i = 1
    depth = 0
    quote: str | None = None
    expect_key = True
    while i < len(text):
        ch = text[i]
        if quote is not None:
            if ch == "\\" and quote == '"':
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue
        if depth == 0 and expect_key and ch not in " \t,":
            key = read_dotted_key(text, i)
            if key is None:
                return None
            parts, after = key
            while after < len(text) and text[after] in " \t":
                after += 1
            if after >= len(text) or text[after] != "=":
                return None
            value_start = after + 1
            while value_start < len(text) and text[value_start] in " \t":
                value_start += 1
            if parts == ("version",) and value_start < len(text) and text[value_start] in "\"'":
                close = text.find(text[value_start], value_start + 1)
                if close == -1:
                    return None
                return start + value_start + 1, start + close
            expect_key = False
            i = value_start
            continue
        if ch in "\"'":
            quote = ch
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            if depth == 0:
                return None
            depth -= 1
        elif ch == "," and depth == 0:
            expect_key = True
        i += 1
    return None


@dataclass
class TomlEntry:
    """One ``key = value`` line. Offsets index into the whole document."""

    table: tuple[str, ...]
    key: tuple[str, ...]
    line: int
    value_start: int
    value_end: int


@dataclass
class DependencyLocation:
    line: int
    version_span: tuple[int, int] | None


class CargoLayout:
    """Line-level map of a TOML document: table headers and key/value entries."""

    def __init__(self, content: str) -> None:
        self.content = content
        self.lines = content.splitlines()
        self.headers: list[tuple[tuple[str, ...], int]] = []
        self.entries: list[TomlEntry] = []
        self._index()

    def _index(self) -> None:
        table: tuple[str, ...] = ()
        offset = 0
        in_multiline: str | None = None
        for idx, raw in enumerate(self.content.splitlines(keepends=True)):
            line = raw.rstrip("\r\n")
            line_offset = offset
            offset += len(raw)

            if in_multiline is not None:
                if in_multiline in line:
                    in_multiline = None
                continue

            stripped = line.lstrip()
            if not stripped or stripped.startswith("#"):
                continue

            if stripped.startswith("["):
                header = self._parse_header(stripped)
                if header is not None:
                    table = header
                    self.headers.append((header, idx))
                continue

            key = read_dotted_key(line)
            if key is None:
                continue
            parts, after = key
            if after >= len(line) or line[after] != "=":
                continue
            value_start = after + 1
            while value_start < len(line) and line[value_start] in " \t":
                value_start += 1
            value_end = value_extent(line, value_start)
            self.entries.append(
                TomlEntry(
                    table=table,
                    key=parts,
                    line=idx,
                    value_start=line_offset + value_start,
                    value_end=line_offset + value_end,
                )
            )
            for delim in ('"""', "'''"):
                if line[value_start:].count(delim) % 2 == 1:
                    in_multiline = delim

    @staticmethod
    def _parse_header(stripped: str) -> tuple[str, ...] | None:
        is_array = stripped.startswith("[[")
        start = 2 if is_array else 1
        key = read_dotted_key(stripped, start)
        if key is None:
            return None
        parts, after = key
        closing = "]]" if is_array else "]"
        if not stripped.startswith(closing, after):
            return None
        return parts

    def entry(self, table: tuple[str, ...], key: tuple[str, ...]) -> TomlEntry | None:
        for entry in self.entries:
            if entry.table == table and entry.key == key:
                return entry
        return None

    def header_line(self, table: tuple[str, ...]) -> int | None:
        for header, idx in self.headers:
            if header == table:
                return idx
        return None

    def _version_span(self, entry: TomlEntry) -> tuple[int, int] | None:
        return string_span(self.content, entry.value_start, entry.value_end) or (
            inline_table_version_span(self.content, entry.value_start, entry.value_end)
        )

    def locate_dependency(self, section: tuple[str, ...], name: str) -> DependencyLocation | None:
        """Find a dependency's line and the span of its version literal.

        Handles ``name = "1"``, ``name = { version = "1" }``,
        ``name.version = "1"`` and a ``[section.name]`` sub-table.
        """
        entry = self.entry(section, (name,))
        if entry is not None:
            return DependencyLocation(line=entry.line, version_span=self._version_span(entry))

        entry = self.entry(section, (name, "version"))
        if entry is not None:
            span = string_span(self.content, entry.value_start, entry.value_end)
            return DependencyLocation(line=entry.line, version_span=span)

        header = self.header_line(section + (name,))
        if header is not None:
            entry = self.entry(section + (name,), ("version",))
            span = None
            if entry is not None:
                span = string_span(self.content, entry.value_start, entry.value_end)
            return DependencyLocation(line=header, version_span=span)
        return None

    def locate_package_version(self) -> DependencyLocation | None:
        entry = self.entry(("package",), ("version",))
        if entry is None:
            return None
        span = string_span(self.content, entry.value_start, entry.value_end)
        return DependencyLocation(line=entry.line, version_span=span)


# ── scanner ──────────────────────────────────────────────────────────────


def section_label(section: str) -> str:
    """``dev-dependencies`` -> ``dev``; ``dependencies`` stays as is."""
    suffix = "-dependencies"
    return section[: -len(suffix)] if section.endswith(suffix) else section


def _parse_dependency(name: str, spec: Any) -> tuple[str, SourceHint]:
    """Extract version and source hint from a dependency spec."""
    if isinstance(spec, str):
        return spec, SourceHint(source_type=SourceType.CRATES, identifier=name)
    if isinstance(spec, dict):
        version = spec.get("version")
        if not isinstance(version, str):
            version = "unknown"
        git = spec.get("git")
        if isinstance(git, str):
            identifier = git
            branch = spec.get("branch")
            if isinstance(branch, str):
                identifier = f"{git}#{branch}"
            return version, SourceHint(source_type=SourceType.GIT, identifier=identifier, url=git)
        crate = spec.get("package", name)
        if not isinstance(crate, str):
            crate = name
        return version, SourceHint(source_type=SourceType.CRATES, identifier=crate)
    return "unknown", SourceHint(source_type=SourceType.CRATES, identifier=name)


class CargoTomlParser(BaseManifestParser):
    format = ManifestFormat.CARGO_TOML
    file_patterns = ["Cargo.toml"]

    def parse(self, file_path: Path, content: str) -> list[Declaration]:
        try:
            data = tomllib.loads(content)
        except tomllib.TOMLDecodeError as exc:
            raise ParseError(f"invalid Cargo.toml {file_path}: {exc}") from exc

        layout = CargoLayout(content)
        path = str(file_path)
        decls: list[Declaration] = []

        package = data.get("package")
        if isinstance(package, dict):
            version = package.get("version")
            crate = package.get("name")
            if isinstance(version, str) and isinstance(crate, str):
                loc = layout.locate_package_version()
                decls.append(
                    Declaration(
                        path=path,
                        format=self.format,
                        name=f"crate-{crate}",
                        current_version=version,
                        sources=[SourceHint(source_type=SourceType.CRATES, identifier=crate)],
                        annotations=self._annotations(layout, loc),
                        metadata={"section": ["package"]},
                    )
                )

        for section in DEP_SECTIONS:
            decls.extend(
                self._section(path, layout, data.get(section), (section,), f"{section_label(section)}-")
            )

        workspace = data.get("workspace")
        if isinstance(workspace, dict):
            decls.extend(
                self._section(
                    path,
                    layout,
                    workspace.get("dependencies"),
                    ("workspace", "dependencies"),
                    "workspace-dependency-",
                )
            )

        target = data.get("target")
        if isinstance(target, dict):
            for cfg, table in target.items():
                if not isinstance(table, dict):
                    continue
                for section in DEP_SECTIONS:
                    decls.extend(
                        self._section(
                            path,
                            layout,
                            table.get(section),
                            ("target", cfg, section),
                            f"target.{cfg}.{section_label(section)}-",
                        )
                    )

        return decls

    def _section(
        self,
        path: str,
        layout: CargoLayout,
        table: Any,
        section: tuple[str, ...],
        prefix: str,
    ) -> list[Declaration]:
        if not isinstance(table, dict):
            return []
        decls: list[Declaration] = []
        for dep_name, spec in table.items():
            version, source = _parse_dependency(dep_name, spec)
            loc = layout.locate_dependency(section, dep_name)
            decls.append(
                Declaration(
                    path=path,
                    format=self.format,
                    name=f"{prefix}{dep_name}",
                    current_version=version,
                    sources=[source],
                    annotations=self._annotations(layout, loc),
                    metadata={"section": list(section), "dependency": dep_name},
                )
            )
        return decls

    @staticmethod
    def _annotations(layout: CargoLayout, loc: DependencyLocation | None):
        if loc is None:
            return []
        return correlate_annotations(layout.lines, loc.line, ("#",))


register_parser(CargoTomlParser())
