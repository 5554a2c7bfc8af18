"""Narrow declarations by format, name, source and strategy; skip ignored versions."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from treeupdt.core.config import FilterSettings, TreeupdtConfig, glob_match
from treeupdt.engines.dependency_scanner.models import (
    Declaration,
    ManifestFormat,
    SourceType,
    UpdateStrategy,
)
from treeupdt.exceptions import ConfigError

# Short names accepted on the command line and in config files.
FILE_TYPE_ALIASES: dict[str, ManifestFormat] = {
    "nix": ManifestFormat.NIX,
    "cargo": ManifestFormat.CARGO_TOML,
    "npm": ManifestFormat.NPM_JSON,
    "go": ManifestFormat.GO_MOD,
}


def parse_file_type(value: str) -> ManifestFormat:
    key = value.strip().lower()
    if key in FILE_TYPE_ALIASES:
        return FILE_TYPE_ALIASES[key]
    try:
        return ManifestFormat(key)
    except ValueError:
        raise ConfigError(f"unknown file type: {value}") from None


def _parse_enum(enum_cls, value: str, label: str):
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        raise ConfigError(f"unknown {label}: {value}") from None


def _compile(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ConfigError(f"invalid name pattern {pattern!r}: {exc}") from exc


@dataclass
class DeclarationFilter:
    """All configured criteria must hold; within one criterion any value may match."""

    formats: set[ManifestFormat] | None = None
    name_patterns: list[re.Pattern[str]] | None = None
    source_types: set[SourceType] | None = None
    strategies: set[UpdateStrategy] | None = None

    @classmethod
    def from_options(
        cls,
        file_type: str | None = None,
        name_pattern: str | None = None,
        source_type: str | None = None,
        update_strategy: str | None = None,
    ) -> DeclarationFilter:
        return cls(
            formats={parse_file_type(file_type)} if file_type else None,
            name_patterns=[_compile(name_pattern)] if name_pattern else None,
            source_types={_parse_enum(SourceType, source_type, "source type")}
            if source_type
            else None,
            strategies={_parse_enum(UpdateStrategy, update_strategy, "update strategy")}
            if update_strategy
            else None,
        )

    @classmethod
    def from_settings(cls, settings: FilterSettings) -> DeclarationFilter:
        return cls(
            formats={parse_file_type(v) for v in settings.file_types}
            if settings.file_types
            else None,
            name_patterns=[_compile(p) for p in settings.name_patterns]
            if settings.name_patterns
            else None,
            source_types={_parse_enum(SourceType, v, "source type") for v in settings.source_types}
            if settings.source_types
            else None,
            strategies={
                _parse_enum(UpdateStrategy, v, "update strategy")
                for v in settings.update_strategies
            }
            if settings.update_strategies
            else None,
        )

    def matches(self, declaration: Declaration) -> bool:
        if self.formats is not None and declaration.format not in self.formats:
            return False
        if self.name_patterns is not None and not any(
            p.search(declaration.name) for p in self.name_patterns
        ):
            return False
        if self.source_types is not None and not any(
            s.source_type in self.source_types for s in declaration.sources
        ):
            return False
        if self.strategies is not None and declaration.update_strategy not in self.strategies:
            return False
        return True

    def apply(self, declarations: Iterable[Declaration]) -> list[Declaration]:
        return [d for d in declarations if self.matches(d)]


def ignore_patterns(declaration: Declaration, config: TreeupdtConfig | None = None) -> list[str]:
    """``ignore-versions`` globs from the annotation and the matching package config."""
    patterns: list[str] = []
    annotated = declaration.option("ignore-versions")
    if annotated:
        patterns.extend(p.strip() for p in annotated.split(",") if p.strip())
    if config is not None:
        pkg_cfg = config.package_config(declaration, config.file_config(declaration.path))
        if pkg_cfg is not None:
            patterns.extend(pkg_cfg.ignore_versions)
    return patterns


def ignored_version(
    declaration: Declaration, version: str, config: TreeupdtConfig | None = None
) -> bool:
    return any(glob_match(p, version) for p in ignore_patterns(declaration, config))
