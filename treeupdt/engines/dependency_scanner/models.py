"""Data models for the dependency scanner engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ManifestFormat(str, Enum):
    """Closed set of manifest grammars understood by the scanner and updater."""

    NIX = "nix"
    CARGO_TOML = "cargo-toml"
    GO_MOD = "go-mod"
    NPM_JSON = "npm-json"


class SourceType(str, Enum):
    GITHUB = "github"
    NPM = "npm"
    PYPI = "pypi"
    CRATES = "crates"
    GIT = "git"
    URL = "url"


class UpdateStrategy(str, Enum):
    """Advisory update policy. Scanners set a default; the config layer overrides it."""

    CONSERVATIVE = "conservative"
    STABLE = "stable"
    LATEST = "latest"
    AGGRESSIVE = "aggressive"


@dataclass
class SourceHint:
    """Where upstream version data for a declaration can be fetched."""

    source_type: SourceType
    identifier: str
    url: str | None = None


@dataclass
class Annotation:
    """A ``treeupdt:`` directive found in a comment.

    ``line`` is the 1-based source line of the comment. Boolean directives
    are stored with the value ``"true"``.
    """

    line: int
    options: dict[str, str] = field(default_factory=dict)


@dataclass
class Declaration:
    """A single version-pinned dependency entry discovered in a manifest."""

    path: str
    format: ManifestFormat
    name: str
    current_version: str
    sources: list[SourceHint] = field(default_factory=list)
    update_strategy: UpdateStrategy = UpdateStrategy.STABLE
    annotations: list[Annotation] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def option(self, key: str) -> str | None:
        """Return the value of directive *key* from the attached annotations."""
        for annotation in self.annotations:
            if key in annotation.options:
                return annotation.options[key]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "format": self.format.value,
            "name": self.name,
            "current_version": self.current_version,
            "sources": [
                {
                    "source_type": s.source_type.value,
                    "identifier": s.identifier,
                    "url": s.url,
                }
                for s in self.sources
            ],
            "update_strategy": self.update_strategy.value,
            "annotations": [
                {"line": a.line, "options": dict(a.options)} for a in self.annotations
            ],
            "metadata": dict(self.metadata),
        }


@dataclass
class ScanFailure:
    """A manifest file that could not be scanned."""

    path: str
    error: str


@dataclass
class ScanResult:
    """Result of scanning a directory tree."""

    declarations: list[Declaration] = field(default_factory=list)
    failures: list[ScanFailure] = field(default_factory=list)

    def extend(self, other: ScanResult) -> None:
        self.declarations.extend(other.declarations)
        self.failures.extend(other.failures)
