"""Updater for Rust Cargo.toml files.

Only the characters of the version string are replaced; sibling keys,
comments and whitespace stay byte-for-byte identical.
"""

from __future__ import annotations

from treeupdt.engines.dependency_scanner.models import Declaration, ManifestFormat
from treeupdt.engines.dependency_scanner.parsers.cargo_toml import (
    CargoLayout,
    DependencyLocation,
)
from treeupdt.engines.dependency_updater.edits import TextEdit, apply_edits
from treeupdt.engines.dependency_updater.registry import register_updater
from treeupdt.exceptions import DeclarationNotFound

# declaration name prefix -> table path
_NAME_PREFIXES = (
    ("workspace-dependency-", ("workspace", "dependencies")),
    ("dependencies-", ("dependencies",)),
    ("dev-", ("dev-dependencies",)),
    ("build-", ("build-dependencies",)),
)

_SECTION_LABELS = {
    "dependencies": "dependencies",
    "dev": "dev-dependencies",
    "build": "build-dependencies",
}


def section_from_name(name: str) -> tuple[tuple[str, ...], str] | None:
    """Decode ``dev-serde`` or ``target.<cfg>.build-cc`` into (table path, crate)."""
    if name.startswith("target."):
        cfg, _, tail = name[len("target."):].rpartition(".")
        label, _, dep = tail.partition("-")
        if not cfg or not dep or label not in _SECTION_LABELS:
            return None
        return ("target", cfg, _SECTION_LABELS[label]), dep
    for prefix, section in _NAME_PREFIXES:
        if name.startswith(prefix):
            return section, name[len(prefix):]
    return None


class CargoTomlUpdater:
    format = ManifestFormat.CARGO_TOML

    def update(self, content: str, declaration: Declaration, new_version: str) -> str:
        layout = CargoLayout(content)
        loc = self._locate(layout, declaration)
        if loc is None:
            raise DeclarationNotFound(declaration.name, declaration.path)
        if loc.version_span is None:
            raise DeclarationNotFound(
                declaration.name, declaration.path, "entry has no version field"
            )
        start, end = loc.version_span
        return apply_edits(content, [TextEdit(start, end, new_version)])

    @staticmethod
    def _locate(layout: CargoLayout, declaration: Declaration) -> DependencyLocation | None:
        section = declaration.metadata.get("section")
        dependency = declaration.metadata.get("dependency")
        if section == ["package"] or (section is None and declaration.name.startswith("crate-")):
            return layout.locate_package_version()
        if section and dependency:
            return layout.locate_dependency(tuple(section), dependency)
        decoded = section_from_name(declaration.name)
        if decoded is None:
            return None
        return layout.locate_dependency(*decoded)


register_updater(CargoTomlUpdater())
