"""Updater for npm package.json files.

JSON offers no comment-preserving edit path here, so the whole document
is re-serialized with two-space indentation.
"""

from __future__ import annotations

import json

from treeupdt.engines.dependency_scanner.models import Declaration, ManifestFormat
from treeupdt.engines.dependency_updater.registry import register_updater
from treeupdt.exceptions import DeclarationNotFound, ParseError

# declaration name prefix -> dependency section
_NAME_PREFIXES = (
    ("dependency-", "dependencies"),
    ("devDependency-", "devDependencies"),
    ("peerDependency-", "peerDependencies"),
)

# ">=" must be tried before anything shorter
RANGE_PREFIXES = (">=", "^", "~")
_RANGE_CHARS = ("^", "~", ">", "<", "=")


def with_range_prefix(current: object, new_version: str) -> str:
    """Carry the range prefix of *current* over to *new_version*."""
    if not isinstance(current, str) or new_version.startswith(_RANGE_CHARS):
        return new_version
    for prefix in RANGE_PREFIXES:
        if current.startswith(prefix):
            return prefix + new_version
    return new_version


class PackageJsonUpdater:
    format = ManifestFormat.NPM_JSON

    def update(self, content: str, declaration: Declaration, new_version: str) -> str:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ParseError(f"invalid JSON in {declaration.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ParseError(f"{declaration.path}: top-level value is not an object")

        if declaration.name == "package":
            if "version" not in data:
                raise DeclarationNotFound(
                    declaration.name, declaration.path, "no top-level version"
                )
            data["version"] = new_version
        else:
            section, dep = self._target(declaration)
            deps = data.get(section)
            if not isinstance(deps, dict) or dep not in deps:
                raise DeclarationNotFound(declaration.name, declaration.path)
            deps[dep] = with_range_prefix(deps[dep], new_version)

        out = json.dumps(data, indent=2, ensure_ascii=False)
        if content.endswith("\n"):
            out += "\n"
        return out

    @staticmethod
    def _target(declaration: Declaration) -> tuple[str, str]:
        section = declaration.metadata.get("section")
        dependency = declaration.metadata.get("dependency")
        if section and dependency:
            return section, dependency
        for prefix, section in _NAME_PREFIXES:
            if declaration.name.startswith(prefix):
                return section, declaration.name[len(prefix):]
        raise DeclarationNotFound(
            declaration.name, declaration.path, "not a package.json declaration name"
        )


register_updater(PackageJsonUpdater())
