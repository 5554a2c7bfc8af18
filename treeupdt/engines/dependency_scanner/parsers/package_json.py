"""Parser for npm package.json files.

JSON has no comments, so directives use the npm ``"//"`` key convention:
a key ``"//<dependency>"`` in the same section whose string value contains
``treeupdt: ...`` annotates that dependency.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from treeupdt.engines.dependency_scanner.annotations import parse_annotation
from treeupdt.engines.dependency_scanner.models import (
    Annotation,
    Declaration,
    ManifestFormat,
    SourceHint,
    SourceType,
)
from treeupdt.engines.dependency_scanner.registry import BaseManifestParser, register_parser
from treeupdt.exceptions import ParseError

# section key -> declaration name prefix
SECTIONS = {
    "dependencies": "dependency",
    "devDependencies": "devDependency",
}


def _directive_line(lines: list[str], key: str) -> int:
    """1-based line of the JSON key *key*, or 0 when it cannot be located."""
    needle = json.dumps(key)
    for idx, line in enumerate(lines):
        if needle in line:
            return idx + 1
    return 0


class PackageJsonParser(BaseManifestParser):
    format = ManifestFormat.NPM_JSON
    file_patterns = ["package.json"]

    def parse(self, file_path: Path, content: str) -> list[Declaration]:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ParseError(f"invalid JSON in {file_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ParseError(f"{file_path}: top-level value is not an object")

        lines = content.splitlines()
        decls: list[Declaration] = []
        for section, prefix in SECTIONS.items():
            deps = data.get(section)
            if not isinstance(deps, dict):
                continue
            directives = self._directives(deps, lines)
            for dep_name, version in deps.items():
                if dep_name.startswith("//"):
                    continue
                annotation = directives.get(dep_name)
                decls.append(
                    Declaration(
                        path=str(file_path),
                        format=self.format,
                        name=f"{prefix}-{dep_name}",
                        current_version=version if isinstance(version, str) else "unknown",
                        sources=[SourceHint(source_type=SourceType.NPM, identifier=dep_name)],
                        annotations=[annotation] if annotation else [],
                        metadata={"section": section, "dependency": dep_name},
                    )
                )
        return decls

    @staticmethod
    def _directives(deps: dict[str, Any], lines: list[str]) -> dict[str, Annotation]:
        found: dict[str, Annotation] = {}
        for key, value in deps.items():
            if not key.startswith("//") or not isinstance(value, str):
                continue
            target = key[2:].strip()
            if not target:
                continue
            annotation = parse_annotation(value, _directive_line(lines, key))
            if annotation is not None:
                found[target] = annotation
        return found


register_parser(PackageJsonParser())
