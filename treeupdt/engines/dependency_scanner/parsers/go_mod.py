"""Parser for Go go.mod files."""

from __future__ import annotations

import re
from pathlib import Path

from treeupdt.engines.dependency_scanner.annotations import correlate_annotations
from treeupdt.engines.dependency_scanner.models import (
    Declaration,
    ManifestFormat,
    SourceHint,
    SourceType,
    UpdateStrategy,
)
from treeupdt.engines.dependency_scanner.registry import BaseManifestParser, register_parser

# 1.21, 1.21.3, 1.22rc1, 1.21beta2
GO_VERSION_PATTERN = r"\d+\.\d+(?:\.\d+)?(?:(?:rc|beta)\d+)?"

# go 1.21 / go 1.22rc1 (whole token, up to whitespace or a comment)
GO_VERSION_RE = re.compile(rf"^go\s+({GO_VERSION_PATTERN})(?=\s|//|$)")

# Single require: require github.com/foo/bar v1.2.3
SINGLE_REQUIRE_RE = re.compile(r"^require\s+(\S+)\s+(v\S+)")

# Inside require block: github.com/foo/bar v1.2.3
BLOCK_REQUIRE_RE = re.compile(r"^\s*(\S+)\s+(v\S+)")

# replace old [v1] => new v2 (single line or inside a replace block)
REPLACE_RE = re.compile(r"^(?:replace\s+)?(\S+)(?:\s+v\S+)?\s+=>\s+(\S+)\s+(v\S+)")

BLOCK_KEYWORDS = ("require", "replace", "exclude", "retract")

# Module paths that map to browsable repo URLs
_HOST_PREFIXES = ("github.com/", "gitlab.com/", "bitbucket.org/")


def _repo_url_from_module(module_path: str) -> str | None:
    """Derive a repo URL from a Go module path.

    Only works for well-known hosts (github, gitlab, bitbucket).
    Returns None for other module paths.
    """
    for prefix in _HOST_PREFIXES:
        if module_path.startswith(prefix):
            # host/org/repo
            parts = module_path.split("/")
            if len(parts) >= 3:
                return "https://" + "/".join(parts[:3])
    return None


def _module_sources(module: str) -> list[SourceHint]:
    """GitHub releases first for github.com modules, then the module as a git remote."""
    url = _repo_url_from_module(module)
    hints: list[SourceHint] = []
    if url is not None and module.startswith("github.com/"):
        hints.append(
            SourceHint(source_type=SourceType.GITHUB, identifier=url[len("https://github.com/"):])
        )
    hints.append(SourceHint(source_type=SourceType.GIT, identifier=module, url=url))
    return hints


def strip_comment(line: str) -> str:
    pos = line.find("//")
    return line if pos == -1 else line[:pos]


def block_opener(code: str) -> str | None:
    """``require (`` -> ``"require"``; *code* must already be comment-free."""
    if not code.endswith("("):
        return None
    keyword = code[:-1].strip()
    return keyword if keyword in BLOCK_KEYWORDS else None


class GoModParser(BaseManifestParser):
    format = ManifestFormat.GO_MOD
    file_patterns = ["go.mod"]

    def parse(self, file_path: Path, content: str) -> list[Declaration]:
        lines = content.splitlines()
        path = str(file_path)
        decls: list[Declaration] = []
        block: str | None = None

        for idx, raw_line in enumerate(lines):
            line = raw_line.strip()
            if not line or line.startswith("//"):
                continue
            code = strip_comment(line).strip()

            # Block boundaries, which may carry a trailing comment
            opener = block_opener(code)
            if block is None and opener is not None:
                block = opener
                continue
            if block is not None and code == ")":
                block = None
                continue

            if block is None:
                m = GO_VERSION_RE.match(code)
                if m:
                    decls.append(
                        Declaration(
                            path=path,
                            format=self.format,
                            name="go-version",
                            current_version=m.group(1),
                            update_strategy=UpdateStrategy.CONSERVATIVE,
                            annotations=correlate_annotations(lines, idx, ("//",)),
                        )
                    )
                    continue

            if block == "require" or (block is None and code.startswith("require ")):
                m = (
                    BLOCK_REQUIRE_RE.match(code)
                    if block == "require"
                    else SINGLE_REQUIRE_RE.match(code)
                )
                if m:
                    decls.append(self._require(path, lines, idx, m.group(1), m.group(2)))
                continue

            if block == "replace" or (block is None and code.startswith("replace ")):
                m = REPLACE_RE.match(code)
                if m:
                    decls.append(
                        self._replace(path, lines, idx, m.group(1), m.group(2), m.group(3))
                    )

        return decls

    def _require(
        self, path: str, lines: list[str], idx: int, module: str, version: str
    ) -> Declaration:
        metadata: dict[str, str] = {"module": module}
        if "// indirect" in lines[idx]:
            metadata["indirect"] = "true"
        return Declaration(
            path=path,
            format=self.format,
            name=f"module-{module}",
            current_version=version,
            sources=_module_sources(module),
            annotations=correlate_annotations(lines, idx, ("//",)),
            metadata=metadata,
        )

    def _replace(
        self, path: str, lines: list[str], idx: int, old: str, new: str, version: str
    ) -> Declaration:
        return Declaration(
            path=path,
            format=self.format,
            name=f"replace-{old}",
            current_version=version,
            sources=_module_sources(new),
            annotations=correlate_annotations(lines, idx, ("//",)),
            metadata={"module": old, "replacement": new},
        )


register_parser(GoModParser())
