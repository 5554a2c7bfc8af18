"""Updater for Go go.mod files."""

from __future__ import annotations

import re

from treeupdt.engines.dependency_scanner.models import Declaration, ManifestFormat
from treeupdt.engines.dependency_scanner.parsers.go_mod import (
    GO_VERSION_PATTERN,
    block_opener,
    strip_comment,
)
from treeupdt.engines.dependency_updater.registry import register_updater
from treeupdt.exceptions import DeclarationNotFound

_GO_LINE_RE = re.compile(rf"^(\s*go\s+)({GO_VERSION_PATTERN})(?=\s|//|$)")
_SINGLE_REQUIRE_RE = re.compile(r"^(\s*require\s+)(\S+)(\s+)(v\S+)")
_BLOCK_REQUIRE_RE = re.compile(r"^(\s*)(\S+)(\s+)(v\S+)")
_REPLACE_RE = re.compile(r"^(\s*(?:replace\s+)?)(\S+)((?:\s+v\S+)?\s+=>\s+\S+\s+)(v\S+)")


class GoModUpdater:
    """Rewrites the version token of one line; everything else is copied through."""

    format = ManifestFormat.GO_MOD

    def update(self, content: str, declaration: Declaration, new_version: str) -> str:
        name = declaration.name
        if name == "go-version":
            kind, module = "go", None
        elif name.startswith("module-"):
            kind, module = "require", name[len("module-"):]
        elif name.startswith("replace-"):
            kind, module = "replace", name[len("replace-"):]
        else:
            raise DeclarationNotFound(name, declaration.path, "not a go.mod declaration name")

        out: list[str] = []
        found = False
        block: str | None = None

        for line in content.splitlines(keepends=True):
            body = line.rstrip("\r\n")
            ending = line[len(body):]
            stripped = body.strip()
            code = strip_comment(stripped).strip()
            opener = block_opener(code)

            if block is None and opener is not None:
                block = opener
            elif block is not None and code == ")":
                block = None
            elif not found and not stripped.startswith("//"):
                new_body = self._rewrite(body, kind, module, block, new_version)
                if new_body is not None:
                    body = new_body
                    found = True
            out.append(body + ending)

        if not found:
            raise DeclarationNotFound(name, declaration.path)
        return "".join(out)

    @staticmethod
    def _rewrite(
        body: str, kind: str, module: str | None, block: str | None, new_version: str
    ) -> str | None:
        if kind == "go":
            m = _GO_LINE_RE.match(body) if block is None else None
        elif kind == "require":
            if block == "require":
                m = _BLOCK_REQUIRE_RE.match(body)
            elif block is None:
                m = _SINGLE_REQUIRE_RE.match(body)
            else:
                m = None
            if m and m.group(2) != module:
                m = None
        else:
            m = _REPLACE_RE.match(body) if block in (None, "replace") else None
            if m and (m.group(2) != module or (block is None and "replace" not in m.group(1))):
                m = None
        if m is None:
            return None
        # the version token is always the last group
        start, end = m.span(m.re.groups)
        return body[:start] + new_version + body[end:]


register_updater(GoModUpdater())
