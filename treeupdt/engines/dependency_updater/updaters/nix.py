"""Updater for Nix files.

The file is re-parsed and the target relocated with the same structural
helpers the scanner uses. All edits are computed against that single
parse and applied back to front.
"""

from __future__ import annotations

import structlog

from treeupdt.engines.dependency_scanner.models import Declaration, ManifestFormat
from treeupdt.engines.dependency_scanner.parsers.nix import (
    find_flake_inputs,
    find_package_info,
    parse_nix,
    rewrite_flake_url,
)
from treeupdt.engines.dependency_updater.edits import TextEdit, apply_edits
from treeupdt.engines.dependency_updater.registry import register_updater
from treeupdt.exceptions import DeclarationNotFound

log = structlog.get_logger("treeupdt.updater")

FLAKE_INPUT_PREFIX = "flake-input-"


class NixUpdater:
    format = ManifestFormat.NIX

    def update(self, content: str, declaration: Declaration, new_version: str) -> str:
        source = content.encode("utf-8")
        tree = parse_nix(source, declaration.path)

        if declaration.name.startswith(FLAKE_INPUT_PREFIX):
            edits = self._flake_input_edits(tree.root_node, declaration, new_version)
        elif declaration.name == "package":
            edits = self._package_edits(tree.root_node, declaration, new_version)
        else:
            raise DeclarationNotFound(
                declaration.name, declaration.path, "not a Nix declaration name"
            )

        if not edits:
            return content
        return apply_edits(source, edits).decode("utf-8")

    @staticmethod
    def _flake_input_edits(root, declaration: Declaration, new_version: str) -> list[TextEdit]:
        input_name = declaration.metadata.get("input") or declaration.name[len(FLAKE_INPUT_PREFIX):]
        item = next((i for i in find_flake_inputs(root) if i.name == input_name), None)
        if item is None:
            raise DeclarationNotFound(declaration.name, declaration.path)

        if item.url_literal is not None:
            new_url = rewrite_flake_url(item.url, new_version)
            if new_url is None:
                log.info("updater.url_unchanged", name=declaration.name, url=item.url)
                return []
            lit = item.url_literal
            return [TextEdit(lit.start, lit.end, new_url.encode("utf-8"))]

        ref = item.attrs.get("ref")
        if ref is None:
            log.info("updater.no_ref_attribute", name=declaration.name, type=item.input_type)
            return []
        return [TextEdit(ref.start, ref.end, new_version.encode("utf-8"))]

    @staticmethod
    def _package_edits(root, declaration: Declaration, new_version: str) -> list[TextEdit]:
        info = find_package_info(root)
        if info.version is None:
            raise DeclarationNotFound(declaration.name, declaration.path, "no version binding")
        replacement = new_version.encode("utf-8")
        return [
            TextEdit(site.literal.start, site.literal.end, replacement)
            for site in info.version_sites
            if site.literal.value == info.version
        ]


register_updater(NixUpdater())
