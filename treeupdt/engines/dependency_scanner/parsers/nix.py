"""Parser for Nix files, built on tree-sitter.

``flake.nix`` files yield one declaration per flake input; any other
``*.nix`` file is treated as a package derivation and yields a single
``package`` declaration when a version can be resolved.

The structural helpers here (:func:`find_flake_inputs`,
:func:`find_package_info`) are shared with the Nix updater so that both
sides locate literals the same way.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

import structlog
import tree_sitter_nix
from tree_sitter import Language, Node, Parser, Tree

from treeupdt.engines.dependency_scanner.annotations import extract_annotation_from_line
from treeupdt.engines.dependency_scanner.models import (
    Annotation,
    Declaration,
    ManifestFormat,
    SourceHint,
    SourceType,
)
from treeupdt.engines.dependency_scanner.registry import BaseManifestParser, register_parser
from treeupdt.exceptions import ParseError, StructuralQueryError

log = structlog.get_logger("treeupdt.scanner")

NIX_LANGUAGE = Language(tree_sitter_nix.language())

_ATTRSET_TYPES = ("attrset_expression", "rec_attrset_expression")
_REF_QUERY_RE = re.compile(r"([?&]ref=)([^&#]*)")
_GITHUB_URL_RE = re.compile(r"github\.com[/:]([^/]+)/([^/?#.]+)")
_GITHUB_PATH_RE = re.compile(r"github\.com/([^/]+/[^/]+)")
_NPM_TARBALL_RE = re.compile(r"registry\.npmjs\.org/(@[^/]+/[^/]+|[^/@]+)(?:/-/|$)")

# Let-bound variables can alias each other; cap the chain.
_MAX_RESOLVE_DEPTH = 8


def parse_nix(source: bytes, file_path: Path | str = "<memory>") -> Tree:
    """Parse Nix source into a syntax tree, rejecting trees with syntax errors."""
    try:
        tree = Parser(NIX_LANGUAGE).parse(source)
    except (ValueError, TypeError, RuntimeError) as exc:
        raise StructuralQueryError(f"tree-sitter failed on {file_path}: {exc}") from exc
    if tree.root_node.has_error:
        raise ParseError(f"syntax error in {file_path}")
    return tree


# ── node helpers ─────────────────────────────────────────────────────────


def node_text(node: Node) -> str:
    return node.text.decode("utf-8")


def iter_nodes(node: Node) -> Iterator[Node]:
    """Pre-order walk, so nodes come out in document order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def _child_of_type(node: Node, node_type: str) -> Node | None:
    for child in node.named_children:
        if child.type == node_type:
            return child
    return None


@dataclass(frozen=True)
class StringLiteral:
    """A plain ``"..."`` string. ``start``/``end`` bound its content in bytes."""

    value: str
    start: int
    end: int
    row: int


def string_literal(node: Node | None) -> StringLiteral | None:
    """Return the literal for a string without interpolation, else None."""
    if node is None or node.type != "string_expression":
        return None
    if any(child.type != "string_fragment" for child in node.named_children):
        return None
    return StringLiteral(
        value=node.text[1:-1].decode("utf-8"),
        start=node.start_byte + 1,
        end=node.end_byte - 1,
        row=node.start_point[0],
    )


def attr_names(attrpath: Node | None) -> list[str] | None:
    """``a.b."c"`` -> ``["a", "b", "c"]``; None if any part is dynamic."""
    if attrpath is None:
        return None
    names: list[str] = []
    for part in attrpath.named_children:
        if part.type == "identifier":
            names.append(node_text(part))
        elif part.type == "comment":
            continue
        else:
            lit = string_literal(part)
            if lit is None:
                return None
            names.append(lit.value)
    return names or None


def binding_parts(binding: Node) -> tuple[list[str] | None, Node | None]:
    """Split a ``binding`` node into its attribute names and value expression."""
    attrpath = binding.child_by_field_name("attrpath") or _child_of_type(binding, "attrpath")
    value = binding.child_by_field_name("expression")
    if value is None:
        candidates = [
            c for c in binding.named_children if c.type not in ("attrpath", "comment")
        ]
        value = candidates[-1] if candidates else None
    return attr_names(attrpath), value


def bindings_of(attrset: Node | None) -> list[Node]:
    """Direct ``binding`` and ``inherit`` children of an attrset or let."""
    if attrset is None:
        return []
    binding_set = _child_of_type(attrset, "binding_set")
    if binding_set is None:
        return []
    return [c for c in binding_set.named_children if c.type in ("binding", "inherit")]


def inherited_names(node: Node) -> list[str]:
    attrs = node.child_by_field_name("attrs") or _child_of_type(node, "inherited_attrs")
    if attrs is None:
        return []
    return [node_text(c) for c in attrs.named_children if c.type == "identifier"]


def _variable_name(node: Node) -> str | None:
    if node.type != "variable_expression":
        return None
    ident = node.child_by_field_name("name") or _child_of_type(node, "identifier")
    return node_text(ident) if ident is not None else None


def _top_attrset(root: Node) -> Node | None:
    node: Node | None = next((c for c in root.named_children if c.type != "comment"), None)
    while node is not None:
        if node.type in _ATTRSET_TYPES:
            return node
        if node.type == "parenthesized_expression":
            node = next((c for c in node.named_children if c.type != "comment"), None)
        elif node.type == "let_expression":
            node = node.child_by_field_name("body")
        else:
            return None
    return None


# ── comments ─────────────────────────────────────────────────────────────


class CommentTable:
    """Comment nodes of one file, indexed by row. Built once per parse."""

    def __init__(self, root: Node, source: bytes) -> None:
        self._by_row: dict[int, list[str]] = {}
        self._standalone: set[int] = set()
        lines = source.split(b"\n")
        for node in iter_nodes(root):
            if node.type != "comment":
                continue
            row, col = node.start_point
            self._by_row.setdefault(row, []).append(node_text(node))
            if row < len(lines) and not lines[row][:col].strip():
                self._standalone.add(row)

    def _annotation_on(self, row: int) -> Annotation | None:
        for text in self._by_row.get(row, ()):
            annotation = extract_annotation_from_line(text, row + 1)
            if annotation is not None:
                return annotation
        return None

    def annotations_for(self, node: Node, *extra_rows: int) -> list[Annotation]:
        """Inline comments on the node's rows first, then up to two comment rows above.

        The upward walk starts from the binding's first row and again from
        each of *extra_rows*, stopping at the first non-comment row.
        """
        first = node.start_point[0]
        for row in sorted({first, node.end_point[0], *extra_rows}):
            annotation = self._annotation_on(row)
            if annotation is not None:
                return [annotation]
        for anchor in dict.fromkeys((first, *extra_rows)):
            for row in (anchor - 1, anchor - 2):
                if row < 0 or row not in self._standalone:
                    break
                annotation = self._annotation_on(row)
                if annotation is not None:
                    return [annotation]
        return []


# ── flake inputs ─────────────────────────────────────────────────────────


@dataclass
class FlakeInput:
    """One flake input, located either by its url literal or by its attributes."""

    name: str
    url: str
    binding: Node
    url_literal: StringLiteral | None = None
    attrs: dict[str, StringLiteral] = field(default_factory=dict)
    input_type: str | None = None


def _literal_attrs(attrset: Node | None) -> dict[str, StringLiteral]:
    attrs: dict[str, StringLiteral] = {}
    if attrset is None or attrset.type not in _ATTRSET_TYPES:
        return attrs
    for binding in bindings_of(attrset):
        if binding.type != "binding":
            continue
        names, value = binding_parts(binding)
        lit = string_literal(value)
        if names and len(names) == 1 and lit is not None:
            attrs.setdefault(names[0], lit)
    return attrs


def _input_entries(root: Node) -> list[tuple[str, list[str], Node, Node | None]]:
    """``(input name, remaining attr path, binding, value)`` in document order.

    Covers ``inputs = { ... }`` as well as top-level ``inputs.<name>...``
    bindings. Inputs of inputs (``inputs.x.inputs.y``) are never descended into.
    """
    top = _top_attrset(root)
    entries: list[tuple[str, list[str], Node, Node | None]] = []
    for binding in bindings_of(top):
        if binding.type != "binding":
            continue
        names, value = binding_parts(binding)
        if not names or names[0] != "inputs":
            continue
        if len(names) > 1:
            entries.append((names[1], names[2:], binding, value))
            continue
        if value is None or value.type not in _ATTRSET_TYPES:
            continue
        for inner in bindings_of(value):
            if inner.type != "binding":
                continue
            inner_names, inner_value = binding_parts(inner)
            if inner_names:
                entries.append((inner_names[0], inner_names[1:], inner, inner_value))
    return entries


def _synthesize_url(attrs: dict[str, StringLiteral]) -> str | None:
    input_type = attrs["type"].value
    values = {k: v.value for k, v in attrs.items()}
    if input_type == "github":
        if "owner" not in values or "repo" not in values:
            return None
        ref = f"/{values['ref']}" if "ref" in values else ""
        return f"github:{values['owner']}/{values['repo']}{ref}"
    if input_type == "git":
        if "url" in values:
            return values["url"]
        if "host" in values:
            return (
                f"git+ssh://git@{values['host']}/"
                f"{values.get('owner', '')}/{values.get('repo', '')}"
            )
        return None
    if input_type == "path":
        return f"path:{values['path']}" if "path" in values else None
    return None


def find_flake_inputs(root: Node) -> list[FlakeInput]:
    """Find flake inputs in three passes; an input name is kept from the first pass that sees it.

    Pass order: ``name.url = "..."``, ``name = { url = "..."; }``, then the
    type-attribute form ``name = { type = "github"; owner = ...; }``.
    """
    entries = _input_entries(root)
    found: list[FlakeInput] = []
    seen: set[str] = set()

    def _add(item: FlakeInput) -> None:
        if item.name in seen:
            return
        seen.add(item.name)
        found.append(item)

    for name, rest, binding, value in entries:
        lit = string_literal(value)
        if rest == ["url"] and lit is not None:
            _add(FlakeInput(name=name, url=lit.value, binding=binding, url_literal=lit))

    for name, rest, binding, value in entries:
        if rest:
            continue
        attrs = _literal_attrs(value)
        if "url" in attrs:
            _add(
                FlakeInput(
                    name=name, url=attrs["url"].value, binding=binding,
                    url_literal=attrs["url"], attrs=attrs,
                )
            )

    for name, rest, binding, value in entries:
        if rest:
            continue
        attrs = _literal_attrs(value)
        if "type" not in attrs:
            continue
        url = _synthesize_url(attrs)
        if not url:
            log.debug("nix.input_type_skipped", input=name, type=attrs["type"].value)
            continue
        _add(
            FlakeInput(
                name=name, url=url, binding=binding, attrs=attrs,
                input_type=attrs["type"].value,
            )
        )

    return found


def parse_flake_url(url: str) -> tuple[SourceType, str]:
    """Map a flake URL to a source type and identifier."""
    if url.startswith("github:"):
        parts = url[len("github:"):].split("?", 1)[0].split("/")
        if len(parts) >= 2:
            return SourceType.GITHUB, f"{parts[0]}/{parts[1]}"
    elif url.startswith("git+"):
        return SourceType.GIT, url
    elif "github.com" in url:
        m = _GITHUB_URL_RE.search(url)
        if m:
            return SourceType.GITHUB, f"{m.group(1)}/{m.group(2).removesuffix('.git')}"
    return SourceType.URL, url


def flake_url_version(url: str) -> str | None:
    """The version a flake URL pins, or None when nothing can be inferred."""
    if url.startswith("github:"):
        parts = url[len("github:"):].split("?", 1)[0].split("/")
        if len(parts) > 2:
            return "/".join(parts[2:])
    m = _REF_QUERY_RE.search(url)
    if m:
        return m.group(2)
    if url.startswith(("github:", "git+")) or "github.com" in url:
        return "HEAD"
    return None


def rewrite_flake_url(url: str, version: str) -> str | None:
    """Put *version* into a flake URL, or return None if the shape carries no ref.

    Mirrors :func:`flake_url_version`: a ``github:`` path ref wins, then a
    ``?ref=`` query value, and a bare ``github:owner/repo`` gets the ref appended.
    """
    if url.startswith("github:"):
        base, sep, query = url.partition("?")
        parts = base[len("github:"):].split("/")
        if len(parts) < 2:
            return None
        if len(parts) == 2 and _REF_QUERY_RE.search(url):
            return _REF_QUERY_RE.sub(lambda m: m.group(1) + version, url, count=1)
        return f"github:{parts[0]}/{parts[1]}/{version}{sep}{query}"
    if _REF_QUERY_RE.search(url):
        return _REF_QUERY_RE.sub(lambda m: m.group(1) + version, url, count=1)
    return None


# ── package derivations ──────────────────────────────────────────────────


@dataclass
class VersionSite:
    literal: StringLiteral
    binding: Node


@dataclass
class PackageInfo:
    pname: str | None = None
    url: str | None = None
    version_sites: list[VersionSite] = field(default_factory=list)
    github_repos: list[str] = field(default_factory=list)

    @property
    def version(self) -> str | None:
        return self.version_sites[0].literal.value if self.version_sites else None


Scope = dict[str, tuple[Node, Node | None]]


def _resolve(name: str, scopes: list[Scope], depth: int = 0) -> tuple[StringLiteral, Node] | None:
    for scope in reversed(scopes):
        if name not in scope:
            continue
        binding, value = scope[name]
        lit = string_literal(value)
        if lit is not None:
            return lit, binding
        ref = _variable_name(value) if value is not None else None
        if ref is not None and depth < _MAX_RESOLVE_DEPTH:
            return _resolve(ref, scopes, depth + 1)
        return None
    return None


def find_package_info(root: Node) -> PackageInfo:
    """Collect pname, url and every site that carries the package version.

    ``version = "1.0"``, ``version = someVar`` and ``inherit version`` are
    followed through enclosing ``let`` scopes back to a string literal.
    The first site in document order is the primary version.
    """
    info = PackageInfo()
    seen_spans: set[tuple[int, int]] = set()

    def _site(found: tuple[StringLiteral, Node] | None) -> None:
        if found is None:
            return
        lit, binding = found
        if (lit.start, lit.end) in seen_spans:
            return
        seen_spans.add((lit.start, lit.end))
        info.version_sites.append(VersionSite(literal=lit, binding=binding))

    def _value_of(binding: Node, value: Node | None, scopes: list[Scope]):
        lit = string_literal(value)
        if lit is not None:
            return lit, binding
        ref = _variable_name(value) if value is not None else None
        return _resolve(ref, scopes) if ref is not None else None

    def _visit(node: Node, scopes: list[Scope]) -> None:
        if node.type == "let_expression":
            scope: Scope = {}
            for binding in bindings_of(node):
                if binding.type != "binding":
                    continue
                names, value = binding_parts(binding)
                if names and len(names) == 1:
                    scope.setdefault(names[0], (binding, value))
            scopes = scopes + [scope]
        elif node.type == "binding":
            names, value = binding_parts(node)
            if names == ["version"]:
                _site(_value_of(node, value, scopes))
            elif names == ["pname"] and info.pname is None:
                found = _value_of(node, value, scopes)
                if found is not None:
                    info.pname = found[0].value
            elif names == ["url"] and info.url is None and value is not None:
                if value.type == "string_expression":
                    info.url = value.text[1:-1].decode("utf-8")
        elif node.type == "inherit":
            for name in inherited_names(node):
                if name == "version":
                    _site(_resolve(name, scopes))
                elif name == "pname" and info.pname is None:
                    found = _resolve(name, scopes)
                    if found is not None:
                        info.pname = found[0].value
        elif node.type == "apply_expression":
            repo = _fetch_from_github(node)
            if repo is not None and repo not in info.github_repos:
                info.github_repos.append(repo)

        for child in node.named_children:
            _visit(child, scopes)

    _visit(root, [])
    return info


def _fetch_from_github(node: Node) -> str | None:
    function = node.child_by_field_name("function")
    argument = node.child_by_field_name("argument")
    if function is None or not node_text(function).endswith("fetchFromGitHub"):
        return None
    attrs = _literal_attrs(argument)
    if "owner" in attrs and "repo" in attrs:
        return f"{attrs['owner'].value}/{attrs['repo'].value}"
    return None


def parse_package_url(url: str, package_name: str) -> tuple[SourceType, str]:
    """Map a derivation's ``url`` to a source type and identifier."""
    if "registry.npmjs.org" in url:
        m = _NPM_TARBALL_RE.search(url)
        return SourceType.NPM, m.group(1) if m else package_name
    if "github.com" in url:
        m = _GITHUB_PATH_RE.search(url)
        return SourceType.GITHUB, m.group(1) if m else package_name
    if "pypi.org" in url:
        return SourceType.PYPI, package_name
    return SourceType.URL, url


# ── parser ───────────────────────────────────────────────────────────────


class NixParser(BaseManifestParser):
    format = ManifestFormat.NIX
    file_patterns = ["*.nix"]

    def parse(self, file_path: Path, content: str) -> list[Declaration]:
        source = content.encode("utf-8")
        tree = parse_nix(source, file_path)
        comments = CommentTable(tree.root_node, source)
        if file_path.name == "flake.nix":
            return self._flake_inputs(str(file_path), tree.root_node, comments)
        return self._package(str(file_path), tree.root_node, comments)

    def _flake_inputs(self, path: str, root: Node, comments: CommentTable) -> list[Declaration]:
        decls: list[Declaration] = []
        for item in find_flake_inputs(root):
            source_type, identifier = parse_flake_url(item.url)
            metadata: dict[str, str] = {"input": item.name, "url": item.url}
            if item.input_type is not None:
                metadata["input_type"] = item.input_type
            version = flake_url_version(item.url)
            if version is None:
                version = item.url
                metadata["version_context"] = item.url
            extra_rows = (item.url_literal.row,) if item.url_literal is not None else ()
            decls.append(
                Declaration(
                    path=path,
                    format=self.format,
                    name=f"flake-input-{item.name}",
                    current_version=version,
                    sources=[SourceHint(source_type=source_type, identifier=identifier, url=item.url)],
                    annotations=comments.annotations_for(item.binding, *extra_rows),
                    metadata=metadata,
                )
            )
        return decls

    def _package(self, path: str, root: Node, comments: CommentTable) -> list[Declaration]:
        info = find_package_info(root)
        if info.version is None:
            return []

        pkg_name = info.pname or "package"
        if info.url is not None:
            source_type, identifier = parse_package_url(info.url, pkg_name)
        else:
            source_type, identifier = SourceType.URL, pkg_name
        sources = [SourceHint(source_type=source_type, identifier=identifier, url=info.url)]
        for repo in info.github_repos:
            if not (source_type == SourceType.GITHUB and identifier == repo):
                sources.append(SourceHint(source_type=SourceType.GITHUB, identifier=repo))

        metadata: dict[str, object] = {"version_sites": len(info.version_sites)}
        if info.pname is not None:
            metadata["pname"] = info.pname
        if info.url is not None:
            metadata["url"] = info.url

        return [
            Declaration(
                path=path,
                format=self.format,
                name="package",
                current_version=info.version,
                sources=sources,
                annotations=comments.annotations_for(info.version_sites[0].binding),
                metadata=metadata,
            )
        ]


register_parser(NixParser())
