"""Tests for format dispatch, whole-tree scans and file updates."""

from __future__ import annotations

import stat
from pathlib import Path

import pytest

from treeupdt.engines.dependency_scanner.models import Declaration, ManifestFormat
from treeupdt.engines.dependency_scanner.registry import (
    PARSER_REGISTRY,
    discover_manifests,
    get_parser,
    parser_for_path,
)
from treeupdt.engines.dependency_scanner.scanner import scan
from treeupdt.engines.dependency_scanner.walker import DirectoryWalker
from treeupdt.engines.dependency_updater.registry import UPDATER_REGISTRY, get_updater
from treeupdt.engines.dependency_updater.updater import mutate, update_file
from treeupdt.exceptions import DeclarationNotFound, ManifestIOError, UnsupportedFormatError


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    (tmp_path / "Cargo.toml").write_text('[package]\nname = "app"\nversion = "0.1.0"\n\n[dependencies]\nserde = "1.0"\n')
    (tmp_path / "web").mkdir()
    (tmp_path / "web" / "package.json").write_text(
        '{\n  "dependencies": {\n    "express": "^4.18.0"\n  }\n}\n'
    )
    (tmp_path / "svc").mkdir()
    (tmp_path / "svc" / "go.mod").write_text(
        "module example.com/svc\n\ngo 1.21\n\nrequire github.com/spf13/cobra v1.7.0\n"
    )
    (tmp_path / "flake.nix").write_text(
        '{\n  inputs.nixpkgs.url = "github:NixOS/nixpkgs/nixos-23.11";\n  outputs = _: { };\n}\n'
    )
    (tmp_path / "README.md").write_text("# not a manifest\n")
    return tmp_path


def _by_name(decls: list[Declaration]) -> dict[str, Declaration]:
    return {d.name: d for d in decls}


# ── registries ───────────────────────────────────────────────────────────


class TestRegistry:
    def test_every_format_has_a_parser(self):
        # importing the scanner registers every parser
        assert set(PARSER_REGISTRY) == set(ManifestFormat)

    def test_every_format_has_an_updater(self):
        import treeupdt.engines.dependency_updater.updater  # noqa: F401

        assert set(UPDATER_REGISTRY) == set(ManifestFormat)

    def test_parser_and_updater_formats_agree(self):
        for fmt in ManifestFormat:
            assert get_parser(fmt).format == fmt
            assert get_updater(fmt).format == fmt

    @pytest.mark.parametrize(
        "filename,fmt",
        [
            ("Cargo.toml", ManifestFormat.CARGO_TOML),
            ("go.mod", ManifestFormat.GO_MOD),
            ("package.json", ManifestFormat.NPM_JSON),
            ("flake.nix", ManifestFormat.NIX),
            ("default.nix", ManifestFormat.NIX),
        ],
    )
    def test_parser_for_path(self, filename, fmt):
        assert parser_for_path(Path("x") / filename).format == fmt

    def test_unknown_file(self):
        assert parser_for_path(Path("pyproject.toml")) is None

    def test_get_updater_unknown(self, monkeypatch):
        monkeypatch.delitem(UPDATER_REGISTRY, ManifestFormat.GO_MOD)
        with pytest.raises(UnsupportedFormatError):
            get_updater(ManifestFormat.GO_MOD)

    def test_discover_manifests(self, tree):
        found = sorted(f.relative_to(tree).as_posix() for _, f in discover_manifests(tree))
        assert found == ["Cargo.toml", "flake.nix", "svc/go.mod", "web/package.json"]


# ── scan ─────────────────────────────────────────────────────────────────


class TestScan:
    def test_all_formats(self, tree):
        result = scan(tree)
        assert result.failures == []
        names = {d.name for d in result.declarations}
        assert {
            "crate-app",
            "dependencies-serde",
            "dependency-express",
            "go-version",
            "module-github.com/spf13/cobra",
            "flake-input-nixpkgs",
        } <= names

    def test_walk_order_kept(self, tree):
        paths = [Path(d.path).relative_to(tree).as_posix() for d in scan(tree).declarations]
        firsts = list(dict.fromkeys(paths))
        assert firsts == ["Cargo.toml", "flake.nix", "svc/go.mod", "web/package.json"]

    def test_format_filter(self, tree):
        result = scan(tree, formats=[ManifestFormat.GO_MOD])
        assert {d.format for d in result.declarations} == {ManifestFormat.GO_MOD}

    def test_bad_file_recorded_and_skipped(self, tree):
        (tree / "broken").mkdir()
        (tree / "broken" / "package.json").write_text("{ nope")
        result = scan(tree)
        assert len(result.failures) == 1
        assert result.failures[0].path.endswith("package.json")
        assert "dependency-express" in {d.name for d in result.declarations}

    def test_single_file_root(self, tree):
        result = scan(tree / "svc" / "go.mod")
        assert {d.name for d in result.declarations} == {
            "go-version",
            "module-github.com/spf13/cobra",
        }

    def test_injected_walker(self, tree):
        result = scan(tree, walker=DirectoryWalker(skip_dirs={"svc", "web"}))
        assert {d.format for d in result.declarations} == {
            ManifestFormat.CARGO_TOML,
            ManifestFormat.NIX,
        }

    def test_empty_tree(self, tmp_path):
        result = scan(tmp_path)
        assert result.declarations == []
        assert result.failures == []


# ── update_file ──────────────────────────────────────────────────────────


class TestUpdateFile:
    def test_write(self, tree):
        decl = _by_name(scan(tree).declarations)["dependencies-serde"]
        result = update_file(decl, "1.2.0")
        assert result.written
        assert result.changed
        assert 'serde = "1.2.0"' in (tree / "Cargo.toml").read_text()

    def test_dry_run_leaves_file(self, tree):
        before = (tree / "svc" / "go.mod").read_text()
        decl = _by_name(scan(tree).declarations)["module-github.com/spf13/cobra"]
        result = update_file(decl, "v1.8.0", write=False)
        assert not result.written
        assert "v1.8.0" in result.new_content
        assert (tree / "svc" / "go.mod").read_text() == before

    def test_unchanged_not_written(self, tree):
        decl = _by_name(scan(tree).declarations)["flake-input-nixpkgs"]
        result = update_file(decl, "nixos-23.11")
        assert not result.changed
        assert not result.written

    def test_failed_update_has_no_side_effect(self, tree):
        decl = _by_name(scan(tree).declarations)["dependencies-serde"]
        content = '[dependencies]\ntokio = "1"\n'
        (tree / "Cargo.toml").write_text(content)
        with pytest.raises(DeclarationNotFound):
            update_file(decl, "1.2.0")
        assert (tree / "Cargo.toml").read_text() == content

    def test_missing_file(self, tree):
        decl = _by_name(scan(tree).declarations)["dependency-express"]
        (tree / "web" / "package.json").unlink()
        with pytest.raises(ManifestIOError):
            update_file(decl, "4.19.0")

    def test_mutate_does_not_write(self, tree):
        decl = _by_name(scan(tree).declarations)["dependency-express"]
        out = mutate(decl, "4.19.0")
        assert '"express": "^4.19.0"' in out
        assert "^4.18.0" in (tree / "web" / "package.json").read_text()

    def test_round_trip_through_disk(self, tree):
        before = _by_name(scan(tree).declarations)
        update_file(before["flake-input-nixpkgs"], "nixos-24.05")
        after = _by_name(scan(tree).declarations)
        assert after["flake-input-nixpkgs"].current_version == "nixos-24.05"
        for name, decl in before.items():
            if name != "flake-input-nixpkgs":
                assert after[name].current_version == decl.current_version
                assert after[name].path == decl.path

    def test_failed_write_keeps_original(self, tree, monkeypatch):
        decl = _by_name(scan(tree).declarations)["dependencies-serde"]
        before = (tree / "Cargo.toml").read_text()

        def _boom(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("treeupdt.engines.dependency_updater.updater.os.replace", _boom)
        with pytest.raises(ManifestIOError):
            update_file(decl, "1.2.0")
        assert (tree / "Cargo.toml").read_text() == before
        assert not [p for p in tree.iterdir() if p.suffix == ".tmp"]

    def test_write_keeps_file_mode(self, tree):
        target = tree / "Cargo.toml"
        target.chmod(0o640)
        decl = _by_name(scan(tree).declarations)["dependencies-serde"]
        update_file(decl, "1.2.0")
        assert stat.S_IMODE(target.stat().st_mode) == 0o640
        assert 'serde = "1.2.0"' in target.read_text()
