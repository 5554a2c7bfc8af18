"""Tests for the treeupdt command line."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from treeupdt.cli import _split_spec, main
from treeupdt.engines.dependency_scanner.models import SourceType
from treeupdt.sources.base import VersionSource
from treeupdt.sources.models import Version
from treeupdt.sources.registry import SourceRegistry

CARGO = '[package]\nname = "app"\nversion = "0.1.0"\n\n[dependencies]\nserde = "1.0.100"\n'
GO_MOD = "module example.com/svc\n\ngo 1.21\n\nrequire github.com/spf13/cobra v1.7.0\n"


class StaticSource(VersionSource):
    def __init__(self, source_type: SourceType, *versions: str) -> None:
        self.source_type = source_type
        self._versions = [Version(version=v) for v in versions]

    async def get_versions(self, identifier: str) -> list[Version]:
        return self._versions


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))
    monkeypatch.delenv("TREEUPDT_LOG_LEVEL", raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    (root / "Cargo.toml").write_text(CARGO)
    (root / "svc").mkdir()
    (root / "svc" / "go.mod").write_text(GO_MOD)
    return root


@pytest.fixture
def fake_sources():
    sources = {
        SourceType.CRATES: StaticSource(SourceType.CRATES, "2.0.0", "1.0.200", "1.0.100"),
        SourceType.GITHUB: StaticSource(SourceType.GITHUB, "1.8.0", "1.7.0"),
    }

    def _factory(**_kwargs):
        return SourceRegistry(use_cache=False, sources=sources)

    with patch("treeupdt.cli.SourceRegistry", side_effect=_factory):
        yield sources


# ── scan ─────────────────────────────────────────────────────────────────


class TestScan:
    def test_text_output(self, project):
        result = CliRunner().invoke(main, ["scan", str(project)])
        assert result.exit_code == 0
        assert "Found 4 declarations in 2 manifest(s)" in result.output
        assert "dependencies-serde 1.0.100 [stable]" in result.output
        assert "go-version 1.21 [conservative]" in result.output

    def test_json_output(self, project):
        result = CliRunner().invoke(main, ["scan", str(project), "-o", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        names = {d["name"] for d in data}
        assert "module-github.com/spf13/cobra" in names
        assert all(d["format"] in ("cargo-toml", "go-mod") for d in data)

    def test_paths_output(self, project):
        result = CliRunner().invoke(main, ["scan", str(project), "-o", "paths", "-t", "cargo"])
        assert result.exit_code == 0
        lines = result.output.strip().splitlines()
        assert sorted(line.rsplit(":", 1)[1] for line in lines) == [
            "crate-app",
            "dependencies-serde",
        ]

    def test_name_filter(self, project):
        result = CliRunner().invoke(main, ["scan", str(project), "-n", "^module-", "-o", "json"])
        assert [d["name"] for d in json.loads(result.output)] == ["module-github.com/spf13/cobra"]

    def test_strategy_filter(self, project):
        result = CliRunner().invoke(
            main, ["scan", str(project), "-u", "conservative", "-o", "json"]
        )
        assert [d["name"] for d in json.loads(result.output)] == ["go-version"]

    def test_bad_file_type(self, project):
        result = CliRunner().invoke(main, ["scan", str(project), "-t", "maven"])
        assert result.exit_code == 1
        assert "unknown file type" in result.output

    def test_policy_applied_unless_all(self, project):
        (project / "Cargo.toml").write_text(
            CARGO.replace('serde = "1.0.100"', 'serde = "1.0.100" # treeupdt: ignore')
        )
        hidden = CliRunner().invoke(main, ["scan", str(project), "-o", "paths"])
        assert "dependencies-serde" not in hidden.output
        shown = CliRunner().invoke(main, ["scan", str(project), "-o", "paths", "--all"])
        assert "dependencies-serde" in shown.output

    def test_config_strategy(self, project, tmp_path):
        config = tmp_path / "cfg.toml"
        config.write_text('[global]\nupdate-strategy = "latest"\n')
        result = CliRunner().invoke(
            main, ["--config", str(config), "scan", str(project), "-o", "json"]
        )
        by_name = {d["name"]: d for d in json.loads(result.output)}
        assert by_name["dependencies-serde"]["update_strategy"] == "latest"
        assert by_name["go-version"]["update_strategy"] == "conservative"

    def test_invalid_config(self, project, tmp_path):
        config = tmp_path / "cfg.toml"
        config.write_text("[global\n")
        result = CliRunner().invoke(main, ["--config", str(config), "scan", str(project)])
        assert result.exit_code == 1
        assert "invalid TOML" in result.output

    def test_empty_tree(self, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        result = CliRunner().invoke(main, ["scan", str(empty)])
        assert result.exit_code == 0
        assert "No declarations found." in result.output

    def test_missing_path(self):
        result = CliRunner().invoke(main, ["scan", "/nonexistent/path/xyz"])
        assert result.exit_code != 0


# ── check ────────────────────────────────────────────────────────────────


class TestCheck:
    def test_json(self, project, fake_sources):
        result = CliRunner().invoke(main, ["check", str(project), "-o", "json"])
        assert result.exit_code == 0
        rows = {r["name"]: r for r in json.loads(result.output)}
        serde = rows["dependencies-serde"]
        assert serde["latest_version"] == "2.0.0"
        assert serde["target_version"] == "2.0.0"
        assert serde["update_available"] is True
        cobra = rows["module-github.com/spf13/cobra"]
        assert cobra["source"] == "github:spf13/cobra"
        assert cobra["target_version"] == "v1.8.0"
        assert rows["go-version"]["source"] is None

    def test_ignored_versions_skipped(self, project, fake_sources):
        (project / "Cargo.toml").write_text(
            CARGO.replace(
                'serde = "1.0.100"', 'serde = "1.0.100" # treeupdt: ignore-versions="2.*"'
            )
        )
        result = CliRunner().invoke(main, ["check", str(project), "-o", "json", "-t", "cargo"])
        rows = {r["name"]: r for r in json.loads(result.output)}
        assert rows["dependencies-serde"]["target_version"] == "1.0.200"

    def test_text(self, project, fake_sources):
        result = CliRunner().invoke(main, ["check", str(project)])
        assert result.exit_code == 0
        assert "1.0.100 -> 2.0.0" in result.output
        assert "update(s) available" in result.output


# ── update ───────────────────────────────────────────────────────────────


class TestUpdate:
    def test_explicit_version(self, project):
        result = CliRunner().invoke(
            main, ["update", "dependencies-serde", "--version", "1.2.0", "-p", str(project)]
        )
        assert result.exit_code == 0
        assert 'serde = "1.2.0"' in (project / "Cargo.toml").read_text()
        assert "1.0.100 -> 1.2.0" in result.output

    def test_file_qualified_spec(self, project):
        result = CliRunner().invoke(
            main,
            ["update", "svc/go.mod:go-version", "--version", "1.22", "-p", str(project)],
        )
        assert result.exit_code == 0
        assert "go 1.22" in (project / "svc" / "go.mod").read_text()

    def test_dry_run_prints_diff(self, project):
        result = CliRunner().invoke(
            main,
            ["update", "dependencies-serde", "--version", "1.2.0", "--dry-run", "-p", str(project)],
        )
        assert result.exit_code == 0
        assert '-serde = "1.0.100"' in result.output
        assert '+serde = "1.2.0"' in result.output
        assert (project / "Cargo.toml").read_text() == CARGO

    def test_version_from_sources(self, project, fake_sources):
        result = CliRunner().invoke(
            main, ["update", "module-github.com/spf13/cobra", "-p", str(project)]
        )
        assert result.exit_code == 0
        assert "github.com/spf13/cobra v1.8.0" in (project / "svc" / "go.mod").read_text()

    def test_unknown_spec_fails(self, project):
        result = CliRunner().invoke(
            main, ["update", "dependencies-nope", "--version", "1.0", "-p", str(project)]
        )
        assert result.exit_code == 1
        assert "no declaration matches" in result.output

    def test_failed_mutation_exits_nonzero(self, project):
        (project / "Cargo.toml").write_text(
            CARGO.replace('serde = "1.0.100"', 'serde = { path = "../serde" }')
        )
        result = CliRunner().invoke(
            main, ["update", "dependencies-serde", "--version", "1.2.0", "-p", str(project)]
        )
        assert result.exit_code == 1
        assert "no version field" in result.output

    def test_already_current(self, project):
        result = CliRunner().invoke(
            main, ["update", "go-version", "--version", "1.21", "-p", str(project)]
        )
        assert result.exit_code == 0
        assert "already at 1.21" in result.output

    def test_split_spec(self):
        assert _split_spec("Cargo.toml:dependencies-serde") == ("Cargo.toml", "dependencies-serde")
        assert _split_spec("dependencies-serde") == (None, "dependencies-serde")


# ── clear-cache / init-config ────────────────────────────────────────────


class TestMaintenance:
    def test_clear_cache(self, tmp_path):
        cache_dir = tmp_path / "cache"
        cache_dir.mkdir()
        (cache_dir / "a.json").write_text("{}")
        result = CliRunner().invoke(main, ["--cache-dir", str(cache_dir), "clear-cache"])
        assert result.exit_code == 0
        assert "Removed 1 cache entry" in result.output
        assert list(cache_dir.iterdir()) == []

    def test_init_config(self, tmp_path):
        target = tmp_path / "new.toml"
        result = CliRunner().invoke(main, ["init-config", str(target)])
        assert result.exit_code == 0
        assert "[global]" in target.read_text()

    def test_init_config_refuses_overwrite(self, tmp_path):
        target = tmp_path / "new.toml"
        target.write_text("keep")
        result = CliRunner().invoke(main, ["init-config", str(target)])
        assert result.exit_code == 1
        assert "already exists" in result.output
        assert target.read_text() == "keep"

    def test_init_config_force(self, tmp_path):
        target = tmp_path / "new.toml"
        target.write_text("old")
        result = CliRunner().invoke(main, ["init-config", str(target), "--force"])
        assert result.exit_code == 0
        assert target.read_text().startswith("# treeupdt configuration file")

    def test_default_name(self, tmp_path):
        result = CliRunner().invoke(main, ["init-config"])
        assert result.exit_code == 0
        assert (tmp_path / ".treeupdt.toml").exists()
