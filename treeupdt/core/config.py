"""Configuration file models, loading and policy application.

Config files are TOML with kebab-case keys::

    [global]
    update-strategy = "stable"

    [files."flake.nix".packages]
    nixpkgs = { update-strategy = "conservative" }

    [packages]
    serde = { ignore-versions = ["*-rc*"] }
"""

from __future__ import annotations

import dataclasses
import os
import re
import sys
from collections.abc import Iterable
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from treeupdt.engines.dependency_scanner.models import Declaration, SourceType, UpdateStrategy
from treeupdt.exceptions import ConfigError

log = structlog.get_logger("treeupdt.config")

DEFAULT_CONFIG_NAMES = (".treeupdt.toml", "treeupdt.toml")


def _kebab(name: str) -> str:
    return name.replace("_", "-")


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=_kebab,
        populate_by_name=True,
        extra="forbid",
    )


class FilterSettings(_ConfigModel):
    file_types: list[str] | None = None
    name_patterns: list[str] | None = None
    source_types: list[str] | None = None
    update_strategies: list[str] | None = None


class GlobalConfig(_ConfigModel):
    update_strategy: UpdateStrategy = UpdateStrategy.STABLE
    cache_enabled: bool = True
    cache_ttl: int = Field(default=3600, ge=0)
    filters: FilterSettings = Field(default_factory=FilterSettings)
    exclude_paths: list[str] = Field(default_factory=list)


class PackageConfig(_ConfigModel):
    enabled: bool = True
    update_strategy: UpdateStrategy | None = None
    pin_version: str | None = None
    preferred_source: SourceType | None = None
    ignore_versions: list[str] = Field(default_factory=list)


class FileConfig(_ConfigModel):
    enabled: bool = True
    update_strategy: UpdateStrategy | None = None
    packages: dict[str, PackageConfig] = Field(default_factory=dict)


class TreeupdtConfig(_ConfigModel):
    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    files: dict[str, FileConfig] = Field(default_factory=dict)
    packages: dict[str, PackageConfig] = Field(default_factory=dict)

    def file_config(self, path: str) -> FileConfig | None:
        """Match a config ``[files]`` key against a manifest path.

        A key matches the path exactly, with or without a leading ``./``,
        or as a trailing path suffix (``flake.nix`` matches ``a/b/flake.nix``).
        """
        normalized = path.removeprefix("./")
        for key in (path, normalized, f"./{normalized}"):
            if key in self.files:
                return self.files[key]
        posix = normalized.replace(os.sep, "/")
        for key, cfg in self.files.items():
            if posix.endswith("/" + key.removeprefix("./")):
                return cfg
        return None

    def package_config(
        self, declaration: Declaration, file_cfg: FileConfig | None = None
    ) -> PackageConfig | None:
        """File-scoped package settings win over global ``[packages]``."""
        keys = declaration_keys(declaration)
        for table in ((file_cfg.packages if file_cfg else {}), self.packages):
            for key in keys:
                if key in table:
                    return table[key]
        return None

    def is_excluded(self, path: str) -> bool:
        path = path.removeprefix("./").replace(os.sep, "/")
        for pattern in self.global_.exclude_paths:
            pattern = pattern.removeprefix("./").rstrip("/")
            if "*" in pattern:
                if glob_match(pattern, path):
                    return True
            elif path == pattern or path.startswith(pattern + "/"):
                return True
        return False


def declaration_keys(declaration: Declaration) -> list[str]:
    """Names a config table may use for a declaration, most specific first."""
    keys = [declaration.name]
    for meta_key in ("dependency", "input", "module", "pname"):
        value = declaration.metadata.get(meta_key)
        if isinstance(value, str) and value not in keys:
            keys.append(value)
    return keys


def glob_match(pattern: str, text: str) -> bool:
    """Whole-string match where ``*`` is the only wildcard."""
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.fullmatch(regex, text, re.DOTALL) is not None


# ── loading ──────────────────────────────────────────────────────────────


def load_config(path: Path | str) -> TreeupdtConfig:
    try:
        with open(path, "rb") as fh:
            data = tomllib.load(fh)
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML in {path}: {exc}") from exc
    try:
        return TreeupdtConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid config {path}: {exc}") from exc


def user_config_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "treeupdt" / "config.toml"


def find_config(cwd: Path | None = None) -> Path | None:
    cwd = Path(cwd) if cwd is not None else Path.cwd()
    for name in DEFAULT_CONFIG_NAMES:
        candidate = cwd / name
        if candidate.is_file():
            return candidate
    candidate = user_config_path()
    if candidate.is_file():
        return candidate
    return None


def load_default_config(cwd: Path | None = None) -> TreeupdtConfig:
    """Load the first config found, or defaults when there is none."""
    path = find_config(cwd)
    if path is None:
        return TreeupdtConfig()
    log.debug("config.loaded", path=str(path))
    return load_config(path)


# ── policy ───────────────────────────────────────────────────────────────


def _relative(path: str, root: Path | None) -> str:
    if root is None:
        return path
    try:
        return Path(path).resolve().relative_to(Path(root).resolve()).as_posix()
    except ValueError:
        return path


def _annotation_strategy(declaration: Declaration) -> UpdateStrategy | None:
    value = declaration.option("update-strategy")
    if value is None:
        return None
    try:
        return UpdateStrategy(value.lower())
    except ValueError:
        log.warning(
            "config.bad_annotation_strategy",
            path=declaration.path,
            name=declaration.name,
            value=value,
        )
        return None


def effective_strategy(
    declaration: Declaration,
    config: TreeupdtConfig,
    file_cfg: FileConfig | None = None,
    pkg_cfg: PackageConfig | None = None,
) -> UpdateStrategy:
    """Resolve the strategy: scanner default or global, then file, package, annotation."""
    strategy = declaration.update_strategy
    if strategy == UpdateStrategy.STABLE:
        strategy = config.global_.update_strategy
    if file_cfg is not None and file_cfg.update_strategy is not None:
        strategy = file_cfg.update_strategy
    if pkg_cfg is not None and pkg_cfg.update_strategy is not None:
        strategy = pkg_cfg.update_strategy
    return _annotation_strategy(declaration) or strategy


def apply_policy(
    declarations: Iterable[Declaration],
    config: TreeupdtConfig,
    root: Path | None = None,
) -> list[Declaration]:
    """Return the declarations eligible for updating, with their effective strategy.

    Drops excluded paths, disabled files and packages, pinned entries and
    anything annotated ``ignore``. A configured ``preferred-source`` hint
    is moved to the front.
    """
    kept: list[Declaration] = []
    for decl in declarations:
        rel = _relative(decl.path, root)
        if config.is_excluded(rel):
            continue
        file_cfg = config.file_config(rel)
        if file_cfg is not None and not file_cfg.enabled:
            continue
        pkg_cfg = config.package_config(decl, file_cfg)
        if pkg_cfg is not None and not pkg_cfg.enabled:
            continue
        if decl.option("ignore") == "true":
            continue
        if decl.option("pin-version") or (pkg_cfg is not None and pkg_cfg.pin_version):
            log.debug("config.pinned", path=decl.path, name=decl.name)
            continue

        sources = list(decl.sources)
        if pkg_cfg is not None and pkg_cfg.preferred_source is not None:
            preferred = [s for s in sources if s.source_type == pkg_cfg.preferred_source]
            sources = preferred + [s for s in sources if s not in preferred]

        kept.append(
            dataclasses.replace(
                decl,
                sources=sources,
                update_strategy=effective_strategy(decl, config, file_cfg, pkg_cfg),
            )
        )
    return kept


EXAMPLE_CONFIG = """\
# treeupdt configuration file

[global]
# Default update strategy: stable, conservative, latest, aggressive
update-strategy = "stable"

# Enable caching of API responses
cache-enabled = true

# Cache TTL in seconds (3600 = 1 hour)
cache-ttl = 3600

# Paths to exclude from scanning
# exclude-paths = ["vendor", "third_party/*"]

[global.filters]
# file-types = ["nix", "cargo"]
# name-patterns = ["^flake-input-.*"]
# source-types = ["github", "crates"]

# Per-file configuration
[files."flake.nix"]
enabled = true
update-strategy = "conservative"

# Package-specific config within this file
[files."flake.nix".packages]
nixpkgs = { update-strategy = "stable" }

# Global package configuration (applies across all files)
[packages]
# my-important-lib = { pin-version = "1.2.3" }
# my-package = { ignore-versions = ["*-beta*", "*-rc*"] }
# some-package = { preferred-source = "github" }
"""
