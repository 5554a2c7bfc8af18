"""Manifest parsers: auto-registered on import."""

from treeupdt.engines.dependency_scanner.parsers import (
    cargo_toml,  # noqa: F401
    go_mod,  # noqa: F401
    nix,  # noqa: F401
    package_json,  # noqa: F401
)
