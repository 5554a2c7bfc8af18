"""CLI entry point: treeupdt.

Subcommands:
    treeupdt scan [PATH]                   # list version declarations
    treeupdt check [PATH]                  # ask upstream sources for newer versions
    treeupdt update [FILE:]NAME ...        # rewrite declarations in place
    treeupdt clear-cache                   # drop cached source responses
    treeupdt init-config [PATH]            # write an example .treeupdt.toml
"""

from __future__ import annotations

import asyncio
import difflib
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from treeupdt.core.config import (
    EXAMPLE_CONFIG,
    TreeupdtConfig,
    apply_policy,
    load_config,
    load_default_config,
)
from treeupdt.core.filter import DeclarationFilter, ignored_version
from treeupdt.core.logging import setup_logging
from treeupdt.engines.dependency_scanner.models import Declaration, ScanResult
from treeupdt.engines.dependency_scanner.scanner import scan
from treeupdt.engines.dependency_updater.updater import update_file
from treeupdt.exceptions import TreeupdtError
from treeupdt.sources.base import build_update_info, match_version_style, select_version
from treeupdt.sources.cache import FileCache
from treeupdt.sources.models import UpdateInfo
from treeupdt.sources.registry import SourceRegistry


_MAX_CONCURRENT_CHECKS = 8

_OUTPUT_CHOICES = click.Choice(["text", "json", "paths"])


@dataclass
class CliState:
    config: TreeupdtConfig
    cache_dir: Path | None = None


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Config file (default: .treeupdt.toml, treeupdt.toml, then the user config dir)",
)
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for cached source responses",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, config_path: str | None, cache_dir: str | None) -> None:
    """treeupdt: find and bump pinned dependency versions across a source tree."""
    setup_logging(verbose=verbose)
    try:
        config = load_config(config_path) if config_path else load_default_config()
    except TreeupdtError as e:
        _fail(str(e))
    ctx.obj = CliState(config=config, cache_dir=Path(cache_dir) if cache_dir else None)


# ── helpers ──────────────────────────────────────────────────────────────


def _collect(
    state: CliState,
    path: str,
    file_type: str | None = None,
    name: str | None = None,
    source: str | None = None,
    strategy: str | None = None,
    use_policy: bool = True,
) -> tuple[list[Declaration], ScanResult]:
    root = Path(path)
    result = scan(root)
    decls = result.declarations
    try:
        if use_policy:
            decls = apply_policy(decls, state.config, root=root if root.is_dir() else None)
            decls = DeclarationFilter.from_settings(state.config.global_.filters).apply(decls)
        decls = DeclarationFilter.from_options(file_type, name, source, strategy).apply(decls)
    except TreeupdtError as e:
        _fail(str(e))
    for failure in result.failures:
        click.echo(f"warning: {failure.path}: {failure.error}", err=True)
    return decls, result


def _print_declarations(decls: list[Declaration], output: str) -> None:
    if output == "json":
        click.echo(json.dumps([d.to_dict() for d in decls], indent=2))
        return
    if output == "paths":
        for d in decls:
            click.echo(f"{d.path}:{d.name}")
        return

    if not decls:
        click.echo("No declarations found.")
        return

    by_file: dict[str, list[Declaration]] = {}
    for d in decls:
        by_file.setdefault(d.path, []).append(d)

    click.echo(f"Found {len(decls)} declarations in {len(by_file)} manifest(s)\n")
    for path, file_decls in sorted(by_file.items()):
        click.echo(f"  {path}  ({file_decls[0].format.value})")
        for d in file_decls:
            source = f"  -> {d.sources[0].source_type.value}:{d.sources[0].identifier}" if d.sources else ""
            click.echo(f"    {d.name} {d.current_version} [{d.update_strategy.value}]{source}")
            for annotation in d.annotations:
                opts = ", ".join(f"{k}={v}" for k, v in annotation.options.items())
                click.echo(f"      # line {annotation.line}: {opts}")
        click.echo()


def _without_ignored(info: UpdateInfo, decl: Declaration, config: TreeupdtConfig) -> UpdateInfo:
    kept = [v for v in info.all_versions if not ignored_version(decl, v.version, config)]
    if len(kept) == len(info.all_versions):
        return info
    return build_update_info(info.current_version, kept)


async def _check_one(
    registry: SourceRegistry,
    decl: Declaration,
    config: TreeupdtConfig,
    semaphore: asyncio.Semaphore,
) -> dict[str, Any]:
    row: dict[str, Any] = {
        "path": decl.path,
        "name": decl.name,
        "current_version": decl.current_version,
        "update_strategy": decl.update_strategy.value,
        "latest_version": None,
        "target_version": None,
        "update_available": False,
        "source": None,
    }
    async with semaphore:
        found = await registry.check(decl)
    if found is None:
        return row
    hint, info = found
    try:
        info = _without_ignored(info, decl, config)
    except TreeupdtError:
        return row
    target = select_version(info, decl.update_strategy, decl.current_version)
    row["source"] = f"{hint.source_type.value}:{hint.identifier}"
    row["latest_version"] = info.latest_version.version
    if target is not None:
        row["target_version"] = match_version_style(decl.current_version, target.version)
        row["update_available"] = row["target_version"] != decl.current_version
    return row


async def _check_all(
    decls: list[Declaration], state: CliState, use_cache: bool
) -> list[dict[str, Any]]:
    semaphore = asyncio.Semaphore(_MAX_CONCURRENT_CHECKS)
    async with SourceRegistry(
        use_cache=use_cache,
        cache_dir=state.cache_dir,
        max_ttl=state.config.global_.cache_ttl,
    ) as registry:
        return list(
            await asyncio.gather(
                *(_check_one(registry, d, state.config, semaphore) for d in decls)
            )
        )


# ── commands ─────────────────────────────────────────────────────────────


@main.command("scan")
@click.argument("path", default=".", type=click.Path(exists=True))
@click.option("-o", "--output", type=_OUTPUT_CHOICES, default="text", help="Output format")
@click.option("-t", "--type", "file_type", default=None, help="File type (nix, cargo, npm, go)")
@click.option("-n", "--name", default=None, help="Regex on declaration names")
@click.option("-s", "--source", default=None, help="Source type (github, crates, npm, git, ...)")
@click.option("-u", "--strategy", default=None, help="Update strategy")
@click.option("--all", "show_all", is_flag=True, help="Ignore config policy (disabled, pinned, ignored)")
@click.pass_obj
def scan_cmd(
    state: CliState,
    path: str,
    output: str,
    file_type: str | None,
    name: str | None,
    source: str | None,
    strategy: str | None,
    show_all: bool,
) -> None:
    """List dependency declarations found below PATH."""
    decls, _ = _collect(state, path, file_type, name, source, strategy, use_policy=not show_all)
    _print_declarations(decls, output)


@main.command("check")
@click.argument("path", default=".", type=click.Path(exists=True))
@click.option("-o", "--output", type=click.Choice(["text", "json"]), default="text")
@click.option("-t", "--type", "file_type", default=None, help="File type (nix, cargo, npm, go)")
@click.option("-n", "--name", default=None, help="Regex on declaration names")
@click.option("--no-cache", is_flag=True, help="Bypass the source response cache")
@click.pass_obj
def check_cmd(
    state: CliState,
    path: str,
    output: str,
    file_type: str | None,
    name: str | None,
    no_cache: bool,
) -> None:
    """Query upstream sources for newer versions."""
    decls, _ = _collect(state, path, file_type, name)
    use_cache = state.config.global_.cache_enabled and not no_cache
    rows = asyncio.run(_check_all(decls, state, use_cache))

    if output == "json":
        click.echo(json.dumps(rows, indent=2))
        return

    updates = [r for r in rows if r["update_available"]]
    for r in rows:
        if r["source"] is None:
            status = "no source"
        elif r["update_available"]:
            status = f"{r['current_version']} -> {r['target_version']}"
        else:
            status = f"{r['current_version']} (up to date)"
        click.echo(f"  {r['path']}:{r['name']}  {status}")
    click.echo(f"\n{len(updates)} update(s) available")


def _split_spec(spec: str) -> tuple[str | None, str]:
    if ":" in spec:
        file_part, name = spec.split(":", 1)
        return file_part or None, name
    return None, spec


def _matches_spec(decl: Declaration, file_part: str | None, name: str) -> bool:
    if decl.name != name:
        return False
    if file_part is None:
        return True
    decl_path = Path(decl.path).as_posix()
    wanted = Path(file_part).as_posix().removeprefix("./")
    return decl_path == wanted or decl_path.endswith("/" + wanted)


@main.command("update")
@click.argument("specs", nargs=-1, required=True)
@click.option("-p", "--path", default=".", type=click.Path(exists=True), help="Tree to search")
@click.option("--version", "new_version", default=None, help="Version to write (default: from sources)")
@click.option("--dry-run", is_flag=True, help="Show the diff without writing")
@click.option("--no-cache", is_flag=True, help="Bypass the source response cache")
@click.pass_obj
def update_cmd(
    state: CliState,
    specs: tuple[str, ...],
    path: str,
    new_version: str | None,
    dry_run: bool,
    no_cache: bool,
) -> None:
    """Update declarations named by [FILE:]NAME specs."""
    decls, _ = _collect(state, path, use_policy=False)
    failed = False

    targets: list[Declaration] = []
    for spec in specs:
        file_part, name = _split_spec(spec)
        matched = [d for d in decls if _matches_spec(d, file_part, name)]
        if not matched:
            click.echo(f"Error: no declaration matches {spec!r}", err=True)
            failed = True
        targets.extend(matched)

    versions: dict[int, str | None] = {}
    if new_version is None and targets:
        use_cache = state.config.global_.cache_enabled and not no_cache
        policy = {(d.path, d.name): d for d in apply_policy(targets, state.config)}
        checked = [policy.get((d.path, d.name), d) for d in targets]
        rows = asyncio.run(_check_all(checked, state, use_cache))
        versions = {i: row["target_version"] for i, row in enumerate(rows)}

    for i, decl in enumerate(targets):
        version = new_version if new_version is not None else versions.get(i)
        if version is None:
            click.echo(f"  {decl.path}:{decl.name}: no newer version found", err=True)
            continue
        try:
            result = update_file(decl, version, write=not dry_run)
        except TreeupdtError as e:
            click.echo(f"Error: {decl.path}:{decl.name}: {e}", err=True)
            failed = True
            continue

        if not result.changed:
            click.echo(f"  {decl.path}:{decl.name} already at {version}")
        elif dry_run:
            diff = difflib.unified_diff(
                result.old_content.splitlines(keepends=True),
                result.new_content.splitlines(keepends=True),
                fromfile=f"a/{decl.path}",
                tofile=f"b/{decl.path}",
            )
            click.echo("".join(diff), nl=False)
        else:
            click.echo(f"  {decl.path}:{decl.name}: {decl.current_version} -> {version}")

    if failed:
        sys.exit(1)


@main.command("clear-cache")
@click.pass_obj
def clear_cache_cmd(state: CliState) -> None:
    """Remove all cached source responses."""
    removed = FileCache(state.cache_dir).clear()
    click.echo(f"Removed {removed} cache entr{'y' if removed == 1 else 'ies'}")


@main.command("init-config")
@click.argument("path", default=".treeupdt.toml", type=click.Path(dir_okay=False))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init_config_cmd(path: str, force: bool) -> None:
    """Write an example configuration file."""
    target = Path(path)
    if target.exists() and not force:
        _fail(f"{path} already exists (use --force to overwrite)")
    target.write_text(EXAMPLE_CONFIG)
    click.echo(f"Example config written to {path}")


if __name__ == "__main__":
    main()
