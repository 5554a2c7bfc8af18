"""Updater registry: route a declaration to the mutator for its format."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from treeupdt.engines.dependency_scanner.models import Declaration, ManifestFormat
from treeupdt.exceptions import UnsupportedFormatError


@runtime_checkable
class ManifestUpdater(Protocol):
    """Interface that every manifest updater must satisfy.

    ``update`` returns the new file content and never touches the disk.
    It raises ``DeclarationNotFound`` when the declaration cannot be
    located in *content* any more.
    """

    format: ManifestFormat

    def update(self, content: str, declaration: Declaration, new_version: str) -> str: ...


UPDATER_REGISTRY: dict[ManifestFormat, ManifestUpdater] = {}


def register_updater(updater: ManifestUpdater) -> None:
    """Register an updater instance by its manifest format."""
    UPDATER_REGISTRY[updater.format] = updater


def get_updater(fmt: ManifestFormat) -> ManifestUpdater:
    try:
        return UPDATER_REGISTRY[fmt]
    except KeyError:
        raise UnsupportedFormatError(f"no updater registered for {fmt.value}") from None
