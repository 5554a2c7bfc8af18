"""Localized text edits applied against a single, unmodified snapshot."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import AnyStr, Generic


@dataclass(frozen=True)
class TextEdit(Generic[AnyStr]):
    """Replace ``text[start:end]`` of the original snapshot with *replacement*."""

    start: int
    end: int
    replacement: AnyStr


def apply_edits(text: AnyStr, edits: Iterable[TextEdit[AnyStr]]) -> AnyStr:
    """Apply *edits* from the highest start offset down.

    Every span refers to the original *text*, so applying back to front
    keeps the remaining spans valid. Overlapping spans raise ``ValueError``.
    """
    ordered = sorted(edits, key=lambda e: (e.start, e.end), reverse=True)
    for later, earlier in zip(ordered, ordered[1:]):
        if earlier.end > later.start:
            raise ValueError(
                f"overlapping edits: [{earlier.start}, {earlier.end}) and "
                f"[{later.start}, {later.end})"
            )
    for edit in ordered:
        if not 0 <= edit.start <= edit.end <= len(text):
            raise ValueError(f"edit [{edit.start}, {edit.end}) out of range")
        text = text[: edit.start] + edit.replacement + text[edit.end :]
    return text
