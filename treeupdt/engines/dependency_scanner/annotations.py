"""Parser for ``treeupdt:`` author directives embedded in comments.

A directive comment looks like::

    # treeupdt: pin-version=1.0, update-strategy=conservative
    // treeupdt: ignore
    /* treeupdt: ignore-versions="*-beta*,*-rc*" */

Values may be quoted with ``'`` or ``"`` to embed commas. A bare key is a
boolean flag and is stored as ``"true"``.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from treeupdt.engines.dependency_scanner.models import Annotation

_MARKER_RE = re.compile(r"treeupdt:\s*(.+)", re.DOTALL)

# Tried in this order; the first marker whose comment body yields a directive wins.
_COMMENT_MARKERS: tuple[tuple[str, str | None], ...] = (
    ("#", None),
    ("//", None),
    ("--", None),
    ("/*", "*/"),
)


def parse_annotation(comment: str, line: int) -> Annotation | None:
    """Parse the directive pairs in *comment*.

    Returns None if the marker is absent or no pair could be parsed.
    """
    m = _MARKER_RE.search(comment)
    if not m:
        return None

    options: dict[str, str] = {}
    key: list[str] = []
    value: list[str] = []
    in_value = False
    quote: str | None = None

    def _flush() -> None:
        name = "".join(key).strip()
        if not name:
            return
        if not in_value:
            options[name] = "true"
            return
        text = "".join(value).strip()
        if text:
            options[name] = text

    for ch in m.group(1):
        if quote is None and ch in "\"'":
            quote = ch
        elif quote is not None and ch == quote:
            quote = None
        elif quote is None and ch == "=" and not in_value:
            in_value = True
        elif quote is None and ch == ",":
            _flush()
            key.clear()
            value.clear()
            in_value = False
        elif in_value:
            value.append(ch)
        else:
            key.append(ch)

    # An unterminated quote simply runs to the end of the input.
    _flush()

    if not options:
        return None
    return Annotation(line=line, options=options)


def extract_annotation_from_line(text: str, line: int) -> Annotation | None:
    """Find a directive in a physical line that may mix code and a comment."""
    for start, end in _COMMENT_MARKERS:
        pos = text.find(start)
        if pos == -1:
            continue
        body_start = pos + len(start)
        if end is None:
            body = text[body_start:]
        else:
            end_pos = text.find(end, body_start)
            if end_pos == -1:
                continue
            body = text[body_start:end_pos]
        annotation = parse_annotation(body, line)
        if annotation is not None:
            return annotation
    return None


def correlate_annotations(
    lines: Sequence[str],
    index: int,
    comment_prefixes: tuple[str, ...],
) -> list[Annotation]:
    """Attach at most one directive set to the declaration on ``lines[index]``.

    The declaration's own line wins. Otherwise up to two preceding lines are
    examined, walking upward only while they are comment-only lines.
    """
    if not 0 <= index < len(lines):
        return []

    inline = extract_annotation_from_line(lines[index], index + 1)
    if inline is not None:
        return [inline]

    for offset in (1, 2):
        prev = index - offset
        if prev < 0:
            break
        stripped = lines[prev].strip()
        if not stripped.startswith(comment_prefixes):
            break
        annotation = extract_annotation_from_line(lines[prev], prev + 1)
        if annotation is not None:
            return [annotation]
    return []
