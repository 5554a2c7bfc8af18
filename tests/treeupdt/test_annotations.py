"""Tests for directive parsing and comment correlation."""

from __future__ import annotations

from treeupdt.engines.dependency_scanner.annotations import (
    correlate_annotations,
    extract_annotation_from_line,
    parse_annotation,
)

# ── parse_annotation ─────────────────────────────────────────────────────


class TestParseAnnotation:
    def test_key_value_pairs(self):
        ann = parse_annotation(" treeupdt: pin-version=1.0, update-strategy=conservative", 3)
        assert ann is not None
        assert ann.line == 3
        assert ann.options == {"pin-version": "1.0", "update-strategy": "conservative"}

    def test_bare_key_is_boolean(self):
        ann = parse_annotation("treeupdt: ignore", 1)
        assert ann.options == {"ignore": "true"}

    def test_quoted_value_keeps_commas(self):
        ann = parse_annotation('treeupdt: ignore-versions="*-beta*,*-rc*", pin', 1)
        assert ann.options == {"ignore-versions": "*-beta*,*-rc*", "pin": "true"}

    def test_single_quotes(self):
        ann = parse_annotation("treeupdt: ignore-versions='1.*,2.*'", 1)
        assert ann.options == {"ignore-versions": "1.*,2.*"}

    def test_unterminated_quote_runs_to_end(self):
        ann = parse_annotation('treeupdt: ignore-versions="a,b, c', 1)
        assert ann.options == {"ignore-versions": "a,b, c"}

    def test_no_marker(self):
        assert parse_annotation("just a comment", 1) is None

    def test_marker_without_pairs(self):
        assert parse_annotation("treeupdt: , ,", 1) is None

    def test_empty_value_dropped(self):
        ann = parse_annotation("treeupdt: pin-version=, ignore", 1)
        assert ann.options == {"ignore": "true"}


# ── extract_annotation_from_line ─────────────────────────────────────────


class TestExtractFromLine:
    def test_hash_comment(self):
        ann = extract_annotation_from_line('serde = "1.0" # treeupdt: ignore', 7)
        assert ann.line == 7
        assert ann.options == {"ignore": "true"}

    def test_double_slash_comment(self):
        ann = extract_annotation_from_line(
            "\tgithub.com/spf13/cobra v1.7.0 // treeupdt: update-strategy=latest", 1
        )
        assert ann.options == {"update-strategy": "latest"}

    def test_double_dash_comment(self):
        ann = extract_annotation_from_line("x = 1 -- treeupdt: pin-version=2", 1)
        assert ann.options == {"pin-version": "2"}

    def test_block_comment(self):
        ann = extract_annotation_from_line("/* treeupdt: ignore */ foo = 1;", 1)
        assert ann.options == {"ignore": "true"}

    def test_unterminated_block_comment_ignored(self):
        assert extract_annotation_from_line("/* treeupdt: ignore", 1) is None

    def test_hash_tried_before_double_slash(self):
        line = 'url = "https://example.com/x" # treeupdt: ignore'
        ann = extract_annotation_from_line(line, 1)
        assert ann.options == {"ignore": "true"}

    def test_no_comment(self):
        assert extract_annotation_from_line('serde = "1.0"', 1) is None


# ── correlate_annotations ────────────────────────────────────────────────


class TestCorrelate:
    def test_inline_wins_over_preceding(self):
        lines = [
            "# treeupdt: pin-version=1.0",
            'serde = "1.0" # treeupdt: update-strategy=latest',
        ]
        anns = correlate_annotations(lines, 1, ("#",))
        assert len(anns) == 1
        assert anns[0].options == {"update-strategy": "latest"}
        assert anns[0].line == 2

    def test_preceding_comment_line(self):
        lines = ["# treeupdt: ignore", 'serde = "1.0"']
        anns = correlate_annotations(lines, 1, ("#",))
        assert anns[0].line == 1
        assert anns[0].options == {"ignore": "true"}

    def test_two_lines_above(self):
        lines = ["# treeupdt: ignore", "# plain note", 'serde = "1.0"']
        anns = correlate_annotations(lines, 2, ("#",))
        assert anns[0].line == 1

    def test_three_lines_above_not_reached(self):
        lines = ["# treeupdt: ignore", "# a", "# b", 'serde = "1.0"']
        assert correlate_annotations(lines, 3, ("#",)) == []

    def test_stops_at_non_comment_line(self):
        lines = ["# treeupdt: ignore", 'log = "0.4"', 'serde = "1.0"']
        assert correlate_annotations(lines, 2, ("#",)) == []

    def test_index_out_of_range(self):
        assert correlate_annotations(["a"], 5, ("#",)) == []
