"""Tests for vql.importer (principle markdown parsing)."""

from __future__ import annotations

import logging
from pathlib import Path

from vql.importer import parse_principles, read_principles_file


class TestParsePrinciples:
    def test_sections_and_guidance(self, principles_md: str):
        parsed = parse_principles(principles_md)
        assert [(p.short_name, p.long_name) for p in parsed] == [
            ("a", "Architecture Principles"),
            ("s", "Security Principles"),
        ]
        assert parsed[0].guidance == (
            "Keep controllers thin.\n## Layering\nServices never import controllers."
        )
        assert parsed[1].guidance == "Validate all input at the boundary."

    def test_preamble_ignored(self, principles_md: str):
        parsed = parse_principles(principles_md)
        assert all("Intro text" not in (p.guidance or "") for p in parsed)

    def test_any_heading_level(self):
        parsed = parse_principles("### Testing (t)\nWrite tests.\n")
        assert parsed[0].short_name == "t"
        assert parsed[0].long_name == "Testing"

    def test_trailing_whitespace_after_shortcode(self):
        parsed = parse_principles("# Testing (t)   \nbody\n")
        assert parsed[0].short_name == "t"

    def test_empty_guidance_is_none(self):
        parsed = parse_principles("# Architecture (a)\n\n\n# Security (s)\nx\n")
        assert parsed[0].guidance is None

    def test_blank_edges_stripped(self):
        parsed = parse_principles("# Architecture (a)\n\n  indented line\n\n")
        assert parsed[0].guidance == "  indented line"

    def test_no_headings(self):
        assert parse_principles("just some notes\n## without shortcodes\n") == []

    def test_duplicate_shortcode_later_wins(self, caplog):
        text = "# First (a)\none\n# Security (s)\ntwo\n# Second (a)\nthree\n"
        with caplog.at_level(logging.WARNING, logger="vql.importer"):
            parsed = parse_principles(text)
        assert [p.short_name for p in parsed] == ["s", "a"]
        assert parsed[1].long_name == "Second"
        assert parsed[1].guidance == "three"
        assert "more than once" in caplog.text


class TestReadPrinciplesFile:
    def test_reads_file(self, principles_file: Path, principles_md: str):
        assert read_principles_file(principles_file) == principles_md

    def test_expands_home(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        (tmp_path / "p.md").write_text("# Testing (t)\n")
        assert read_principles_file("~/p.md") == "# Testing (t)\n"
