"""Tests for the placement table."""

import pytest

from prpm.placement import SUPPORTED_FORMATS
from prpm.placement import effective_subtype
from prpm.placement import get_placement


def test_exact_row_wins():
    placement = get_placement("claude", "skill")

    assert placement.root == ".claude/skills"
    assert placement.per_package
    assert placement.main_file("anything") == "SKILL.md"


def test_format_fallback_row():
    placement = get_placement("cursor", "skill")

    assert placement.root == ".cursor/rules"
    assert placement.flatten
    assert placement.main_file("react") == "react.mdc"


def test_unknown_format_falls_back_to_generic():
    assert get_placement("notepad", "rule").root == ".prompts"


def test_package_dir():
    assert get_placement("claude", "agent").package_dir("reviewer") == ".claude/agents/reviewer"
    assert get_placement("windsurf", "rule").package_dir("reviewer") == ".windsurf/rules"


def test_as_flat_drops_canonical_main():
    flat = get_placement("claude", "skill").as_flat()

    assert flat.flatten
    assert not flat.canonical_main
    assert flat.main_file("my-skill") == "my-skill.md"
    assert get_placement("agents.md", None).as_flat().main_file("x") == "AGENTS.md"


@pytest.mark.parametrize(
    ("target", "source_format", "source_subtype", "expected"),
    [
        ("claude", "claude", "skill", "skill"),
        ("cursor", "claude", "skill", "rule"),
        ("cursor", "claude", "slash-command", "slash-command"),
        ("claude", "cursor", "rule", "agent"),
        ("gemini", "claude", "agent", "slash-command"),
    ],
)
def test_effective_subtype(target, source_format, source_subtype, expected):
    assert effective_subtype(target, source_format, source_subtype) == expected


def test_supported_formats():
    assert {"claude", "cursor", "windsurf", "continue", "kiro", "copilot", "agents.md", "generic"} <= SUPPORTED_FORMATS
