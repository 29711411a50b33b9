"""Tests for interaction_engine.command_validation module."""

from __future__ import annotations

import pytest

from interaction_engine.command_validation import (
    has_substitution,
    matches_prefix,
    parse_command,
    validate_command,
)

# =============================================================================
# parse_command Tests
# =============================================================================


def test_parse_command_splits_on_chain_operators():
    """Test each chain operator splits sub-commands."""
    assert parse_command("a && b || c; d | e & f\ng") == ["a", "b", "c", "d", "e", "f", "g"]


def test_parse_command_respects_quotes():
    """Test operators inside quotes do not split."""
    assert parse_command("git commit -m 'a; b' && echo \"x && y\"") == [
        "git commit -m 'a; b'",
        'echo "x && y"',
    ]


def test_parse_command_drops_empty_parts():
    """Test empty sub-commands are dropped."""
    assert parse_command("ls ;; ; pwd") == ["ls", "pwd"]
    assert parse_command("   ") == []


# =============================================================================
# Substitution Tests
# =============================================================================


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        ("echo $(whoami)", True),
        ("echo `whoami`", True),
        ("diff <(ls a) <(ls b)", True),
        ('echo "$(whoami)"', True),
        ("echo '$(whoami)'", False),
        ("echo $HOME", False),
    ],
)
def test_has_substitution(command: str, expected: bool):
    """Test substitution detection outside single quotes."""
    assert has_substitution(command) is expected


# =============================================================================
# Prefix Matching Tests
# =============================================================================


def test_matches_prefix_on_token_boundary():
    """Test a prefix must end on a token boundary."""
    assert matches_prefix("git status", "git")
    assert matches_prefix("git", "git")
    assert not matches_prefix("gitk", "git")
    assert matches_prefix("NPM test", "npm test")


# =============================================================================
# validate_command Tests
# =============================================================================


@pytest.mark.parametrize(
    ("command", "allowed", "expected"),
    [
        ("npm test", ["npm test"], True),
        ("npm test -- --watch", ["npm test"], True),
        ("npm install", ["npm test"], False),
        ("npm test && git status", ["npm test", "git"], True),
        ("npm test && rm -rf /", ["npm test", "git"], False),
        ("cat a | grep b", ["cat", "grep"], True),
        ("echo $(rm -rf /)", ["echo"], False),
        ("anything at all", ["*"], True),
        ("echo $(whoami)", ["*"], True),
        ("ls", [], False),
        ("", ["*"], False),
        ("   ", ["ls"], False),
        ("ls", ["", "  "], False),
    ],
)
def test_validate_command(command: str, allowed: list[str], expected: bool):
    """Test allow-list decisions."""
    assert validate_command(command, allowed) is expected
