"""Allow-list matching for shell commands proposed by the host.

A command is allowed when every sub-command of a chain starts with one of the
allowed prefixes. Matching is case-insensitive and on token boundaries, so
``git`` allows ``git status`` but not ``gitk``. The wildcard ``*`` allows
everything. Command and process substitution are never allowed without the
wildcard, since they would run a second command the prefix check cannot see.
"""

from __future__ import annotations

from collections.abc import Iterable

WILDCARD = "*"

_CHAIN_OPERATORS = ("&&", "||", ";", "|", "&", "\n")
_SUBSTITUTIONS = ("$(", "`", "<(", ">(")


def parse_command(command: str) -> list[str]:
    """Split a command line into sub-commands on chain operators outside quotes.

    Empty sub-commands are dropped and surrounding whitespace is stripped.

    Example:
        >>> parse_command("npm test && git commit -m 'a; b'")
        ['npm test', "git commit -m 'a; b'"]
    """
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    i = 0

    while i < len(command):
        char = command[i]
        if quote is not None:
            current.append(char)
            if char == "\\" and quote == '"' and i + 1 < len(command):
                current.append(command[i + 1])
                i += 2
                continue
            if char == quote:
                quote = None
            i += 1
            continue

        if char in ("'", '"'):
            quote = char
            current.append(char)
            i += 1
            continue

        operator = next((op for op in _CHAIN_OPERATORS if command.startswith(op, i)), None)
        if operator is not None:
            parts.append("".join(current))
            current = []
            i += len(operator)
            continue

        current.append(char)
        i += 1

    parts.append("".join(current))
    return [part.strip() for part in parts if part.strip()]


def has_substitution(command: str) -> bool:
    """Whether the command contains command or process substitution outside single quotes."""
    quote: str | None = None
    for i, char in enumerate(command):
        if quote == "'":
            if char == "'":
                quote = None
            continue
        if char == "'" and quote is None:
            quote = char
            continue
        if char == '"':
            quote = None if quote == '"' else '"'
            continue
        if any(command.startswith(marker, i) for marker in _SUBSTITUTIONS):
            return True
    return False


def _normalize(prefixes: Iterable[str]) -> list[str]:
    return [prefix.strip().lower() for prefix in prefixes if prefix and prefix.strip()]


def matches_prefix(sub_command: str, prefix: str) -> bool:
    """Case-insensitive prefix match that ends on a token boundary."""
    candidate = sub_command.strip().lower()
    prefix = prefix.strip().lower()
    if not candidate.startswith(prefix):
        return False
    return len(candidate) == len(prefix) or candidate[len(prefix)].isspace()


def is_allowed_sub_command(sub_command: str, allowed: Iterable[str]) -> bool:
    return any(matches_prefix(sub_command, prefix) for prefix in _normalize(allowed))


def validate_command(command: str, allowed_commands: Iterable[str]) -> bool:
    """Whether ``command`` may run without asking.

    Args:
        command: Full command line as proposed.
        allowed_commands: Allowed prefixes; ``*`` allows any command.

    Returns:
        True when every sub-command matches an allowed prefix.
    """
    allowed = _normalize(allowed_commands)
    if not command or not command.strip():
        return False
    if WILDCARD in allowed:
        return True
    if not allowed or has_substitution(command):
        return False

    sub_commands = parse_command(command)
    if not sub_commands:
        return False
    return all(is_allowed_sub_command(sub, allowed) for sub in sub_commands)


__all__ = [
    "WILDCARD",
    "has_substitution",
    "is_allowed_sub_command",
    "matches_prefix",
    "parse_command",
    "validate_command",
]
