"""Best-effort reversal of generated DDL.

The default strategy classifies statements with regular expressions. Any
object with a ``reverse(statement)`` method can replace it, e.g. a real
DDL parser.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from typing import Protocol

_IDENT = r"`?([^`\s(]+)`?"

IRREVERSIBLE_PREFIX = "-- IRREVERSIBLE:"


class ReversalStrategy(Protocol):
    """Maps one up statement to its down statement, or None to emit nothing."""

    def reverse(self, statement: str) -> str | None: ...


class RegexReversalStrategy:
    """Classifies statements by pattern and emits the matching inverse.

    Statements that cannot be reversed without the prior schema state
    (MODIFY COLUMN, DROP COLUMN, DROP FOREIGN KEY) map to a non-executable
    comment so the gap is visible in the artifact.
    """

    def __init__(self) -> None:
        self._rules: list[tuple[re.Pattern[str], Callable[[re.Match[str], str], str]]] = [
            (
                re.compile(rf"^\s*CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?{_IDENT}", re.I),
                lambda m, s: f"DROP TABLE IF EXISTS `{m.group(1)}`;",
            ),
            (
                re.compile(rf"^\s*ALTER\s+TABLE\s+{_IDENT}\s+ADD\s+COLUMN\s+{_IDENT}", re.I),
                lambda m, s: f"ALTER TABLE `{m.group(1)}` DROP COLUMN `{m.group(2)}`;",
            ),
            (
                re.compile(rf"^\s*ALTER\s+TABLE\s+{_IDENT}\s+ADD\s+CONSTRAINT\s+{_IDENT}", re.I),
                lambda m, s: f"ALTER TABLE `{m.group(1)}` DROP FOREIGN KEY `{m.group(2)}`;",
            ),
            (
                re.compile(rf"^\s*ALTER\s+TABLE\s+{_IDENT}\s+ADD\s+UNIQUE\s+INDEX\s+{_IDENT}", re.I),
                lambda m, s: f"ALTER TABLE `{m.group(1)}` DROP INDEX `{m.group(2)}`;",
            ),
            (
                re.compile(
                    rf"^\s*ALTER\s+TABLE\s+{_IDENT}\s+RENAME\s+COLUMN\s+{_IDENT}\s+TO\s+{_IDENT}",
                    re.I,
                ),
                lambda m, s: (
                    f"ALTER TABLE `{m.group(1)}` RENAME COLUMN `{m.group(3)}` TO `{m.group(2)}`;"
                ),
            ),
            (
                re.compile(r"\bMODIFY\s+COLUMN\b", re.I),
                lambda m, s: f"{IRREVERSIBLE_PREFIX} revert column modification manually for: {s}",
            ),
            (
                re.compile(r"\bDROP\s+COLUMN\b", re.I),
                lambda m, s: f"{IRREVERSIBLE_PREFIX} re-add dropped column manually for: {s}",
            ),
            (
                re.compile(r"\bDROP\s+FOREIGN\s+KEY\b", re.I),
                lambda m, s: f"{IRREVERSIBLE_PREFIX} re-create dropped foreign key manually for: {s}",
            ),
        ]

    def reverse(self, statement: str) -> str | None:
        if statement.lstrip().startswith("--"):
            return None
        single_line = " ".join(statement.split())
        for pattern, build in self._rules:
            match = pattern.search(single_line)
            if match:
                return build(match, single_line)
        return None


def derive_down_statements(
    up_statements: Sequence[str], strategy: ReversalStrategy | None = None
) -> list[str]:
    """Reverse each up statement, last first."""
    strategy = strategy or RegexReversalStrategy()
    down: list[str] = []
    for statement in reversed(up_statements):
        reversed_statement = strategy.reverse(statement)
        if reversed_statement:
            down.append(reversed_statement)
    return down
