"""Writes migration artifacts to disk.

An artifact is a Python module named ``YYYY_MM_DD_HHMMSS_<name>.py`` that
defines a ``Migration`` subclass holding its up and down statements.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from quarrydb.migrations.reversal import ReversalStrategy, derive_down_statements

logger = logging.getLogger(__name__)

TABLE_PATTERN = re.compile(
    r"(?:CREATE|ALTER|DROP)\s+TABLE\s+(?:IF\s+(?:NOT\s+)?EXISTS\s+)?`?([^`\s]+)`?", re.I
)

ARTIFACT_TEMPLATE = '''"""Migration: {name}

Generated {generated_at}.
"""

from quarrydb.migrations.runner import Migration


class {class_name}(Migration):
    up_statements = [
{up}
    ]

    down_statements = [
{down}
    ]
'''


def sanitize_name(name: str) -> str:
    """Lowercase snake identifier usable in a file name."""
    cleaned = re.sub(r"[^0-9a-zA-Z]+", "_", name).strip("_").lower()
    return cleaned or "migration"


def class_name_for(name: str) -> str:
    camel = "".join(part.capitalize() for part in sanitize_name(name).split("_"))
    if not camel or camel[0].isdigit():
        camel = f"Migration{camel}"
    return camel


def is_executable(statement: str) -> bool:
    """False for blank lines and `--` comments, which the runner skips."""
    return bool(statement.strip()) and not statement.lstrip().startswith("--")


def table_of(statement: str) -> str | None:
    match = TABLE_PATTERN.search(statement)
    return match.group(1) if match else None


def format_statements(statements: Sequence[str], indent: str = " " * 8) -> str:
    """Render statements as list items, with a blank line between table groups."""
    lines: list[str] = []
    previous: str | None = None
    for index, statement in enumerate(statements):
        table = table_of(statement)
        if index and table != previous:
            lines.append("")
        previous = table
        lines.append(f"{indent}{statement!r},")
    return "\n".join(lines)


class MigrationWriter:
    """Persists a batch of statements (and their reversal) as an artifact."""

    def __init__(self, path: str | Path, strategy: ReversalStrategy | None = None) -> None:
        self.path = Path(path)
        self.strategy = strategy

    def write(
        self,
        name: str,
        up_statements: Sequence[str],
        down_statements: Sequence[str] | None = None,
        now: datetime | None = None,
    ) -> Path | None:
        """Write the artifact for ``up_statements``.

        Args:
            name: Human readable migration name
            up_statements: Forward DDL, in execution order
            down_statements: Explicit reversal; derived from the up statements if omitted
            now: Timestamp used for the file name (defaults to the current time)

        Returns:
            Path of the written file, or None when there was nothing to write
        """
        up = list(up_statements)
        down = (
            list(down_statements)
            if down_statements is not None
            else derive_down_statements(up, self.strategy)
        )
        if not any(is_executable(s) for s in [*up, *down]):
            logger.info(f"Nothing to write for migration '{name}'")
            return None

        now = now or datetime.now()
        slug = sanitize_name(name)
        filename = f"{now.strftime('%Y_%m_%d_%H%M%S')}_{slug}.py"

        self.path.mkdir(parents=True, exist_ok=True)
        target = self.path / filename
        target.write_text(
            ARTIFACT_TEMPLATE.format(
                name=name,
                generated_at=now.isoformat(timespec="seconds"),
                class_name=class_name_for(name),
                up=format_statements(up),
                down=format_statements(down),
            ),
            encoding="utf-8",
        )
        logger.info(f"Wrote migration {target} ({len(up)} up, {len(down)} down)")
        return target
