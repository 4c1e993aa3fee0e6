"""DDL text generation for the MySQL family.

Maps column descriptors to SQL column definitions and renders the
individual ALTER/CREATE statements the synchronizer emits.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable
from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from quarrydb.core.types import FieldType, KeyAction, LiveColumn

if TYPE_CHECKING:
    from quarrydb.schema.registry import ColumnDescriptor


# Mapping from logical field types to MySQL column types
SQL_TYPE_MAP: dict[FieldType, Callable[[int], str]] = {
    FieldType.INT: lambda length: "INT",
    FieldType.INT_UNSIGNED: lambda length: "INT UNSIGNED",
    FieldType.TINY_INTEGER: lambda length: "TINYINT",
    FieldType.TINY_INTEGER_UNSIGNED: lambda length: "TINYINT UNSIGNED",
    FieldType.SMALL_INTEGER: lambda length: "SMALLINT",
    FieldType.SMALL_INTEGER_UNSIGNED: lambda length: "SMALLINT UNSIGNED",
    FieldType.MEDIUM_INTEGER: lambda length: "MEDIUMINT",
    FieldType.MEDIUM_INTEGER_UNSIGNED: lambda length: "MEDIUMINT UNSIGNED",
    FieldType.BIG_INTEGER: lambda length: "BIGINT",
    FieldType.BIG_INTEGER_UNSIGNED: lambda length: "BIGINT UNSIGNED",
    FieldType.DECIMAL: lambda length: "DECIMAL(10,2)",
    FieldType.FLOAT: lambda length: "FLOAT",
    FieldType.DOUBLE: lambda length: "DOUBLE",
    FieldType.BOOLEAN: lambda length: "TINYINT(1)",
    FieldType.STRING: lambda length: f"VARCHAR({length})",
    FieldType.CHAR: lambda length: f"CHAR({length})",
    FieldType.UUID: lambda length: "CHAR(36)",
    FieldType.ULID: lambda length: "CHAR(26)",
    FieldType.TEXT: lambda length: "TEXT",
    FieldType.MEDIUM_TEXT: lambda length: "MEDIUMTEXT",
    FieldType.LONG_TEXT: lambda length: "LONGTEXT",
    FieldType.DATE: lambda length: "DATE",
    FieldType.DATETIME: lambda length: "DATETIME",
    FieldType.TIME: lambda length: "TIME",
    FieldType.TIMESTAMP: lambda length: "TIMESTAMP",
    FieldType.YEAR: lambda length: "YEAR",
    FieldType.BINARY: lambda length: "BLOB",
    FieldType.JSON: lambda length: "JSON",
    FieldType.ENUM: lambda length: f"VARCHAR({length})",
}

# Mapping from Python annotations to logical field types
PYTHON_TYPE_MAP: dict[type, FieldType] = {
    bool: FieldType.BOOLEAN,
    int: FieldType.INT,
    float: FieldType.FLOAT,
    Decimal: FieldType.DECIMAL,
    str: FieldType.STRING,
    datetime: FieldType.DATETIME,
    date: FieldType.DATE,
    time: FieldType.TIME,
    dict: FieldType.JSON,
    list: FieldType.JSON,
    uuid.UUID: FieldType.UUID,
    bytes: FieldType.BINARY,
}

_INTEGER_TYPES = ("tinyint", "smallint", "mediumint", "bigint", "int")
_DISPLAY_WIDTH = re.compile(r"\(\d+\)")


def quote_literal(value: str) -> str:
    """Single-quote a SQL string literal, doubling embedded quotes."""
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def map_sql_type(field_type: FieldType | None, length: int = 255, enums: list[str] | None = None) -> str:
    """Resolve the SQL column type for a field.

    Enum value lists win over the field type; a missing type falls back to VARCHAR.
    """
    if enums:
        options = ", ".join(quote_literal(str(value)) for value in enums)
        return f"ENUM({options})"
    if field_type is None:
        return f"VARCHAR({length})"
    return SQL_TYPE_MAP[field_type](length)


def format_default(value: Any) -> str:
    """Render a Python value as a SQL DEFAULT literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, datetime):
        return quote_literal(value.isoformat(sep=" "))
    if isinstance(value, (date, time)):
        return quote_literal(value.isoformat())
    if isinstance(value, str):
        return quote_literal(value)
    return str(value)


def column_definition(column: ColumnDescriptor) -> str:
    """Build the column clause used by CREATE TABLE, ADD COLUMN and MODIFY COLUMN.

    Example:
        `email` VARCHAR(255) NOT NULL DEFAULT 'x'
    """
    definition = f"`{column.db_name}` {column.sql_type}"

    if column.auto_increment:
        definition += " AUTO_INCREMENT"

    definition += " NULL" if column.nullable else " NOT NULL"

    if column.has_default and not column.is_primary_key:
        definition += f" DEFAULT {format_default(column.default)}"
    elif column.current_timestamp:
        definition += " DEFAULT CURRENT_TIMESTAMP"

    if column.on_update_current_timestamp:
        definition += " ON UPDATE CURRENT_TIMESTAMP"

    return definition


def _normalize_type(sql_type: str) -> str:
    normalized = " ".join(sql_type.lower().split())
    if normalized.startswith(_INTEGER_TYPES):
        normalized = _DISPLAY_WIDTH.sub("", normalized)
    return normalized


def type_differs(live_type: str, sql_type: str) -> bool:
    """Compare a live column type with a declared one.

    Integer display widths are ignored since MySQL 8 no longer reports
    them; every other parenthesized length is significant.
    """
    if sql_type.lower().startswith("enum"):
        return live_type.replace(" ", "").lower() != sql_type.replace(" ", "").lower()

    current = _normalize_type(live_type)
    declared = _normalize_type(sql_type)
    if current == declared:
        return False

    current_unsigned = "unsigned" in current
    declared_unsigned = "unsigned" in declared
    if current_unsigned != declared_unsigned:
        return True
    return current.replace(" unsigned", "") != declared.replace(" unsigned", "")


def needs_modification(live: LiveColumn, column: ColumnDescriptor) -> bool:
    """Decide whether a live column must be altered to match its descriptor.

    Compares type (including signedness), nullability and the
    ON UPDATE CURRENT_TIMESTAMP flag.
    """
    if type_differs(live.type, column.sql_type):
        return True

    if live.nullable != column.nullable:
        return True

    if column.on_update_current_timestamp:
        if "on update current_timestamp" not in live.extra.lower():
            return True

    return False


def create_table(table: str, clauses: list[str], options: str) -> str:
    body = ",\n    ".join(clauses)
    return f"CREATE TABLE IF NOT EXISTS `{table}` (\n    {body}\n) {options};"


def add_column(table: str, definition: str) -> str:
    return f"ALTER TABLE `{table}` ADD COLUMN {definition};"


def modify_column(table: str, definition: str) -> str:
    return f"ALTER TABLE `{table}` MODIFY COLUMN {definition};"


def rename_column(table: str, old: str, new: str) -> str:
    return f"ALTER TABLE `{table}` RENAME COLUMN `{old}` TO `{new}`;"


def commented_drop_column(table: str, column: str) -> list[str]:
    """A disabled DROP COLUMN, preceded by a warning line."""
    return [
        "-- SAFETY WARNING: Potentially destructive action commented out.",
        f"-- ALTER TABLE `{table}` DROP COLUMN `{column}`;",
    ]


def add_unique_index(table: str, index_name: str, column: str) -> str:
    return f"ALTER TABLE `{table}` ADD UNIQUE INDEX `{index_name}` (`{column}`);"


def add_foreign_key(
    table: str,
    constraint: str,
    column: str,
    referenced_table: str,
    referenced_column: str,
    on_delete: KeyAction = KeyAction.CASCADE,
    on_update: KeyAction = KeyAction.CASCADE,
) -> str:
    return (
        f"ALTER TABLE `{table}` ADD CONSTRAINT `{constraint}` FOREIGN KEY (`{column}`) "
        f"REFERENCES `{referenced_table}` (`{referenced_column}`) "
        f"ON DELETE {KeyAction(on_delete).value} ON UPDATE {KeyAction(on_update).value};"
    )


def drop_foreign_key(table: str, constraint: str) -> str:
    return f"ALTER TABLE `{table}` DROP FOREIGN KEY `{constraint}`;"


def foreign_key_name(table: str, column: str) -> str:
    """Constraint name used for every generated foreign key."""
    return f"fk_{table}_{column}"


def unique_index_name(table: str, column: str) -> str:
    """Default unique index name."""
    return f"{table}_{column}_unique"
