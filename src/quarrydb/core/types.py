"""Core types for QuarryDB.

Enums and info models are JSON-serializable so the CLI can emit them
directly in --json mode.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class FieldType(StrEnum):
    """Logical storage types a column declaration may name explicitly."""

    INT = "int"
    INT_UNSIGNED = "intUnsigned"
    TINY_INTEGER = "tinyInteger"
    TINY_INTEGER_UNSIGNED = "tinyIntegerUnsigned"
    SMALL_INTEGER = "smallInteger"
    SMALL_INTEGER_UNSIGNED = "smallIntegerUnsigned"
    MEDIUM_INTEGER = "mediumInteger"
    MEDIUM_INTEGER_UNSIGNED = "mediumIntegerUnsigned"
    BIG_INTEGER = "bigInteger"
    BIG_INTEGER_UNSIGNED = "bigIntegerUnsigned"
    STRING = "string"
    CHAR = "char"
    TEXT = "text"
    MEDIUM_TEXT = "mediumText"
    LONG_TEXT = "longText"
    BOOLEAN = "boolean"
    DECIMAL = "decimal"
    DOUBLE = "double"
    FLOAT = "float"
    DATE = "date"
    DATETIME = "dateTime"
    TIME = "time"
    TIMESTAMP = "timestamp"
    YEAR = "year"
    JSON = "json"
    ENUM = "enum"
    BINARY = "binary"
    UUID = "uuid"
    ULID = "ulid"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid field type values."""
        return [t.value for t in cls]


class KeyAction(StrEnum):
    """Referential actions for foreign key constraints."""

    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO ACTION"
    SET_DEFAULT = "SET DEFAULT"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid key action values."""
        return [a.value for a in cls]


class RelationKind(StrEnum):
    """The four relationship kinds an entity may declare."""

    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    BELONGS_TO_MANY = "belongs_to_many"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid relation kind values."""
        return [k.value for k in cls]


class LiveColumn(BaseModel):
    """A column as reported by the live database."""

    name: str
    type: str = Field(..., description="Declared type string, e.g. 'int unsigned'")
    nullable: bool = False
    default: Any = None
    extra: str = Field(default="", description="Extra flags, e.g. 'auto_increment'")


class MigrationStatus(BaseModel):
    """Applied or pending state of one migration artifact."""

    name: str
    applied: bool
    batch: int | None = None
    applied_at: datetime | None = None


@dataclass
class Page(Generic[T]):
    """One page of hydrated results plus the total row count."""

    items: list[T]
    total: int
    per_page: int
    page: int

    @property
    def last_page(self) -> int:
        """Number of the last page (at least 1)."""
        if self.per_page <= 0:
            return 1
        return max(1, -(-self.total // self.per_page))

    @property
    def has_more(self) -> bool:
        """Whether pages remain after this one."""
        return self.page < self.last_page

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() if hasattr(item, "to_dict") else item for item in self.items],
            "total": self.total,
            "per_page": self.per_page,
            "page": self.page,
            "last_page": self.last_page,
        }
