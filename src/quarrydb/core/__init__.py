"""Core components for QuarryDB."""

from quarrydb.core.config import QuarrySettings, get_database_url
from quarrydb.core.connection import DatabaseConnection, SQLExecutor
from quarrydb.core.types import FieldType, KeyAction, LiveColumn, MigrationStatus, Page, RelationKind

__all__ = [
    "DatabaseConnection",
    "SQLExecutor",
    "QuarrySettings",
    "get_database_url",
    "FieldType",
    "KeyAction",
    "RelationKind",
    "LiveColumn",
    "MigrationStatus",
    "Page",
]
