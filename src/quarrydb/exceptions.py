"""Custom exceptions for QuarryDB.

Every error carries an actionable message plus a context dict so callers
(and the CLI's JSON mode) can report what went wrong and what to try next.
"""

from __future__ import annotations

from typing import Any


class QuarryDBError(Exception):
    """Base exception for all QuarryDB errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Return error as JSON-serializable dict."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class ConnectionError(QuarryDBError):
    """Failed to connect to the database."""

    pass


# === Configuration Errors ===


class EntityConfigurationError(QuarryDBError):
    """An entity class declares metadata that cannot be mapped to a table."""

    def __init__(self, entity_name: str, reason: str) -> None:
        message = f"Entity '{entity_name}' is misconfigured: {reason}"
        super().__init__(message, {"entity_name": entity_name, "reason": reason})
        self.entity_name = entity_name
        self.reason = reason


class RelationshipConfigurationError(QuarryDBError):
    """A relation declaration references something that does not resolve."""

    def __init__(self, relationship_name: str, entity_name: str, reason: str) -> None:
        message = f"Relationship '{relationship_name}' on '{entity_name}' is misconfigured: {reason}"
        super().__init__(
            message,
            {
                "relationship_name": relationship_name,
                "entity_name": entity_name,
                "reason": reason,
            },
        )
        self.relationship_name = relationship_name
        self.entity_name = entity_name


class ColumnNotFoundError(QuarryDBError):
    """Column does not exist on entity."""

    def __init__(
        self, column_name: str, entity_name: str, available_columns: list[str] | None = None
    ) -> None:
        available = available_columns or []
        if available:
            message = (
                f"Column '{column_name}' not found on '{entity_name}'. "
                f"Available columns: {', '.join(available)}"
            )
        else:
            message = f"Column '{column_name}' not found on '{entity_name}'. No columns defined."

        super().__init__(
            message,
            {
                "column_name": column_name,
                "entity_name": entity_name,
                "available_columns": available,
            },
        )
        self.column_name = column_name
        self.entity_name = entity_name
        self.available_columns = available


class RelationshipNotFoundError(QuarryDBError):
    """Relationship does not exist on entity."""

    def __init__(
        self,
        relationship_name: str,
        entity_name: str,
        available_relationships: list[str] | None = None,
    ) -> None:
        available = available_relationships or []
        if available:
            message = (
                f"Relationship '{relationship_name}' not found on '{entity_name}'. "
                f"Available relationships: {', '.join(available)}"
            )
        else:
            message = (
                f"Relationship '{relationship_name}' not found on '{entity_name}'. "
                f"No relationships defined."
            )
        super().__init__(
            message,
            {
                "relationship_name": relationship_name,
                "entity_name": entity_name,
                "available_relationships": available,
            },
        )
        self.relationship_name = relationship_name
        self.entity_name = entity_name
        self.available_relationships = available


# === Not-found Errors ===


class RecordNotFoundError(QuarryDBError):
    """Record with given ID does not exist."""

    def __init__(self, record_id: Any, entity_name: str) -> None:
        message = f"Record '{record_id}' not found in '{entity_name}'."
        super().__init__(message, {"record_id": record_id, "entity_name": entity_name})
        self.record_id = record_id
        self.entity_name = entity_name


class MigrationTableNotFoundError(QuarryDBError):
    """The applied-migrations ledger table does not exist yet."""

    def __init__(self, table_name: str) -> None:
        message = (
            f"Migration ledger table '{table_name}' does not exist. "
            f"Run 'quarrydb migrate up' to create it."
        )
        super().__init__(message, {"table_name": table_name})
        self.table_name = table_name


# === Execution Errors ===


class QueryError(QuarryDBError):
    """Query execution failed."""

    pass


class IntegrityViolationError(QueryError):
    """A statement violated a unique, primary key or foreign key constraint."""

    pass


class QueryStateError(QuarryDBError):
    """A query builder was used after it had already been consumed."""

    def __init__(self, entity_name: str, operation: str) -> None:
        message = (
            f"Query builder for '{entity_name}' was already consumed before '{operation}'. "
            f"Call reset() or start a new query with {entity_name}.query()."
        )
        super().__init__(message, {"entity_name": entity_name, "operation": operation})
        self.entity_name = entity_name
        self.operation = operation


class MigrationError(QuarryDBError):
    """Applying or reverting a migration failed."""

    def __init__(self, migration_name: str, reason: str) -> None:
        message = f"Migration '{migration_name}' failed: {reason}"
        super().__init__(message, {"migration_name": migration_name, "reason": reason})
        self.migration_name = migration_name
        self.reason = reason


class SeederError(QuarryDBError):
    """A seeder could not be resolved."""

    def __init__(self, seeder: str, reason: str) -> None:
        message = f"Seeder '{seeder}' cannot run: {reason}"
        super().__init__(message, {"seeder": seeder, "reason": reason})
        self.seeder = seeder
        self.reason = reason
