"""Schema synchronizer: diff entity metadata against the live database.

Produces an ordered list of DDL statements that brings the live schema in
line with the declared entities:

1. foreign key drops needed before a key column can be modified
2. table statements (CREATE TABLE, ADD/RENAME/MODIFY COLUMN, pivot tables)
3. constraint statements (unique indexes and foreign keys)

Live columns with no declaration are never dropped; a commented-out
DROP COLUMN and a warning are emitted instead.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from quarrydb.core.config import QuarrySettings
from quarrydb.core.types import KeyAction, LiveColumn
from quarrydb.schema import ddl
from quarrydb.schema.registry import (
    BelongsToDescriptor,
    BelongsToManyDescriptor,
    EntityDescriptor,
    describe,
)

if TYPE_CHECKING:
    from quarrydb.core.connection import SQLExecutor
    from quarrydb.orm.model import Model

logger = logging.getLogger(__name__)


class SchemaSynchronizer:
    """Generates (and optionally applies) DDL for a set of entity classes."""

    def __init__(self, executor: SQLExecutor, settings: QuarrySettings | None = None) -> None:
        self._executor = executor
        self._settings = settings or QuarrySettings()
        self._exists_cache: dict[str, bool] = {}
        self._columns_cache: dict[str, list[LiveColumn]] = {}

    def _table_exists(self, table: str) -> bool:
        if table not in self._exists_cache:
            self._exists_cache[table] = self._executor.table_exists(table)
        return self._exists_cache[table]

    def _live_columns(self, table: str) -> list[LiveColumn]:
        if table not in self._columns_cache:
            self._columns_cache[table] = self._executor.introspect_schema(table)
        return self._columns_cache[table]

    def generate(self, entities: Iterable[type[Model]]) -> list[str]:
        """Compute the DDL needed to synchronize the given entities.

        Entities without an explicit ``__tablename__`` are skipped.

        Returns:
            Ordered statements; empty when the live schema already matches
        """
        self._exists_cache.clear()
        self._columns_cache.clear()

        drops: dict[str, str] = {}
        tables: dict[str, list[str]] = {}
        constraints: dict[str, str] = {}
        pivots: set[str] = set()

        for entity in entities:
            descriptor = describe(entity)
            if not descriptor.designated:
                logger.debug(f"Skipping {descriptor.name}: no __tablename__ designation")
                continue
            if not descriptor.columns:
                logger.debug(f"Skipping {descriptor.name}: no columns declared")
                continue

            exists = self._table_exists(descriptor.table)
            if exists:
                statements = self._alter_table(descriptor)
                if statements:
                    tables.setdefault(descriptor.table, []).extend(statements)
                self._unique_indexes(descriptor, constraints)
            else:
                tables[descriptor.table] = [self._create_table(descriptor)]

            self._foreign_keys(descriptor, exists, constraints)
            self._pivot_tables(descriptor, pivots, drops, tables, constraints)

        statements = [
            *drops.values(),
            *(statement for group in tables.values() for statement in group),
            *constraints.values(),
        ]
        logger.info(f"Schema diff produced {len(statements)} statements")
        return statements

    def synchronize(self, entities: Iterable[type[Model]]) -> list[str]:
        """Generate and apply the DDL with foreign key checks suspended.

        Checks are restored even if a statement fails; the failure is re-raised.

        Returns:
            The generated statements, including skipped comment lines
        """
        statements = self.generate(entities)
        executable = [s for s in statements if not s.lstrip().startswith("--")]
        if not executable:
            return statements

        with self._executor.constraints_disabled():
            for statement in executable:
                logger.info(f"Applying: {statement.splitlines()[0]}")
                self._executor.execute(statement)
        return statements

    # === Entity tables ===

    def _create_table(self, descriptor: EntityDescriptor) -> str:
        clauses = [ddl.column_definition(column) for column in descriptor.columns]
        for column in descriptor.columns:
            if column.unique and column.unique_index_name:
                clauses.append(f"UNIQUE KEY `{column.unique_index_name}` (`{column.db_name}`)")
        if descriptor.primary_key is not None:
            clauses.append(f"PRIMARY KEY (`{descriptor.primary_key}`)")

        logger.info(f"Table {descriptor.table} is missing; generating CREATE TABLE")
        return ddl.create_table(descriptor.table, clauses, self._settings.table_options)

    def _alter_table(self, descriptor: EntityDescriptor) -> list[str]:
        table = descriptor.table
        live_by_name = {column.name.lower(): column for column in self._live_columns(table)}
        claimed: set[str] = set()
        statements: list[str] = []

        for column in descriptor.columns:
            live = live_by_name.get(column.db_name.lower())
            if live is None and column.renamed_from:
                live = live_by_name.get(column.renamed_from.lower())

            definition = ddl.column_definition(column)
            if live is None:
                statements.append(ddl.add_column(table, definition))
                claimed.add(column.db_name.lower())
                continue

            claimed.add(live.name.lower())
            if live.name.lower() != column.db_name.lower():
                statements.append(ddl.rename_column(table, live.name, column.db_name))
            if ddl.needs_modification(live, column):
                statements.append(ddl.modify_column(table, definition))

        protected = {"id", (descriptor.primary_key or "id").lower()}
        for name, live in live_by_name.items():
            if name in claimed or name in protected:
                continue
            logger.warning(
                f"Column {table}.{live.name} is not declared on {descriptor.name}; "
                f"DROP COLUMN left commented out"
            )
            statements.extend(ddl.commented_drop_column(table, live.name))

        return statements

    def _unique_indexes(self, descriptor: EntityDescriptor, constraints: dict[str, str]) -> None:
        existing = set(self._executor.list_indexes(descriptor.table))
        for column in descriptor.columns:
            name = column.unique_index_name
            if not column.unique or name is None or name in existing:
                continue
            constraints[name] = ddl.add_unique_index(descriptor.table, name, column.db_name)

    def _foreign_keys(
        self, descriptor: EntityDescriptor, exists: bool, constraints: dict[str, str]
    ) -> None:
        existing = set(self._executor.list_constraints(descriptor.table)) if exists else set()
        for relation in descriptor.relations.values():
            if not isinstance(relation, BelongsToDescriptor):
                continue
            related = describe(relation.related)
            if not related.designated:
                continue

            name = ddl.foreign_key_name(descriptor.table, relation.foreign_key)
            if name in existing or name in constraints:
                continue
            constraints[name] = ddl.add_foreign_key(
                descriptor.table,
                name,
                relation.foreign_key,
                related.table,
                relation.owner_key,
                relation.on_delete,
                relation.on_update,
            )

    # === Pivot tables ===

    @staticmethod
    def _key_type(descriptor: EntityDescriptor) -> str:
        column = descriptor.primary_key_column
        return column.sql_type if column is not None else "INT"

    def _pivot_tables(
        self,
        descriptor: EntityDescriptor,
        seen: set[str],
        drops: dict[str, str],
        tables: dict[str, list[str]],
        constraints: dict[str, str],
    ) -> None:
        for relation in descriptor.relations.values():
            if not isinstance(relation, BelongsToManyDescriptor):
                continue
            # Explicit pivot entities are synchronized like any other entity
            if relation.pivot_entity is not None:
                continue
            related = describe(relation.related)
            pivot = relation.pivot_table
            if pivot in seen:
                continue
            seen.add(pivot)

            keys = [
                (relation.foreign_pivot_key, self._key_type(descriptor), descriptor.table, relation.parent_key),
                (relation.related_pivot_key, self._key_type(related), related.table, relation.related_key),
            ]

            pivot_exists = self._table_exists(pivot)
            existing = set(self._executor.list_constraints(pivot)) if pivot_exists else set()
            dropped: set[str] = set()

            if not pivot_exists:
                clauses = [f"`{column}` {sql_type} NOT NULL" for column, sql_type, _, _ in keys]
                clauses.append(f"PRIMARY KEY (`{keys[0][0]}`, `{keys[1][0]}`)")
                tables[pivot] = [ddl.create_table(pivot, clauses, self._settings.table_options)]
                logger.info(f"Pivot table {pivot} is missing; generating CREATE TABLE")
            else:
                live_by_name = {c.name.lower(): c for c in self._live_columns(pivot)}
                for column, sql_type, _, _ in keys:
                    definition = f"`{column}` {sql_type} NOT NULL"
                    live = live_by_name.get(column.lower())
                    if live is None:
                        tables.setdefault(pivot, []).append(ddl.add_column(pivot, definition))
                    elif ddl.type_differs(live.type, sql_type) or live.nullable:
                        name = ddl.foreign_key_name(pivot, column)
                        if name in existing:
                            drops[f"{pivot}:{name}"] = ddl.drop_foreign_key(pivot, name)
                            dropped.add(name)
                        tables.setdefault(pivot, []).append(ddl.modify_column(pivot, definition))

            if not related.designated:
                continue
            for column, _, referenced_table, referenced_column in keys:
                name = ddl.foreign_key_name(pivot, column)
                if name in existing and name not in dropped:
                    continue
                constraints[name] = ddl.add_foreign_key(
                    pivot,
                    name,
                    column,
                    referenced_table,
                    referenced_column,
                    KeyAction.CASCADE,
                    KeyAction.CASCADE,
                )
