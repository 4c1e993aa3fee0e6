"""Fluent query builder bound to one entity class.

A builder accumulates clauses until a terminal operation (``get``,
``first``, ``count`` and the other aggregates, ``paginate``, ``exists``,
``pluck``) runs it. Terminal operations consume the builder; call
``reset()`` or start a fresh ``Entity.query()`` to run another query.

Example:
    users = (
        User.query()
        .where("active", 1)
        .where_in("roleId", [1, 2])
        .order_by("id", "DESC")
        .limit(10)
        .with_("role")
        .get()
    )
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from quarrydb.core.connection import fetch_rows
from quarrydb.core.types import Page
from quarrydb.exceptions import QueryError, QueryStateError, RecordNotFoundError
from quarrydb.orm.compiler import (
    NULL_OPERATORS,
    OPERATORS,
    Join,
    Predicate,
    QueryState,
    compile_delete,
    compile_select,
    compile_update,
    interpolate,
)
from quarrydb.schema.registry import describe

if TYPE_CHECKING:
    from quarrydb.core.connection import SQLExecutor
    from quarrydb.orm.model import Model

logger = logging.getLogger(__name__)

M = TypeVar("M", bound="Model")

_UNSET: Any = object()


def _normalize_direction(direction: str) -> str:
    normalized = direction.upper()
    if normalized not in ("ASC", "DESC"):
        raise QueryError(f"Invalid order direction '{direction}'. Use 'ASC' or 'DESC'.")
    return normalized


class QueryBuilder(Generic[M]):
    """Accumulates clauses for one entity and executes them through an SQL executor."""

    def __init__(self, entity: type[M], executor: SQLExecutor | None = None) -> None:
        self._entity = entity
        self._descriptor = describe(entity)
        self._executor = executor
        self._state = QueryState()
        self._consumed = False
        self._trashed: str = "exclude"

    @property
    def entity(self) -> type[M]:
        return self._entity

    @property
    def table(self) -> str:
        return self._descriptor.table

    @property
    def state(self) -> QueryState:
        return self._state

    @property
    def executor(self) -> SQLExecutor:
        if self._executor is None:
            self._executor = self._entity.get_connection()
        return self._executor

    # === Selection ===

    def select(self, *columns: str) -> QueryBuilder[M]:
        """Select specific columns (default ``<table>.*``)."""
        for column in columns:
            self._state.columns.extend(c.strip() for c in column.split(",") if c.strip())
        return self

    def select_raw(self, expression: str, bindings: Sequence[Any] = ()) -> QueryBuilder[M]:
        """Add a literal select expression with its own bindings."""
        self._state.columns.append(expression)
        self._state.select_bindings.extend(bindings)
        return self

    def distinct(self) -> QueryBuilder[M]:
        self._state.distinct = True
        return self

    # === Predicates ===

    def where(
        self,
        column: str | Callable[[QueryBuilder[M]], Any],
        operator: Any = _UNSET,
        value: Any = _UNSET,
        boolean: str = "AND",
    ) -> QueryBuilder[M]:
        """Add a basic predicate.

        ``where("active", 1)`` means ``active = ?``; ``where("deleted_at",
        "IS NULL")`` takes no value; a callable builds a parenthesized group.
        """
        if callable(column):
            return self._where_nested(column, boolean)

        if value is _UNSET:
            if isinstance(operator, str) and operator.upper() in NULL_OPERATORS:
                operator, value = operator.upper(), None
            else:
                operator, value = "=", operator
        if operator is _UNSET:
            raise QueryError(f"where('{column}') needs a value or an operator")

        operator = str(operator).upper()
        if operator not in OPERATORS:
            raise QueryError(
                f"Invalid operator '{operator}'. Valid operators: {', '.join(OPERATORS)}",
                {"operator": operator, "valid_operators": list(OPERATORS)},
            )

        if value is None and operator in ("=", "<=>"):
            operator = "IS NULL"
        elif value is None and operator in ("!=", "<>"):
            operator = "IS NOT NULL"

        self._state.wheres.append(
            Predicate("basic", boolean=boolean, column=column, operator=operator, value=value)
        )
        return self

    def or_where(
        self,
        column: str | Callable[[QueryBuilder[M]], Any],
        operator: Any = _UNSET,
        value: Any = _UNSET,
    ) -> QueryBuilder[M]:
        return self.where(column, operator, value, boolean="OR")

    def _where_nested(self, callback: Callable[[QueryBuilder[M]], Any], boolean: str) -> QueryBuilder[M]:
        group: QueryBuilder[M] = QueryBuilder(self._entity, self._executor)
        callback(group)
        self._state.wheres.append(Predicate("nested", boolean=boolean, nested=group.state))
        return self

    def where_raw(self, sql: str, bindings: Sequence[Any] = (), boolean: str = "AND") -> QueryBuilder[M]:
        """Add literal SQL with its own positional bindings."""
        self._state.wheres.append(Predicate("raw", boolean=boolean, sql=sql, values=list(bindings)))
        return self

    def or_where_raw(self, sql: str, bindings: Sequence[Any] = ()) -> QueryBuilder[M]:
        return self.where_raw(sql, bindings, boolean="OR")

    def where_in(self, column: str, values: Iterable[Any], boolean: str = "AND") -> QueryBuilder[M]:
        """``column IN (...)``; an empty collection matches nothing."""
        self._state.wheres.append(Predicate("in", boolean=boolean, column=column, values=list(values)))
        return self

    def or_where_in(self, column: str, values: Iterable[Any]) -> QueryBuilder[M]:
        return self.where_in(column, values, boolean="OR")

    def where_not_in(self, column: str, values: Iterable[Any], boolean: str = "AND") -> QueryBuilder[M]:
        """``column NOT IN (...)``; an empty collection excludes nothing."""
        self._state.wheres.append(
            Predicate("not_in", boolean=boolean, column=column, values=list(values))
        )
        return self

    def where_null(self, column: str) -> QueryBuilder[M]:
        return self.where(column, "IS NULL")

    def where_not_null(self, column: str) -> QueryBuilder[M]:
        return self.where(column, "IS NOT NULL")

    def where_like(self, column: str, pattern: str) -> QueryBuilder[M]:
        return self.where(column, "LIKE", pattern)

    def where_any(self, columns: Sequence[str], operator: str, value: Any) -> QueryBuilder[M]:
        """Match when any of the columns satisfies the comparison."""

        def group(query: QueryBuilder[M]) -> None:
            for column in columns:
                query.or_where(column, operator, value)

        return self.where(group)

    def where_all(self, columns: Sequence[str], operator: str, value: Any) -> QueryBuilder[M]:
        """Match when every column satisfies the comparison."""

        def group(query: QueryBuilder[M]) -> None:
            for column in columns:
                query.where(column, operator, value)

        return self.where(group)

    # === Joins, grouping, ordering ===

    def join(
        self, table: str, first: str, operator: str, second: str, type: str = "INNER"
    ) -> QueryBuilder[M]:
        self._state.joins.append(Join(type.upper(), table, first, operator, second))
        return self

    def left_join(self, table: str, first: str, operator: str, second: str) -> QueryBuilder[M]:
        return self.join(table, first, operator, second, type="LEFT")

    def right_join(self, table: str, first: str, operator: str, second: str) -> QueryBuilder[M]:
        return self.join(table, first, operator, second, type="RIGHT")

    def group_by(self, *columns: str) -> QueryBuilder[M]:
        self._state.groups.extend(columns)
        return self

    def having(self, column: str, operator: str, value: Any) -> QueryBuilder[M]:
        operator = operator.upper()
        if operator not in OPERATORS:
            raise QueryError(f"Invalid operator '{operator}' in HAVING clause")
        self._state.havings.append(
            Predicate("basic", column=column, operator=operator, value=value)
        )
        return self

    def order_by(self, column: str, direction: str = "ASC") -> QueryBuilder[M]:
        self._state.orders.append((column, _normalize_direction(direction)))
        return self

    def latest(self, column: str | None = None) -> QueryBuilder[M]:
        """Order newest first by the creation timestamp column."""
        return self.order_by(self._timestamp_column(column, "latest"), "DESC")

    def oldest(self, column: str | None = None) -> QueryBuilder[M]:
        """Order oldest first by the creation timestamp column."""
        return self.order_by(self._timestamp_column(column, "oldest"), "ASC")

    def _timestamp_column(self, column: str | None, operation: str) -> str:
        if column:
            return column
        created = self._descriptor.created_at_column
        if created is None:
            raise QueryError(
                f"{operation}() needs a column: '{self._descriptor.name}' declares no "
                f"creation timestamp (Column(current_timestamp=True))"
            )
        return created.db_name

    def limit(self, value: int) -> QueryBuilder[M]:
        self._state.limit = max(0, int(value))
        return self

    def offset(self, value: int) -> QueryBuilder[M]:
        self._state.offset = max(0, int(value))
        return self

    def with_(self, *relations: str | Iterable[str]) -> QueryBuilder[M]:
        """Eager-load relations, including dot paths such as ``"roles.permissions"``."""
        for relation in relations:
            names = [relation] if isinstance(relation, str) else list(relation)
            for name in names:
                if name not in self._state.eager:
                    self._state.eager.append(name)
        return self

    # === Soft delete scope ===

    def with_trashed(self) -> QueryBuilder[M]:
        """Include soft-deleted rows."""
        self._trashed = "include"
        return self

    def only_trashed(self) -> QueryBuilder[M]:
        """Return only soft-deleted rows."""
        self._trashed = "only"
        return self

    def _scoped_state(self, state: QueryState | None = None) -> QueryState:
        state = (state or self._state).copy()
        column = self._descriptor.soft_delete_column
        if column is None or self._trashed == "include":
            return state

        operator = "IS NOT NULL" if self._trashed == "only" else "IS NULL"
        scope = Predicate("basic", column=f"{self.table}.{column}", operator=operator)
        if any(p.boolean == "OR" for p in state.wheres):
            group = QueryState(wheres=state.wheres)
            state.wheres = [Predicate("nested", nested=group)]
        state.wheres.append(scope)
        return state

    # === Compilation ===

    def compile(self) -> tuple[str, list[Any]]:
        """Compile to SQL text and positional bindings."""
        return compile_select(self.table, self._scoped_state())

    def to_sql(self) -> str:
        return self.compile()[0]

    def get_bindings(self) -> list[Any]:
        return self.compile()[1]

    def to_raw_sql(self) -> str:
        """SQL with bindings substituted, for logging and debugging only."""
        sql, bindings = self.compile()
        return interpolate(sql, bindings)

    # === Lifecycle ===

    def clone(self) -> QueryBuilder[M]:
        """An unconsumed copy with the same clauses."""
        copy: QueryBuilder[M] = QueryBuilder(self._entity, self._executor)
        copy._state = self._state.copy()
        copy._trashed = self._trashed
        return copy

    def reset(self) -> QueryBuilder[M]:
        """Clear all clauses and make the builder usable again."""
        self._state = QueryState()
        self._consumed = False
        self._trashed = "exclude"
        return self

    def _consume(self, operation: str) -> None:
        if self._consumed:
            raise QueryStateError(self._descriptor.name, operation)
        self._consumed = True

    def _clear(self) -> None:
        """Drop the accumulated clauses once a terminal has taken its snapshot."""
        self._state = QueryState()
        self._trashed = "exclude"

    def _run(self, sql: str, bindings: list[Any]) -> list[dict[str, Any]]:
        return fetch_rows(self.executor, sql, bindings)

    def _hydrate(self, state: QueryState) -> list[M]:
        sql, bindings = compile_select(self.table, state)
        rows = self._run(sql, bindings)
        models = [self._entity.from_row(row) for row in rows]

        if models and state.eager:
            from quarrydb.orm.loader import load_relations

            load_relations(models, state.eager, self.executor)
        return models

    # === Terminal operations ===

    def get(self) -> list[M]:
        """Execute and hydrate every row, then eager-load requested relations."""
        self._consume("get")
        state = self._scoped_state()
        self._clear()
        return self._hydrate(state)

    def first(self) -> M | None:
        """The first matching entity, or None."""
        self._consume("first")
        state = self._scoped_state()
        state.limit = 1
        self._clear()
        models = self._hydrate(state)
        return models[0] if models else None

    def find(self, id: Any) -> M | None:
        """Find by primary key, or None."""
        return self.where(f"{self.table}.{self._primary_key()}", id).first()

    def find_or_fail(self, id: Any) -> M:
        """Find by primary key.

        Raises:
            RecordNotFoundError: If no row matches
        """
        model = self.find(id)
        if model is None:
            raise RecordNotFoundError(id, self._descriptor.name)
        return model

    def first_or_fail(self) -> M:
        model = self.first()
        if model is None:
            raise RecordNotFoundError("first", self._descriptor.name)
        return model

    def _primary_key(self) -> str:
        if self._descriptor.primary_key is None:
            raise QueryError(
                f"'{self._descriptor.name}' has no primary key; identifier lookups need an Id() column"
            )
        return self._descriptor.primary_key

    def _aggregate_state(self, expression: str) -> QueryState:
        state = self._scoped_state()
        state.columns = [f"{expression} as aggregate"]
        state.select_bindings = []
        state.orders = []
        state.limit = None
        state.offset = None
        state.eager = []
        return state

    def _aggregate(self, function: str, column: str) -> Any:
        self._consume(function.lower())
        sql, bindings = compile_select(self.table, self._aggregate_state(f"{function}({column})"))
        rows = self._run(sql, bindings)
        return rows[0]["aggregate"] if rows else None

    def count(self, column: str = "*") -> int:
        return int(self._aggregate("COUNT", column) or 0)

    def sum(self, column: str) -> Any:
        return self._aggregate("SUM", column) or 0

    def avg(self, column: str) -> Any:
        return self._aggregate("AVG", column)

    def min(self, column: str) -> Any:
        return self._aggregate("MIN", column)

    def max(self, column: str) -> Any:
        return self._aggregate("MAX", column)

    def exists(self) -> bool:
        self._consume("exists")
        state = self._scoped_state()
        state.columns = ["1"]
        state.select_bindings = []
        state.eager = []
        state.limit = 1
        sql, bindings = compile_select(self.table, state)
        return bool(self._run(sql, bindings))

    def pluck(self, column: str) -> list[Any]:
        """Values of one column across matching rows."""
        self._consume("pluck")
        state = self._scoped_state()
        state.columns = [column]
        state.select_bindings = []
        state.eager = []
        sql, bindings = compile_select(self.table, state)
        key = column.split(".")[-1]
        return [row[key] for row in self._run(sql, bindings)]

    def paginate(self, per_page: int = 15, page: int = 1) -> Page[M]:
        """Run a count and a limited item query from two copies of the same predicates."""
        self._consume("paginate")
        per_page = max(1, int(per_page))
        page = max(1, int(page))

        sql, bindings = compile_select(self.table, self._aggregate_state("COUNT(*)"))
        rows = self._run(sql, bindings)
        total = int(rows[0]["aggregate"]) if rows else 0

        items_state = self._scoped_state()
        items_state.limit = per_page
        items_state.offset = (page - 1) * per_page
        items = self._hydrate(items_state)

        return Page(items=items, total=total, per_page=per_page, page=page)

    # === Bulk writes ===

    def update(self, values: dict[str, Any]) -> int:
        """Update every matching row; returns the affected row count."""
        self._consume("update")
        state = self._scoped_state()
        state.action = "update"
        sql, bindings = compile_update(self.table, values, state)
        result = self.executor.execute(sql, bindings)
        return result if isinstance(result, int) else 0

    def delete(self) -> int:
        """Delete every matching row (soft delete when the entity supports it)."""
        column = self._descriptor.soft_delete_column
        if column is not None:
            return self.update({column: datetime.now(UTC).replace(tzinfo=None)})
        return self.force_delete()

    def force_delete(self) -> int:
        """Permanently delete every matching row."""
        self._consume("delete")
        state = self._scoped_state()
        state.action = "delete"
        sql, bindings = compile_delete(self.table, state)
        logger.debug(f"Deleting from {self.table}: {sql}")
        result = self.executor.execute(sql, bindings)
        return result if isinstance(result, int) else 0

    def __repr__(self) -> str:
        return f"<QueryBuilder {self._descriptor.name}: {self.to_sql()}>"
