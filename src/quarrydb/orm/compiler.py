"""SQL compilation for query builder state.

Every compile walks the state in clause order and collects bindings as it
emits placeholders, so the n-th ``?`` always pairs with the n-th binding.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal

PredicateKind = Literal["basic", "raw", "in", "not_in", "nested"]

NULL_OPERATORS = ("IS NULL", "IS NOT NULL")
OPERATORS = (
    "=",
    "<",
    ">",
    "<=",
    ">=",
    "<>",
    "!=",
    "<=>",
    "LIKE",
    "NOT LIKE",
    "REGEXP",
    "NOT REGEXP",
    *NULL_OPERATORS,
)

# OFFSET without LIMIT is not valid in MySQL or SQLite
_MAX_LIMIT = 9223372036854775807

_RAW_TOKEN = re.compile(r"'(?:[^']|'')*'|\?")


@dataclass
class Predicate:
    """One WHERE or HAVING condition with its boolean connector."""

    kind: PredicateKind
    boolean: str = "AND"
    column: str | None = None
    operator: str | None = None
    value: Any = None
    values: list[Any] = field(default_factory=list)
    sql: str | None = None
    nested: QueryState | None = None


@dataclass
class Join:
    type: str
    table: str
    first: str
    operator: str
    second: str


@dataclass
class QueryState:
    """Accumulated clauses of one query chain."""

    action: Literal["select", "insert", "update", "delete"] = "select"
    distinct: bool = False
    columns: list[str] = field(default_factory=list)
    select_bindings: list[Any] = field(default_factory=list)
    joins: list[Join] = field(default_factory=list)
    wheres: list[Predicate] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)
    havings: list[Predicate] = field(default_factory=list)
    orders: list[tuple[str, str]] = field(default_factory=list)
    limit: int | None = None
    offset: int | None = None
    eager: list[str] = field(default_factory=list)

    def copy(self) -> QueryState:
        """Copy the clause lists so the copy can be changed independently."""
        return QueryState(
            action=self.action,
            distinct=self.distinct,
            columns=list(self.columns),
            select_bindings=list(self.select_bindings),
            joins=list(self.joins),
            wheres=list(self.wheres),
            groups=list(self.groups),
            havings=list(self.havings),
            orders=list(self.orders),
            limit=self.limit,
            offset=self.offset,
            eager=list(self.eager),
        )


def compile_predicates(predicates: list[Predicate]) -> tuple[str, list[Any]]:
    """Compile a predicate list into SQL joined by each predicate's connector."""
    parts: list[str] = []
    bindings: list[Any] = []

    for predicate in predicates:
        if predicate.kind == "basic":
            if predicate.operator in NULL_OPERATORS:
                sql = f"{predicate.column} {predicate.operator}"
            else:
                sql = f"{predicate.column} {predicate.operator} ?"
                bindings.append(predicate.value)
        elif predicate.kind == "raw":
            sql = predicate.sql or ""
            bindings.extend(predicate.values)
        elif predicate.kind in ("in", "not_in"):
            negate = predicate.kind == "not_in"
            if not predicate.values:
                sql = "1 = 1" if negate else "1 = 0"
            else:
                placeholders = ", ".join("?" for _ in predicate.values)
                keyword = "NOT IN" if negate else "IN"
                sql = f"{predicate.column} {keyword} ({placeholders})"
                bindings.extend(predicate.values)
        elif predicate.kind == "nested":
            if predicate.nested is None or not predicate.nested.wheres:
                continue
            inner_sql, inner_bindings = compile_predicates(predicate.nested.wheres)
            sql = f"({inner_sql})"
            bindings.extend(inner_bindings)
        else:
            raise ValueError(f"Unknown predicate kind: {predicate.kind}")

        parts.append(sql if not parts else f"{predicate.boolean} {sql}")

    return " ".join(parts), bindings


def compile_select(table: str, state: QueryState) -> tuple[str, list[Any]]:
    """Compile a SELECT statement.

    Produces ``SELECT [DISTINCT] cols FROM table [joins] [WHERE] [GROUP BY]
    [HAVING] [ORDER BY] [LIMIT] [OFFSET]`` and its positional bindings.
    """
    bindings: list[Any] = list(state.select_bindings)
    columns = ", ".join(state.columns) if state.columns else f"{table}.*"

    sql = "SELECT DISTINCT " if state.distinct else "SELECT "
    sql += f"{columns} FROM {table}"

    for join in state.joins:
        sql += f" {join.type} JOIN {join.table} ON {join.first} {join.operator} {join.second}"

    if state.wheres:
        where_sql, where_bindings = compile_predicates(state.wheres)
        if where_sql:
            sql += f" WHERE {where_sql}"
            bindings.extend(where_bindings)

    if state.groups:
        sql += " GROUP BY " + ", ".join(state.groups)

    if state.havings:
        having_sql, having_bindings = compile_predicates(state.havings)
        sql += f" HAVING {having_sql}"
        bindings.extend(having_bindings)

    if state.orders:
        sql += " ORDER BY " + ", ".join(f"{column} {direction}" for column, direction in state.orders)

    if state.limit is not None:
        sql += f" LIMIT {int(state.limit)}"
    elif state.offset is not None:
        sql += f" LIMIT {_MAX_LIMIT}"

    if state.offset is not None:
        sql += f" OFFSET {int(state.offset)}"

    return sql, bindings


def _where_clause(state: QueryState) -> tuple[str, list[Any]]:
    if not state.wheres:
        return "", []
    where_sql, bindings = compile_predicates(state.wheres)
    return (f" WHERE {where_sql}", bindings) if where_sql else ("", [])


def compile_insert(table: str, values: dict[str, Any]) -> tuple[str, list[Any]]:
    """Compile an INSERT of one row; an empty row inserts all defaults."""
    if not values:
        return f"INSERT INTO {table} DEFAULT VALUES", []
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    return f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", list(values.values())


def compile_update(table: str, values: dict[str, Any], state: QueryState) -> tuple[str, list[Any]]:
    """Compile an UPDATE constrained by the state's WHERE clause."""
    assignments = ", ".join(f"{column} = ?" for column in values)
    where_sql, where_bindings = _where_clause(state)
    return f"UPDATE {table} SET {assignments}{where_sql}", [*values.values(), *where_bindings]


def compile_delete(table: str, state: QueryState) -> tuple[str, list[Any]]:
    """Compile a DELETE constrained by the state's WHERE clause."""
    where_sql, where_bindings = _where_clause(state)
    return f"DELETE FROM {table}{where_sql}", where_bindings


def _literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (datetime, date)):
        value = value.isoformat(sep=" ") if isinstance(value, datetime) else value.isoformat()
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def interpolate(sql: str, bindings: list[Any]) -> str:
    """Substitute bindings into placeholders for display. Never execute the result."""
    remaining = iter(bindings)

    def replace(match: re.Match[str]) -> str:
        token = match.group(0)
        if token != "?":
            return token
        return _literal(next(remaining, None))

    return _RAW_TOKEN.sub(replace, sql)
