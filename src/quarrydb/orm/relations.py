"""Relation strategies: lazy single-parent loading and eager batch matching.

Each relation kind implements the same three steps:

- ``get_results()`` resolves the relation for the one bound parent
- ``add_eager_constraints(parents)`` builds one query covering every parent
- ``match(parents, results, name)`` distributes the fetched rows back onto
  the parents through a dictionary keyed by the joining column

Keys are compared as strings so a driver returning ``"1"`` still matches ``1``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

from quarrydb.core.connection import fetch_rows
from quarrydb.exceptions import IntegrityViolationError, QueryError
from quarrydb.orm.compiler import compile_insert
from quarrydb.orm.query import QueryBuilder
from quarrydb.schema.registry import (
    BelongsToDescriptor,
    BelongsToManyDescriptor,
    HasManyDescriptor,
    HasOneDescriptor,
    RelationshipDescriptor,
    describe,
)

if TYPE_CHECKING:
    from quarrydb.core.connection import SQLExecutor
    from quarrydb.orm.model import Model

logger = logging.getLogger(__name__)

PIVOT_KEY_ALIAS = "pivot_key"


def dictionary_key(value: Any) -> str | None:
    """Normalize a key value for dictionary matching."""
    if value is None:
        return None
    return str(value)


def _unique_keys(values: Iterable[Any]) -> list[Any]:
    seen: dict[str, Any] = {}
    for value in values:
        key = dictionary_key(value)
        if key is not None and key not in seen:
            seen[key] = value
    return list(seen.values())


class Relation(ABC):
    """Shared plumbing for the four relation kinds."""

    def __init__(
        self,
        descriptor: RelationshipDescriptor,
        parent_entity: type[Model],
        parent: Model | None = None,
        executor: SQLExecutor | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.parent_entity = parent_entity
        self.parent = parent
        self._executor = executor

    @property
    def related(self) -> type[Model]:
        return self.descriptor.related

    @property
    def related_table(self) -> str:
        return describe(self.related).table

    @property
    def executor(self) -> SQLExecutor:
        if self._executor is None:
            self._executor = self.related.get_connection()
        return self._executor

    def new_query(self) -> QueryBuilder[Any]:
        return QueryBuilder(self.related, self._executor or self.related._connection)

    def _require_parent(self) -> Model:
        if self.parent is None:
            raise QueryError(
                f"Relation '{self.descriptor.name}' on '{self.parent_entity.__name__}' "
                f"is not bound to an entity instance"
            )
        return self.parent

    @abstractmethod
    def query(self) -> QueryBuilder[Any]:
        """A query constrained to the bound parent, open for further clauses."""

    @abstractmethod
    def get_results(self) -> Any:
        """Resolve the relation for the bound parent."""

    @abstractmethod
    def add_eager_constraints(self, parents: Sequence[Model]) -> QueryBuilder[Any]:
        """Build one query that fetches the relation for every parent."""

    @abstractmethod
    def match(self, parents: Sequence[Model], results: list[Model], name: str) -> Sequence[Model]:
        """Assign fetched results to their parents under ``name``."""

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} {self.parent_entity.__name__}.{self.descriptor.name} "
            f"-> {self.related.__name__}>"
        )


class BelongsTo(Relation):
    """The parent row holds ``foreign_key`` pointing at ``owner_key`` on the related table."""

    descriptor: BelongsToDescriptor

    def query(self) -> QueryBuilder[Any]:
        parent = self._require_parent()
        value = parent.get_column_value(self.descriptor.foreign_key)
        return self.new_query().where(self.descriptor.owner_key, value)

    def get_results(self) -> Model | None:
        parent = self._require_parent()
        if parent.get_column_value(self.descriptor.foreign_key) is None:
            return None
        return self.query().first()

    def add_eager_constraints(self, parents: Sequence[Model]) -> QueryBuilder[Any]:
        keys = _unique_keys(p.get_column_value(self.descriptor.foreign_key) for p in parents)
        return self.new_query().where_in(self.descriptor.owner_key, keys)

    def match(self, parents: Sequence[Model], results: list[Model], name: str) -> Sequence[Model]:
        dictionary = {
            dictionary_key(result.get_column_value(self.descriptor.owner_key)): result
            for result in results
        }
        for parent in parents:
            key = dictionary_key(parent.get_column_value(self.descriptor.foreign_key))
            parent.set_relation(name, dictionary.get(key) if key is not None else None)
        return parents


class HasMany(Relation):
    """The related table holds ``foreign_key`` pointing at ``local_key`` on the parent."""

    descriptor: HasOneDescriptor

    def query(self) -> QueryBuilder[Any]:
        parent = self._require_parent()
        value = parent.get_column_value(self.descriptor.local_key)
        return self.new_query().where(self.descriptor.foreign_key, value)

    def get_results(self) -> Any:
        parent = self._require_parent()
        if parent.get_column_value(self.descriptor.local_key) is None:
            return []
        return self.query().get()

    def add_eager_constraints(self, parents: Sequence[Model]) -> QueryBuilder[Any]:
        keys = _unique_keys(p.get_column_value(self.descriptor.local_key) for p in parents)
        return self.new_query().where_in(self.descriptor.foreign_key, keys)

    def _dictionary(self, results: list[Model]) -> dict[str | None, list[Model]]:
        dictionary: dict[str | None, list[Model]] = defaultdict(list)
        for result in results:
            dictionary[dictionary_key(result.get_column_value(self.descriptor.foreign_key))].append(
                result
            )
        return dictionary

    def match(self, parents: Sequence[Model], results: list[Model], name: str) -> Sequence[Model]:
        dictionary = self._dictionary(results)
        for parent in parents:
            key = dictionary_key(parent.get_column_value(self.descriptor.local_key))
            parent.set_relation(name, list(dictionary.get(key, [])) if key is not None else [])
        return parents

    def make(self, **attributes: Any) -> Model:
        """A new, unsaved related entity with the foreign key set."""
        parent = self._require_parent()
        model = self.related(**attributes)
        column = describe(self.related).column_for_db_name(self.descriptor.foreign_key)
        if column is None:
            raise QueryError(
                f"'{self.related.__name__}' has no column '{self.descriptor.foreign_key}'"
            )
        setattr(model, column.field_name, parent.get_column_value(self.descriptor.local_key))
        return model

    def create(self, **attributes: Any) -> Model:
        """Create and save a related entity linked to the parent."""
        model = self.make(**attributes)
        model.save()
        return model


class HasOne(HasMany):
    """Like HasMany, but each parent receives a single entity or None."""

    def get_results(self) -> Model | None:
        parent = self._require_parent()
        if parent.get_column_value(self.descriptor.local_key) is None:
            return None
        return self.query().first()

    def match(self, parents: Sequence[Model], results: list[Model], name: str) -> Sequence[Model]:
        dictionary = self._dictionary(results)
        for parent in parents:
            key = dictionary_key(parent.get_column_value(self.descriptor.local_key))
            matches = dictionary.get(key, []) if key is not None else []
            parent.set_relation(name, matches[0] if matches else None)
        return parents


class BelongsToMany(Relation):
    """Entities linked through a pivot table with one key column per side."""

    descriptor: BelongsToManyDescriptor

    def _joined_query(self) -> QueryBuilder[Any]:
        d = self.descriptor
        related_table = self.related_table
        return (
            self.new_query()
            .select(f"{related_table}.*")
            .join(
                d.pivot_table,
                f"{d.pivot_table}.{d.related_pivot_key}",
                "=",
                f"{related_table}.{d.related_key}",
            )
        )

    def _parent_key_value(self) -> Any:
        return self._require_parent().get_column_value(self.descriptor.parent_key)

    def query(self) -> QueryBuilder[Any]:
        d = self.descriptor
        return self._joined_query().where(f"{d.pivot_table}.{d.foreign_pivot_key}", self._parent_key_value())

    def get_results(self) -> list[Model]:
        if self._parent_key_value() is None:
            return []
        return self.query().get()

    def add_eager_constraints(self, parents: Sequence[Model]) -> QueryBuilder[Any]:
        d = self.descriptor
        keys = _unique_keys(p.get_column_value(d.parent_key) for p in parents)
        return (
            self._joined_query()
            .select_raw(f"{d.pivot_table}.{d.foreign_pivot_key} as {PIVOT_KEY_ALIAS}")
            .where_in(f"{d.pivot_table}.{d.foreign_pivot_key}", keys)
        )

    def match(self, parents: Sequence[Model], results: list[Model], name: str) -> Sequence[Model]:
        dictionary: dict[str | None, list[Model]] = defaultdict(list)
        for result in results:
            # The alias only routes rows to parents; drop it from the hydrated entity
            dictionary[dictionary_key(result._extra.pop(PIVOT_KEY_ALIAS, None))].append(result)

        for parent in parents:
            key = dictionary_key(parent.get_column_value(self.descriptor.parent_key))
            parent.set_relation(name, list(dictionary.get(key, [])) if key is not None else [])
        return parents

    # === Pivot mutations ===

    @staticmethod
    def _ids(ids: Any) -> list[Any]:
        if ids is None:
            return []
        if isinstance(ids, (str, bytes)) or not isinstance(ids, Iterable):
            ids = [ids]
        return [item.get_key() if hasattr(item, "get_key") else item for item in ids]

    def _forget_loaded(self) -> None:
        if self.parent is not None:
            self.parent._relations.pop(self.descriptor.name, None)

    def current_ids(self) -> list[Any]:
        """Related keys currently linked to the parent."""
        d = self.descriptor
        rows = fetch_rows(
            self.executor,
            f"SELECT {d.related_pivot_key} FROM {d.pivot_table} WHERE {d.foreign_pivot_key} = ?",
            [self._parent_key_value()],
        )
        return [row[d.related_pivot_key] for row in rows]

    def attach(self, ids: Any, **pivot_attributes: Any) -> list[Any]:
        """Link related keys to the parent. Already-linked keys are skipped.

        Returns:
            The keys that were newly linked
        """
        d = self.descriptor
        parent_key = self._parent_key_value()
        attached = []
        for related_id in self._ids(ids):
            values = {d.foreign_pivot_key: parent_key, d.related_pivot_key: related_id, **pivot_attributes}
            sql, bindings = compile_insert(d.pivot_table, values)
            try:
                self.executor.execute(sql, bindings)
            except IntegrityViolationError:
                logger.debug(f"{d.pivot_table}: {parent_key} -> {related_id} already linked")
                continue
            attached.append(related_id)
        self._forget_loaded()
        return attached

    def detach(self, ids: Any = None) -> int:
        """Unlink related keys from the parent, or every key when ids is None.

        Returns:
            Number of pivot rows removed
        """
        d = self.descriptor
        sql = f"DELETE FROM {d.pivot_table} WHERE {d.foreign_pivot_key} = ?"
        bindings = [self._parent_key_value()]
        if ids is not None:
            keys = self._ids(ids)
            if not keys:
                return 0
            sql += f" AND {d.related_pivot_key} IN ({', '.join('?' for _ in keys)})"
            bindings.extend(keys)
        result = self.executor.execute(sql, bindings)
        self._forget_loaded()
        return result if isinstance(result, int) else 0

    def sync(self, ids: Any, detaching: bool = True) -> dict[str, list[Any]]:
        """Make the linked keys exactly ``ids``.

        Detaches ``current - target`` then attaches ``target - current``; a
        repeated call with the same ids issues no writes.
        """
        target = {dictionary_key(i): i for i in self._ids(ids)}
        current = {dictionary_key(i): i for i in self.current_ids()}

        to_detach = [value for key, value in current.items() if key not in target]
        to_attach = [value for key, value in target.items() if key not in current]

        if detaching and to_detach:
            self.detach(to_detach)
        attached = self.attach(to_attach) if to_attach else []
        return {"attached": attached, "detached": to_detach if detaching else []}


_RELATION_TYPES: dict[type, type[Relation]] = {
    BelongsToDescriptor: BelongsTo,
    HasOneDescriptor: HasOne,
    HasManyDescriptor: HasMany,
    BelongsToManyDescriptor: BelongsToMany,
}


def make_relation(
    descriptor: RelationshipDescriptor,
    parent_entity: type[Model],
    parent: Model | None = None,
    executor: SQLExecutor | None = None,
) -> Relation:
    """Instantiate the relation strategy for a descriptor."""
    return _RELATION_TYPES[type(descriptor)](descriptor, parent_entity, parent, executor)
