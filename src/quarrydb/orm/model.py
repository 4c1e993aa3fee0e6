"""Entity base class: attribute storage, hydration and the write path."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from quarrydb.core.types import FieldType
from quarrydb.exceptions import ColumnNotFoundError, ConnectionError, QueryError
from quarrydb.orm.compiler import compile_insert
from quarrydb.orm.query import QueryBuilder
from quarrydb.schema.fields import Column
from quarrydb.schema.registry import EntityDescriptor, describe, registry

if TYPE_CHECKING:
    from quarrydb.core.connection import SQLExecutor
    from quarrydb.orm.relations import Relation

logger = logging.getLogger(__name__)

M = TypeVar("M", bound="Model")


def _install_column(cls: type, name: str, column: Column) -> None:
    if isinstance(cls.__dict__.get(name), Column):
        return
    for klass in cls.__mro__[1:]:
        if isinstance(klass.__dict__.get(name), Column):
            return
    setattr(cls, name, column)
    column.__set_name__(cls, name)


class Model:
    """Base class for entities.

    Class options:
        __tablename__: Explicit table name; only entities that set it are
            synchronized into the schema
        __soft_delete__: Column name that marks rows as deleted instead of removing them
        __timestamps__: Add created_at/updated_at columns maintained by the database
    """

    __soft_delete__: ClassVar[str | None] = None
    __timestamps__: ClassVar[bool] = False

    _connection: ClassVar[SQLExecutor | None] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.__soft_delete__:
            _install_column(
                cls, cls.__soft_delete__, Column(FieldType.TIMESTAMP, nullable=True)
            )
        if cls.__dict__.get("__timestamps__"):
            _install_column(
                cls, "created_at", Column(FieldType.TIMESTAMP, nullable=True, current_timestamp=True)
            )
            _install_column(
                cls,
                "updated_at",
                Column(
                    FieldType.TIMESTAMP,
                    nullable=True,
                    current_timestamp=True,
                    on_update_current_timestamp=True,
                ),
            )
        registry.register(cls)

    def __init__(self, **attributes: Any) -> None:
        self._init_state()
        self.fill(**attributes)

    def _init_state(self) -> None:
        object.__setattr__(self, "_attributes", {})
        object.__setattr__(self, "_original", {})
        object.__setattr__(self, "_relations", {})
        object.__setattr__(self, "_extra", {})
        object.__setattr__(self, "_exists", False)

    # === Metadata and connection ===

    @classmethod
    def describe(cls) -> EntityDescriptor:
        return describe(cls)

    @classmethod
    def set_connection(cls, executor: SQLExecutor | None) -> None:
        """Bind an SQL executor for this entity and its subclasses."""
        cls._connection = executor

    @classmethod
    def get_connection(cls) -> SQLExecutor:
        """Get the bound SQL executor.

        Raises:
            ConnectionError: If no executor was bound
        """
        if cls._connection is None:
            raise ConnectionError(
                f"No database connection bound for '{cls.__name__}'. "
                f"Call Model.set_connection(DatabaseConnection(url)) first."
            )
        return cls._connection

    @classmethod
    def transaction(cls) -> Any:
        """Context manager running the enclosed writes in one transaction."""
        connection = cls.get_connection()
        if not hasattr(connection, "transaction"):
            raise QueryError(f"{type(connection).__name__} does not support transactions")
        return connection.transaction()

    # === Query entry points ===

    @classmethod
    def query(cls: type[M]) -> QueryBuilder[M]:
        """Start a new query for this entity."""
        return QueryBuilder(cls, cls._connection)

    @classmethod
    def all(cls: type[M]) -> list[M]:
        return cls.query().get()

    @classmethod
    def where(cls: type[M], *args: Any, **kwargs: Any) -> QueryBuilder[M]:
        return cls.query().where(*args, **kwargs)

    @classmethod
    def with_(cls: type[M], *relations: str) -> QueryBuilder[M]:
        return cls.query().with_(*relations)

    @classmethod
    def with_trashed(cls: type[M]) -> QueryBuilder[M]:
        return cls.query().with_trashed()

    @classmethod
    def only_trashed(cls: type[M]) -> QueryBuilder[M]:
        return cls.query().only_trashed()

    @classmethod
    def find(cls: type[M], id: Any) -> M | None:
        return cls.query().find(id)

    @classmethod
    def find_or_fail(cls: type[M], id: Any) -> M:
        return cls.query().find_or_fail(id)

    @classmethod
    def create(cls: type[M], **attributes: Any) -> M:
        """Instantiate, save and return a new entity."""
        model = cls(**attributes)
        model.save()
        return model

    @classmethod
    def update(cls: type[M], id: Any, **attributes: Any) -> M:
        """Load by primary key, apply attributes and save."""
        model = cls.find_or_fail(id)
        model.fill(**attributes)
        model.save()
        return model

    @classmethod
    def destroy(cls, ids: Any | Iterable[Any]) -> int:
        """Delete rows by primary key; returns the number of rows affected."""
        if isinstance(ids, (str, bytes)) or not isinstance(ids, Iterable):
            ids = [ids]
        ids = list(ids)
        if not ids:
            return 0
        descriptor = describe(cls)
        query = cls.query()
        return query.where_in(f"{descriptor.table}.{query._primary_key()}", ids).delete()

    # === Hydration ===

    @classmethod
    def from_row(cls: type[M], row: dict[str, Any]) -> M:
        """Build an entity from a database row.

        Columns map to fields case-insensitively; anything else (join
        aliases such as ``pivot_key``) is kept aside and never persisted.
        """
        model = cls.__new__(cls)
        model._init_state()
        descriptor = describe(cls)
        for key, value in row.items():
            column = descriptor.column_for_db_name(key)
            if column is not None:
                model._attributes[column.field_name] = column.to_python(value)
            else:
                model._extra[key] = value
        object.__setattr__(model, "_original", dict(model._attributes))
        object.__setattr__(model, "_exists", True)
        return model

    # === Attribute access ===

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal lookup fails: implicit columns and extra row values.
        state = self.__dict__
        if name in state.get("_attributes", {}):
            return state["_attributes"][name]
        if name in state.get("_extra", {}):
            return state["_extra"][name]
        if not name.startswith("_") and describe(type(self)).column(name) is not None:
            return None
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if not name.startswith("_") and not hasattr(type(self), name):
            if describe(type(self)).column(name) is not None:
                self._attributes[name] = value
                return
        object.__setattr__(self, name, value)

    def fill(self, **attributes: Any) -> Model:
        """Assign column and relation values by field name.

        Raises:
            ColumnNotFoundError: If a name is neither a column nor a relation
        """
        descriptor = describe(type(self))
        for name, value in attributes.items():
            if descriptor.column(name) is None and name not in descriptor.relations:
                raise ColumnNotFoundError(
                    name, descriptor.name, [c.field_name for c in descriptor.columns]
                )
            setattr(self, name, value)
        return self

    def get_column_value(self, db_name: str) -> Any:
        """Value of a column addressed by its database name."""
        column = describe(type(self)).column_for_db_name(db_name)
        if column is not None:
            return self._attributes.get(column.field_name, column.default)
        return self._extra.get(db_name)

    def get_key(self) -> Any:
        """The primary key value, or None for unkeyed or unsaved entities."""
        descriptor = describe(type(self))
        if descriptor.primary_key is None:
            return None
        return self.get_column_value(descriptor.primary_key)

    @property
    def exists(self) -> bool:
        """Whether this entity was loaded from or saved to the database."""
        return self._exists

    def get_dirty(self) -> dict[str, Any]:
        """Fields changed since the entity was loaded or last saved."""
        missing = object()
        return {
            name: value
            for name, value in self._attributes.items()
            if self._original.get(name, missing) != value
        }

    def is_dirty(self) -> bool:
        return bool(self.get_dirty())

    # === Write path ===

    def _column_values(self, fields: dict[str, Any]) -> dict[str, Any]:
        descriptor = describe(type(self))
        values: dict[str, Any] = {}
        for name, value in fields.items():
            column = descriptor.column(name)
            if column is None:
                continue
            # Unset timestamps fall back to the database default
            if value is None and (column.is_timestamp_create or column.is_timestamp_update):
                continue
            if value is None and column.is_primary_key:
                continue
            values[column.db_name] = column.to_database(value)
        return values

    def save(self) -> bool:
        """Insert a new entity or update its changed columns."""
        descriptor = describe(type(self))
        executor = type(self).get_connection()

        if self._exists:
            dirty = self.get_dirty()
            if not dirty:
                return True
            key = self.get_key()
            if key is None:
                raise QueryError(f"Cannot update '{descriptor.name}' without a primary key value")
            values = self._column_values(dirty)
            if values:
                query = QueryBuilder(type(self), executor).with_trashed()
                query.where(f"{descriptor.table}.{descriptor.primary_key}", key).update(values)
                logger.debug(f"Updated {descriptor.name} {key}: {sorted(values)}")
        else:
            values = self._column_values(self._attributes)
            sql, bindings = compile_insert(descriptor.table, values)
            executor.execute(sql, bindings)
            pk = descriptor.primary_key_column
            if pk is not None and self._attributes.get(pk.field_name) is None:
                self._attributes[pk.field_name] = executor.last_insert_id
            object.__setattr__(self, "_exists", True)
            logger.debug(f"Inserted {descriptor.name} {self.get_key()}")

        object.__setattr__(self, "_original", dict(self._attributes))
        return True

    def delete(self) -> bool:
        """Delete the entity (soft delete when the entity declares __soft_delete__)."""
        descriptor = describe(type(self))
        if descriptor.soft_delete_column is not None:
            setattr(self, descriptor.soft_delete_column, datetime.now(UTC).replace(tzinfo=None))
            return self.save()
        return self.force_delete()

    def force_delete(self) -> bool:
        """Permanently delete the entity's row."""
        descriptor = describe(type(self))
        key = self.get_key()
        if key is None:
            raise QueryError(f"Cannot delete '{descriptor.name}' without a primary key value")
        query = QueryBuilder(type(self), type(self).get_connection()).with_trashed()
        query.where(f"{descriptor.table}.{descriptor.primary_key}", key).force_delete()
        object.__setattr__(self, "_exists", False)
        return True

    def restore(self) -> bool:
        """Clear the soft delete marker."""
        column = describe(type(self)).soft_delete_column
        if column is None:
            raise QueryError(f"'{type(self).__name__}' does not use soft deletes")
        setattr(self, column, None)
        return self.save()

    def trashed(self) -> bool:
        column = describe(type(self)).soft_delete_column
        return column is not None and self._attributes.get(column) is not None

    def refresh(self) -> Model:
        """Reload column values from the database and forget loaded relations."""
        fresh = type(self).query().with_trashed().find_or_fail(self.get_key())
        object.__setattr__(self, "_attributes", dict(fresh._attributes))
        object.__setattr__(self, "_original", dict(fresh._attributes))
        self._relations.clear()
        return self

    # === Relations ===

    def related(self, name: str) -> Relation:
        """The relation object for a declared relation, bound to this entity."""
        from quarrydb.orm.relations import make_relation

        descriptor = describe(type(self)).relation(name)
        return make_relation(descriptor, type(self), parent=self)

    def get_relation_value(self, name: str) -> Any:
        """Loaded relation value, resolving it lazily on first access."""
        if name not in self._relations:
            self._relations[name] = self.related(name).get_results()
        return self._relations[name]

    def set_relation(self, name: str, value: Any) -> None:
        self._relations[name] = value

    def relation_loaded(self, name: str) -> bool:
        return name in self._relations

    def load(self, *relations: str) -> Model:
        """Eager-load relations onto this already-fetched entity."""
        from quarrydb.orm.loader import load_relations

        load_relations([self], list(relations), type(self)._connection)
        return self

    # === Serialization ===

    def to_dict(self, include_relations: bool = True) -> dict[str, Any]:
        descriptor = describe(type(self))
        data = {c.field_name: self.get_column_value(c.db_name) for c in descriptor.columns}
        if include_relations:
            for name, value in self._relations.items():
                if isinstance(value, list):
                    data[name] = [item.to_dict() for item in value]
                elif isinstance(value, Model):
                    data[name] = value.to_dict()
                else:
                    data[name] = value
        return data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Model) or type(other) is not type(self):
            return NotImplemented
        key = self.get_key()
        if key is None:
            return self is other
        return str(key) == str(other.get_key())

    def __hash__(self) -> int:
        key = self.get_key()
        return hash((type(self).__name__, str(key))) if key is not None else id(self)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.get_key()!r}>"
