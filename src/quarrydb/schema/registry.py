"""Metadata registry: entity classes to immutable table descriptors.

``describe(EntityClass)`` scans the class's column and relation
declarations once and caches the result for the lifetime of the process.
Relation targets may be named before their class exists, so relation
descriptors are resolved on first describe rather than at class creation.
"""

from __future__ import annotations

import json
import logging
import threading
import types
import typing
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, ClassVar, Union

from pydantic import BaseModel, ConfigDict

from quarrydb.core.types import FieldType, KeyAction, RelationKind
from quarrydb.exceptions import (
    EntityConfigurationError,
    RelationshipConfigurationError,
    RelationshipNotFoundError,
)
from quarrydb.schema import naming
from quarrydb.schema.ddl import PYTHON_TYPE_MAP, map_sql_type
from quarrydb.schema.fields import (
    BelongsTo,
    BelongsToMany,
    Column,
    HasMany,
    HasOne,
    Relationship,
)

if TYPE_CHECKING:
    from quarrydb.orm.model import Model

logger = logging.getLogger(__name__)

_INTEGER_FIELD_TYPES = {
    FieldType.INT,
    FieldType.INT_UNSIGNED,
    FieldType.TINY_INTEGER,
    FieldType.TINY_INTEGER_UNSIGNED,
    FieldType.SMALL_INTEGER,
    FieldType.SMALL_INTEGER_UNSIGNED,
    FieldType.MEDIUM_INTEGER,
    FieldType.MEDIUM_INTEGER_UNSIGNED,
    FieldType.BIG_INTEGER,
    FieldType.BIG_INTEGER_UNSIGNED,
}


class ColumnDescriptor(BaseModel):
    """Storage shape of one persisted field."""

    model_config = ConfigDict(frozen=True)

    field_name: str
    db_name: str
    field_type: FieldType | None = None
    sql_type: str
    length: int = 255
    nullable: bool = False
    is_primary_key: bool = False
    auto_increment: bool = False
    has_default: bool = False
    default: Any = None
    current_timestamp: bool = False
    on_update_current_timestamp: bool = False
    unique: bool = False
    unique_index_name: str | None = None
    enums: list[str] | None = None
    renamed_from: str | None = None

    @property
    def is_timestamp_create(self) -> bool:
        return self.current_timestamp and not self.on_update_current_timestamp

    @property
    def is_timestamp_update(self) -> bool:
        return self.on_update_current_timestamp

    def to_python(self, value: Any) -> Any:
        """Cast a raw database value to the field's Python type."""
        if value is None:
            return None
        if self.field_type == FieldType.BOOLEAN:
            return bool(value)
        if self.field_type == FieldType.JSON and isinstance(value, (str, bytes)):
            return json.loads(value)
        if self.field_type in (FieldType.DATETIME, FieldType.TIMESTAMP) and isinstance(value, str):
            return datetime.fromisoformat(value)
        if self.field_type == FieldType.DATE and isinstance(value, str):
            return date.fromisoformat(value)
        if self.field_type == FieldType.DECIMAL and not isinstance(value, Decimal):
            return Decimal(str(value))
        if self.field_type in _INTEGER_FIELD_TYPES and isinstance(value, str) and value.isdigit():
            return int(value)
        return value

    def to_database(self, value: Any) -> Any:
        """Cast a Python value to something the driver accepts."""
        if value is None:
            return None
        if self.field_type == FieldType.JSON and not isinstance(value, str):
            return json.dumps(value, default=str)
        if isinstance(value, bool):
            return int(value)
        return value


@dataclass(frozen=True)
class BelongsToDescriptor:
    """Child side: ``foreign_key`` on this table references ``owner_key`` on the related one."""

    kind: ClassVar[RelationKind] = RelationKind.BELONGS_TO

    name: str
    related: type[Model]
    foreign_key: str
    owner_key: str
    on_delete: KeyAction = KeyAction.CASCADE
    on_update: KeyAction = KeyAction.CASCADE


@dataclass(frozen=True)
class HasOneDescriptor:
    """Parent side: ``foreign_key`` on the related table references ``local_key`` here."""

    kind: ClassVar[RelationKind] = RelationKind.HAS_ONE

    name: str
    related: type[Model]
    foreign_key: str
    local_key: str


@dataclass(frozen=True)
class HasManyDescriptor(HasOneDescriptor):
    kind: ClassVar[RelationKind] = RelationKind.HAS_MANY


@dataclass(frozen=True)
class BelongsToManyDescriptor:
    """Both sides linked through ``pivot_table``."""

    kind: ClassVar[RelationKind] = RelationKind.BELONGS_TO_MANY

    name: str
    related: type[Model]
    pivot_table: str
    foreign_pivot_key: str
    related_pivot_key: str
    parent_key: str
    related_key: str
    pivot_entity: type[Model] | None = None


RelationshipDescriptor = Union[
    BelongsToDescriptor, HasOneDescriptor, HasManyDescriptor, BelongsToManyDescriptor
]


@dataclass(frozen=True)
class EntityDescriptor:
    """Everything the query, relation and schema layers know about one entity."""

    entity: type[Model]
    table: str
    designated: bool
    columns: tuple[ColumnDescriptor, ...]
    relations: dict[str, RelationshipDescriptor] = field(default_factory=dict)
    primary_key: str | None = None
    soft_delete_column: str | None = None

    @property
    def name(self) -> str:
        return self.entity.__name__

    @property
    def primary_key_column(self) -> ColumnDescriptor | None:
        for column in self.columns:
            if column.is_primary_key:
                return column
        return None

    @property
    def created_at_column(self) -> ColumnDescriptor | None:
        return next((c for c in self.columns if c.is_timestamp_create), None)

    @property
    def updated_at_column(self) -> ColumnDescriptor | None:
        return next((c for c in self.columns if c.is_timestamp_update), None)

    def column(self, field_name: str) -> ColumnDescriptor | None:
        for column in self.columns:
            if column.field_name == field_name:
                return column
        return None

    def column_for_db_name(self, db_name: str) -> ColumnDescriptor | None:
        """Find a column by database name, case-insensitively."""
        lowered = db_name.lower()
        for column in self.columns:
            if column.db_name.lower() == lowered:
                return column
        return None

    def relation(self, name: str) -> RelationshipDescriptor:
        """Get a relation descriptor by field name.

        Raises:
            RelationshipNotFoundError: If the entity declares no such relation
        """
        try:
            return self.relations[name]
        except KeyError:
            raise RelationshipNotFoundError(name, self.name, list(self.relations)) from None


@dataclass(frozen=True)
class _Layout:
    """Table and column information, computed without resolving relations."""

    table: str
    designated: bool
    columns: tuple[ColumnDescriptor, ...]
    primary_key: str | None


def _annotations(cls: type) -> dict[str, Any]:
    """Collect annotations across the MRO, resolving them when possible."""
    try:
        return typing.get_type_hints(cls)
    except (NameError, TypeError):
        merged: dict[str, Any] = {}
        for klass in reversed(cls.__mro__):
            merged.update(getattr(klass, "__annotations__", {}))
        return merged


def _infer_from_annotation(annotation: Any) -> tuple[FieldType | None, bool]:
    """Map an annotation to a field type and whether it admits None."""
    if annotation is None:
        return None, False

    if isinstance(annotation, str):
        parts = [part.strip() for part in annotation.replace("Optional[", "").rstrip("]").split("|")]
        nullable = "None" in parts or annotation.startswith("Optional[")
        by_name = {t.__name__: ft for t, ft in PYTHON_TYPE_MAP.items()}
        for part in parts:
            base = part.split("[", 1)[0].split(".")[-1]
            if base in by_name:
                return by_name[base], nullable
        return None, nullable

    origin = typing.get_origin(annotation)
    if origin in (Union, types.UnionType):
        args = typing.get_args(annotation)
        nullable = type(None) in args
        for arg in args:
            if arg is not type(None):
                field_type, _ = _infer_from_annotation(arg)
                return field_type, nullable
        return None, nullable

    if origin is not None:
        annotation = origin
    return PYTHON_TYPE_MAP.get(annotation), False


def _declarations(cls: type) -> tuple[dict[str, Column], dict[str, Relationship]]:
    """Gather column and relation declarations, subclasses overriding bases."""
    columns: dict[str, Column] = {}
    relations: dict[str, Relationship] = {}
    for klass in reversed(cls.__mro__):
        for attr, value in vars(klass).items():
            if isinstance(value, Column):
                columns[attr] = value
                relations.pop(attr, None)
            elif isinstance(value, Relationship):
                relations[attr] = value
                columns.pop(attr, None)
    return columns, relations


def _column_descriptor(column: Column, annotation: Any, table: str) -> ColumnDescriptor:
    inferred_type, annotated_nullable = _infer_from_annotation(annotation)
    field_type = column.type or inferred_type
    if column.primary_key and field_type is None:
        field_type = FieldType.INT

    db_name = column.name or column.field_name
    sql_type = map_sql_type(field_type, column.length, column.enums)
    is_pk = column.primary_key
    unique_index = None
    if column.unique and not is_pk:
        unique_index = column.unique_index or f"{table}_{db_name}_unique"

    return ColumnDescriptor(
        field_name=column.field_name,
        db_name=db_name,
        field_type=field_type,
        sql_type=sql_type,
        length=column.length,
        nullable=(column.nullable or annotated_nullable) and not is_pk,
        is_primary_key=is_pk,
        auto_increment=is_pk and column.autoincrement and "INT" in sql_type.upper(),
        has_default=column.default is not None,
        default=column.default,
        current_timestamp=column.current_timestamp,
        on_update_current_timestamp=column.on_update_current_timestamp,
        unique=column.unique and not is_pk,
        unique_index_name=unique_index,
        enums=column.enums,
        renamed_from=column.renamed_from,
    )


class MetadataRegistry:
    """Process-wide cache of entity descriptors.

    Descriptors are computed at most once per class; the first computation
    runs under a lock and later reads are lock-free dictionary lookups.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._descriptors: dict[type, EntityDescriptor] = {}
        self._layouts: dict[type, _Layout] = {}
        self._classes: dict[str, type[Model]] = {}

    def register(self, cls: type[Model]) -> None:
        """Make an entity class resolvable by name from relation declarations."""
        with self._lock:
            self._classes[cls.__name__] = cls
            self._descriptors.pop(cls, None)
            self._layouts.pop(cls, None)

    def registered(self) -> list[type[Model]]:
        return list(self._classes.values())

    def resolve(self, reference: Any, owner: type, relation_name: str) -> type[Model]:
        """Resolve a relation target given as class, class name or zero-arg callable.

        Raises:
            RelationshipConfigurationError: If the reference does not name a known entity
        """
        if isinstance(reference, type):
            from quarrydb.orm.model import Model

            if issubclass(reference, Model):
                return reference
            raise RelationshipConfigurationError(
                relation_name,
                owner.__name__,
                f"related entity '{reference.__name__}' is not a Model subclass",
            )
        if isinstance(reference, str):
            name = reference.rsplit(".", 1)[-1]
            if name in self._classes:
                return self._classes[name]
            raise RelationshipConfigurationError(
                relation_name,
                owner.__name__,
                f"related entity '{reference}' is not defined. "
                f"Known entities: {', '.join(sorted(self._classes)) or 'none'}",
            )
        if callable(reference):
            return self.resolve(reference(), owner, relation_name)
        raise RelationshipConfigurationError(
            relation_name, owner.__name__, f"cannot resolve related entity from {reference!r}"
        )

    def describe(self, cls: type[Model]) -> EntityDescriptor:
        """Return the cached descriptor for an entity class, computing it on first use."""
        descriptor = self._descriptors.get(cls)
        if descriptor is not None:
            return descriptor

        with self._lock:
            descriptor = self._descriptors.get(cls)
            if descriptor is None:
                descriptor = self._build(cls)
                self._descriptors[cls] = descriptor
                logger.debug(
                    f"Described {cls.__name__}: table={descriptor.table}, "
                    f"{len(descriptor.columns)} columns, {len(descriptor.relations)} relations"
                )
            return descriptor

    def clear(self) -> None:
        """Drop every cached descriptor (class registrations are kept)."""
        with self._lock:
            self._descriptors.clear()
            self._layouts.clear()

    def _layout(self, cls: type[Model]) -> _Layout:
        layout = self._layouts.get(cls)
        if layout is not None:
            return layout

        with self._lock:
            explicit = cls.__dict__.get("__tablename__")
            table = explicit or naming.generate_table_name(cls.__name__)
            hints = _annotations(cls)
            declared, _ = _declarations(cls)

            columns = [
                _column_descriptor(column, hints.get(name), table)
                for name, column in declared.items()
            ]
            keys = [c for c in columns if c.is_primary_key]
            if len(keys) > 1:
                raise EntityConfigurationError(
                    cls.__name__,
                    f"declares {len(keys)} primary keys ({', '.join(c.field_name for c in keys)}); "
                    f"at most one Id() is allowed",
                )

            layout = _Layout(
                table=table,
                designated=bool(explicit),
                columns=tuple(columns),
                primary_key=keys[0].db_name if keys else None,
            )
            self._layouts[cls] = layout
            return layout

    def _build(self, cls: type[Model]) -> EntityDescriptor:
        layout = self._layout(cls)
        _, declared_relations = _declarations(cls)
        columns = list(layout.columns)
        relations: dict[str, RelationshipDescriptor] = {}

        for name, declaration in declared_relations.items():
            related = self.resolve(declaration.related, cls, name)
            related_layout = self._layout(related)

            if isinstance(declaration, BelongsTo):
                descriptor: RelationshipDescriptor = BelongsToDescriptor(
                    name=name,
                    related=related,
                    foreign_key=declaration.foreign_key or naming.belongs_to_foreign_key(name),
                    owner_key=declaration.owner_key or related_layout.primary_key or "id",
                    on_delete=declaration.on_delete,
                    on_update=declaration.on_update,
                )
                if not any(c.db_name.lower() == descriptor.foreign_key.lower() for c in columns):
                    columns.append(self._implicit_foreign_key(descriptor, declaration, related_layout))
            elif isinstance(declaration, HasOne):
                local_key = declaration.local_key or layout.primary_key or "id"
                descriptor_cls = HasManyDescriptor if isinstance(declaration, HasMany) else HasOneDescriptor
                descriptor = descriptor_cls(
                    name=name,
                    related=related,
                    foreign_key=declaration.foreign_key
                    or naming.has_foreign_key(cls.__name__, local_key),
                    local_key=local_key,
                )
            elif isinstance(declaration, BelongsToMany):
                descriptor = self._belongs_to_many(cls, layout, name, declaration, related, related_layout)
            else:
                raise RelationshipConfigurationError(
                    name, cls.__name__, f"unsupported relation type {type(declaration).__name__}"
                )
            relations[name] = descriptor

        soft_delete = getattr(cls, "__soft_delete__", None)
        return EntityDescriptor(
            entity=cls,
            table=layout.table,
            designated=layout.designated,
            columns=tuple(columns),
            relations=relations,
            primary_key=layout.primary_key,
            soft_delete_column=soft_delete or None,
        )

    def _implicit_foreign_key(
        self, descriptor: BelongsToDescriptor, declaration: BelongsTo, related_layout: _Layout
    ) -> ColumnDescriptor:
        owner = next(
            (c for c in related_layout.columns if c.db_name == descriptor.owner_key), None
        )
        field_type = owner.field_type if owner is not None else FieldType.INT
        length = owner.length if owner is not None else 255
        return ColumnDescriptor(
            field_name=descriptor.foreign_key,
            db_name=descriptor.foreign_key,
            field_type=field_type,
            sql_type=map_sql_type(field_type, length),
            length=length,
            nullable=declaration.nullable or declaration.on_delete == KeyAction.SET_NULL,
        )

    def _belongs_to_many(
        self,
        cls: type[Model],
        layout: _Layout,
        name: str,
        declaration: BelongsToMany,
        related: type[Model],
        related_layout: _Layout,
    ) -> BelongsToManyDescriptor:
        pivot_entity = None
        pivot = declaration.pivot
        if isinstance(pivot, type):
            pivot_entity = pivot
            pivot_table = self._layout(pivot).table
        elif isinstance(pivot, str) and pivot in self._classes:
            pivot_entity = self._classes[pivot]
            pivot_table = self._layout(pivot_entity).table
        elif isinstance(pivot, str) and pivot:
            pivot_table = pivot
        elif pivot is None:
            pivot_table = naming.pivot_table_name(layout.table, related_layout.table)
        else:
            raise RelationshipConfigurationError(
                name, cls.__name__, f"pivot must be a table name or entity class, got {pivot!r}"
            )

        return BelongsToManyDescriptor(
            name=name,
            related=related,
            pivot_table=pivot_table,
            foreign_pivot_key=declaration.foreign_pivot_key
            or naming.pivot_key(cls.__name__, layout.primary_key),
            related_pivot_key=declaration.related_pivot_key
            or naming.pivot_key(related.__name__, related_layout.primary_key),
            parent_key=declaration.parent_key or layout.primary_key or "id",
            related_key=declaration.related_key or related_layout.primary_key or "id",
            pivot_entity=pivot_entity,
        )


registry = MetadataRegistry()


def describe(cls: type[Model]) -> EntityDescriptor:
    """Describe an entity class using the process-wide registry."""
    return registry.describe(cls)
