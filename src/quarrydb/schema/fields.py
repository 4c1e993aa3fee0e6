"""Declarations used in entity class bodies.

Columns and relations are class attributes::

    class User(Model):
        __tablename__ = "users"

        id: int = Id()
        email: str = Column(unique=True)
        roleId: int = Column()
        role = BelongsTo("Role", foreign_key="roleId")

Columns are data descriptors backed by the instance attribute dict;
relations are descriptors that resolve lazily and cache per instance.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from quarrydb.core.types import FieldType, KeyAction, RelationKind

if TYPE_CHECKING:
    from quarrydb.orm.model import Model


class Column:
    """A persisted field.

    Args:
        type: Explicit storage type; inferred from the annotation when omitted
        name: Column name override (defaults to the attribute name)
        length: Length for string/char types
        nullable: Allow NULL (also implied by an ``X | None`` annotation)
        unique: Add a unique index on this column
        unique_index: Explicit name for that unique index
        default: Literal DEFAULT value
        enums: Allowed values, makes the column an ENUM
        current_timestamp: DEFAULT CURRENT_TIMESTAMP (creation timestamp)
        on_update_current_timestamp: ON UPDATE CURRENT_TIMESTAMP (update timestamp)
        renamed_from: Previous column name, turns a diff into RENAME COLUMN
    """

    primary_key = False

    def __init__(
        self,
        type: FieldType | str | None = None,
        *,
        name: str | None = None,
        length: int = 255,
        nullable: bool = False,
        unique: bool = False,
        unique_index: str | None = None,
        default: Any = None,
        enums: list[str] | None = None,
        current_timestamp: bool = False,
        on_update_current_timestamp: bool = False,
        renamed_from: str | None = None,
    ) -> None:
        self.type = FieldType(type) if type is not None else None
        self.name = name
        self.length = length
        self.nullable = nullable
        self.unique = unique or unique_index is not None
        self.unique_index = unique_index
        self.default = default
        self.enums = list(enums) if enums is not None else None
        self.current_timestamp = current_timestamp
        self.on_update_current_timestamp = on_update_current_timestamp
        self.renamed_from = renamed_from
        self.autoincrement = False
        self.field_name = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.field_name = name

    def __get__(self, instance: Model | None, owner: type) -> Any:
        if instance is None:
            return self
        return instance._attributes.get(self.field_name, self.default)

    def __set__(self, instance: Model, value: Any) -> None:
        instance._attributes[self.field_name] = value

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(field={self.field_name!r}, type={self.type!r})"


class Id(Column):
    """The primary key column. Auto-increments by default for integer types."""

    primary_key = True

    def __init__(
        self,
        type: FieldType | str | None = None,
        *,
        name: str | None = None,
        autoincrement: bool = True,
        length: int = 255,
    ) -> None:
        super().__init__(type, name=name, length=length)
        self.autoincrement = autoincrement


class Relationship:
    """Base declaration for the four relation kinds."""

    kind: RelationKind

    def __init__(self, related: type[Model] | str | Callable[[], type[Model]]) -> None:
        self.related = related
        self.field_name = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.field_name = name

    def __get__(self, instance: Model | None, owner: type) -> Any:
        if instance is None:
            return self
        return instance.get_relation_value(self.field_name)

    def __set__(self, instance: Model, value: Any) -> None:
        instance.set_relation(self.field_name, value)

    def __repr__(self) -> str:
        related = getattr(self.related, "__name__", self.related)
        return f"{self.__class__.__name__}({related!r}, field={self.field_name!r})"


class BelongsTo(Relationship):
    """This entity holds a foreign key to the related entity's key."""

    kind = RelationKind.BELONGS_TO

    def __init__(
        self,
        related: type[Model] | str | Callable[[], type[Model]],
        *,
        foreign_key: str | None = None,
        owner_key: str | None = None,
        on_delete: KeyAction | str = KeyAction.CASCADE,
        on_update: KeyAction | str = KeyAction.CASCADE,
        nullable: bool = False,
    ) -> None:
        super().__init__(related)
        self.foreign_key = foreign_key
        self.owner_key = owner_key
        self.on_delete = KeyAction(on_delete.upper().replace("_", " "))
        self.on_update = KeyAction(on_update.upper().replace("_", " "))
        self.nullable = nullable


class HasOne(Relationship):
    """The related entity holds a foreign key to this one; at most one match."""

    kind = RelationKind.HAS_ONE

    def __init__(
        self,
        related: type[Model] | str | Callable[[], type[Model]],
        *,
        foreign_key: str | None = None,
        local_key: str | None = None,
    ) -> None:
        super().__init__(related)
        self.foreign_key = foreign_key
        self.local_key = local_key


class HasMany(HasOne):
    """The related entity holds a foreign key to this one; any number of matches."""

    kind = RelationKind.HAS_MANY


class BelongsToMany(Relationship):
    """Both entities are linked through a pivot table.

    Args:
        pivot: Pivot table name, or an entity class mapped to the pivot table
        foreign_pivot_key: Pivot column referencing this entity
        related_pivot_key: Pivot column referencing the related entity
    """

    kind = RelationKind.BELONGS_TO_MANY

    def __init__(
        self,
        related: type[Model] | str | Callable[[], type[Model]],
        *,
        pivot: type[Model] | str | None = None,
        foreign_pivot_key: str | None = None,
        related_pivot_key: str | None = None,
        parent_key: str | None = None,
        related_key: str | None = None,
    ) -> None:
        super().__init__(related)
        self.pivot = pivot
        self.foreign_pivot_key = foreign_pivot_key
        self.related_pivot_key = related_pivot_key
        self.parent_key = parent_key
        self.related_key = related_key
