"""Entity metadata and schema synchronization for QuarryDB."""

from quarrydb.schema.fields import BelongsTo, BelongsToMany, Column, HasMany, HasOne, Id
from quarrydb.schema.registry import (
    ColumnDescriptor,
    EntityDescriptor,
    MetadataRegistry,
    describe,
    registry,
)
from quarrydb.schema.synchronizer import SchemaSynchronizer

__all__ = [
    "Column",
    "Id",
    "BelongsTo",
    "HasOne",
    "HasMany",
    "BelongsToMany",
    "ColumnDescriptor",
    "EntityDescriptor",
    "MetadataRegistry",
    "describe",
    "registry",
    "SchemaSynchronizer",
]
