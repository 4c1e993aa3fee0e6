"""QuarryDB - attribute-driven persistence for MySQL-family databases.

Entity classes declare their columns and relations as class attributes.
From that metadata QuarryDB builds queries, loads relations without N+1
round trips, and diffs the live schema into reviewable migrations.

Example:
    from quarrydb import BelongsTo, Column, DatabaseConnection, Id, Model

    class Role(Model):
        __tablename__ = "roles"
        id = Id()
        name: str = Column()

    class User(Model):
        __tablename__ = "users"
        id = Id()
        email: str = Column(unique=True)
        roleId: int = Column()
        role = BelongsTo("Role", foreign_key="roleId")

    Model.set_connection(DatabaseConnection("mysql://root@localhost/app"))

    users = User.where("active", 1).with_("role").order_by("id", "desc").limit(10).get()
"""

from quarrydb.core.config import QuarrySettings
from quarrydb.core.connection import DatabaseConnection
from quarrydb.core.types import FieldType, KeyAction, MigrationStatus, Page
from quarrydb.exceptions import (
    ColumnNotFoundError,
    ConnectionError,
    EntityConfigurationError,
    IntegrityViolationError,
    MigrationError,
    MigrationTableNotFoundError,
    QuarryDBError,
    QueryError,
    QueryStateError,
    RecordNotFoundError,
    RelationshipConfigurationError,
    RelationshipNotFoundError,
    SeederError,
)
from quarrydb.migrations import Migration, MigrationRunner, MigrationWriter, RegexReversalStrategy, Seeder
from quarrydb.orm import Model, QueryBuilder
from quarrydb.schema import (
    BelongsTo,
    BelongsToMany,
    Column,
    HasMany,
    HasOne,
    Id,
    SchemaSynchronizer,
    describe,
    registry,
)

__version__ = "0.1.0a1"

__all__ = [
    # Entities
    "Model",
    "Column",
    "Id",
    "BelongsTo",
    "HasOne",
    "HasMany",
    "BelongsToMany",
    "describe",
    "registry",
    # Querying
    "QueryBuilder",
    "Page",
    # Schema & migrations
    "SchemaSynchronizer",
    "MigrationWriter",
    "MigrationRunner",
    "Migration",
    "RegexReversalStrategy",
    "Seeder",
    "MigrationStatus",
    # Infrastructure
    "DatabaseConnection",
    "QuarrySettings",
    "FieldType",
    "KeyAction",
    # Exceptions
    "QuarryDBError",
    "ConnectionError",
    "EntityConfigurationError",
    "RelationshipConfigurationError",
    "ColumnNotFoundError",
    "RelationshipNotFoundError",
    "RecordNotFoundError",
    "MigrationTableNotFoundError",
    "QueryError",
    "IntegrityViolationError",
    "QueryStateError",
    "MigrationError",
    "SeederError",
]
