"""Tests for entity metadata: naming conventions, descriptors and DDL mapping."""

from datetime import date, datetime, time

import pytest

from quarrydb import BelongsTo, BelongsToMany, Column, HasMany, HasOne, Id, Model
from quarrydb.core.types import FieldType, KeyAction, LiveColumn, RelationKind
from quarrydb.exceptions import (
    EntityConfigurationError,
    RelationshipConfigurationError,
    RelationshipNotFoundError,
)
from quarrydb.schema import ddl, naming
from quarrydb.schema.registry import describe, registry
from tests.entities import AuditEntry, Comment, Customer, Invite, Post, Role, Tag, User


class TestNaming:
    """Default names used when a declaration leaves them out."""

    @pytest.mark.parametrize(
        ("class_name", "table"),
        [("User", "users"), ("OrderItem", "order_items"), ("Category", "categories"), ("Box", "boxes")],
    )
    def test_table_names(self, class_name, table):
        assert naming.generate_table_name(class_name) == table

    def test_belongs_to_foreign_key(self):
        assert naming.belongs_to_foreign_key("role") == "role_id"
        assert naming.belongs_to_foreign_key("roleId") == "roleId"

    def test_pivot_names(self):
        assert naming.pivot_table_name("tags", "posts") == "posts_tags"
        assert naming.pivot_key("Post", "id") == "post_id"
        assert naming.pivot_key("Student", "student_number") == "student_number"
        assert naming.pivot_key("BlogPost", None) == "blog_post_id"


class TestDescriptors:
    """describe() output for the shared test entities."""

    def test_columns_and_primary_key(self):
        descriptor = describe(User)
        assert descriptor.table == "users"
        assert descriptor.designated is True
        assert descriptor.primary_key == "id"
        assert [c.db_name for c in descriptor.columns] == ["id", "email", "active", "roleId"]

        email = descriptor.column("email")
        assert email.sql_type == "VARCHAR(255)"
        assert email.unique
        assert email.unique_index_name == "users_email_unique"

        key = descriptor.primary_key_column
        assert key.auto_increment
        assert not key.nullable

    def test_descriptor_is_cached(self):
        assert describe(User) is describe(User)
        assert User.describe() is describe(User)

    def test_annotation_inference(self):
        descriptor = describe(Customer)
        score = descriptor.column("score")
        assert score.sql_type == "INT UNSIGNED"
        assert score.nullable
        status = descriptor.column("status")
        assert status.sql_type == "ENUM('active', 'banned')"
        assert status.has_default and status.default == "active"
        assert descriptor.column("full_name").renamed_from == "name"

    def test_soft_delete_and_timestamp_columns(self):
        descriptor = describe(Post)
        assert descriptor.soft_delete_column == "deleted_at"
        assert descriptor.column("deleted_at").nullable
        assert descriptor.created_at_column.db_name == "created_at"
        assert descriptor.updated_at_column.db_name == "updated_at"
        assert describe(Role).created_at_column is None

    def test_undesignated_entity_uses_derived_table(self):
        descriptor = describe(AuditEntry)
        assert descriptor.table == "audit_entries"
        assert descriptor.designated is False

    def test_belongs_to_defaults(self):
        relation = describe(Comment).relation("post")
        assert relation.kind == RelationKind.BELONGS_TO
        assert relation.related is Post
        assert relation.foreign_key == "post_id"
        assert relation.owner_key == "id"
        assert relation.on_delete == KeyAction.CASCADE

    def test_implicit_foreign_key_column(self):
        descriptor = describe(Invite)
        column = descriptor.column("role_id")
        assert column is not None
        assert column.sql_type == "INT"
        assert column.nullable
        assert descriptor.relation("role").on_delete == KeyAction.SET_NULL

    def test_has_many_defaults(self):
        relation = describe(User).relation("posts")
        assert relation.kind == RelationKind.HAS_MANY
        assert relation.foreign_key == "user_id"
        assert relation.local_key == "id"
        assert describe(User).relation("profile").kind == RelationKind.HAS_ONE

    def test_belongs_to_many_defaults(self):
        relation = describe(Post).relation("tags")
        assert relation.pivot_table == "posts_tags"
        assert relation.foreign_pivot_key == "post_id"
        assert relation.related_pivot_key == "tag_id"
        assert relation.pivot_entity is None

        inverse = describe(Tag).relation("posts")
        assert inverse.pivot_table == relation.pivot_table
        assert inverse.foreign_pivot_key == "tag_id"

    def test_unknown_relation_name(self):
        with pytest.raises(RelationshipNotFoundError) as exc_info:
            describe(User).relation("friends")
        assert "role" in exc_info.value.available_relationships

    def test_registered_classes(self):
        assert registry.resolve("User", Post, "author") is User
        assert registry.resolve(lambda: Role, Post, "x") is Role
        assert User in registry.registered()


class TestConfigurationErrors:
    """Invalid declarations fail on first describe()."""

    def test_two_primary_keys(self):
        class DoubleKeyed(Model):
            __tablename__ = "double_keyed"

            id = Id()
            other = Id()

        with pytest.raises(EntityConfigurationError, match="primary keys"):
            describe(DoubleKeyed)

    def test_unknown_related_entity(self):
        class Dangling(Model):
            __tablename__ = "danglings"

            id = Id()
            owner = BelongsTo("NoSuchEntity")

        with pytest.raises(RelationshipConfigurationError, match="NoSuchEntity"):
            describe(Dangling)

    @pytest.mark.parametrize("declarator", [BelongsTo, HasMany, HasOne, BelongsToMany])
    def test_related_class_must_be_an_entity(self, declarator):
        class PointsAtBuiltin(Model):
            __tablename__ = "points_at_builtins"

            id = Id()
            target = declarator(dict)

        with pytest.raises(RelationshipConfigurationError, match="not a Model subclass"):
            describe(PointsAtBuiltin)

    def test_invalid_field_type(self):
        with pytest.raises(ValueError):
            Column("money")


class TestDDL:
    """Column definitions and type comparison."""

    def test_column_definitions(self):
        user = describe(User)
        assert ddl.column_definition(user.column("id")) == "`id` INT AUTO_INCREMENT NOT NULL"
        assert ddl.column_definition(user.column("active")) == "`active` TINYINT(1) NOT NULL DEFAULT 1"

        post = describe(Post)
        assert ddl.column_definition(post.column("updated_at")) == (
            "`updated_at` TIMESTAMP NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP"
        )

    def test_default_literal_escaping(self):
        assert ddl.format_default("it's") == "'it''s'"
        assert ddl.format_default(False) == "0"
        assert ddl.format_default(None) == "NULL"

    def test_temporal_defaults_are_quoted(self):
        assert ddl.format_default(datetime(2026, 1, 2, 3, 4, 5)) == "'2026-01-02 03:04:05'"
        assert ddl.format_default(date(2026, 1, 2)) == "'2026-01-02'"
        assert ddl.format_default(time(9, 30)) == "'09:30:00'"

    def test_enum_values_are_escaped(self):
        assert ddl.map_sql_type(None, enums=["it's", "ok"]) == "ENUM('it''s', 'ok')"

    @pytest.mark.parametrize(
        ("live", "declared", "differs"),
        [
            ("int(11)", "INT", False),
            ("int", "INT UNSIGNED", True),
            ("int unsigned", "INT UNSIGNED", False),
            ("tinyint(1)", "TINYINT(1)", False),
            ("varchar(100)", "VARCHAR(255)", True),
            ("varchar(255)", "VARCHAR(255)", False),
            ("decimal(10,2)", "DECIMAL(10,2)", False),
            ("enum('a','b')", "ENUM('a', 'b')", False),
            ("enum('a','c')", "ENUM('a', 'b')", True),
            ("bigint", "INT", True),
        ],
    )
    def test_type_differs(self, live, declared, differs):
        assert ddl.type_differs(live, declared) is differs

    def test_needs_modification(self):
        email = describe(User).column("email")
        assert not ddl.needs_modification(LiveColumn(name="email", type="varchar(255)"), email)
        assert ddl.needs_modification(LiveColumn(name="email", type="varchar(255)", nullable=True), email)

        updated = describe(Post).column("updated_at")
        assert ddl.needs_modification(LiveColumn(name="updated_at", type="timestamp", nullable=True), updated)
        assert not ddl.needs_modification(
            LiveColumn(
                name="updated_at",
                type="timestamp",
                nullable=True,
                extra="DEFAULT_GENERATED on update CURRENT_TIMESTAMP",
            ),
            updated,
        )

    def test_sql_type_map_covers_field_types(self):
        for field_type in FieldType:
            assert ddl.map_sql_type(field_type)
