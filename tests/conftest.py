"""Shared test fixtures for QuarryDB."""

from collections.abc import Generator, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import pytest

from quarrydb import DatabaseConnection, Model
from quarrydb.core.types import LiveColumn
from quarrydb.exceptions import QueryError
from tests.entities import Comment, Post, Profile, Role, Tag, User

# SQLite rendition of the entities in tests/entities.py
SQLITE_SCHEMA = [
    """CREATE TABLE roles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name VARCHAR(50) NOT NULL
    )""",
    """CREATE TABLE users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email VARCHAR(255) NOT NULL UNIQUE,
        active TINYINT(1) NOT NULL DEFAULT 1,
        roleId INTEGER NOT NULL REFERENCES roles (id) ON DELETE CASCADE
    )""",
    """CREATE TABLE profiles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        bio VARCHAR(255) NULL,
        user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE
    )""",
    """CREATE TABLE posts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title VARCHAR(255) NOT NULL,
        user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        deleted_at TIMESTAMP NULL,
        created_at TIMESTAMP NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP NULL DEFAULT CURRENT_TIMESTAMP
    )""",
    """CREATE TABLE tags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name VARCHAR(50) NOT NULL UNIQUE
    )""",
    """CREATE TABLE posts_tags (
        post_id INTEGER NOT NULL REFERENCES posts (id) ON DELETE CASCADE,
        tag_id INTEGER NOT NULL REFERENCES tags (id) ON DELETE CASCADE,
        PRIMARY KEY (post_id, tag_id)
    )""",
    """CREATE TABLE comments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        body TEXT NOT NULL,
        post_id INTEGER NOT NULL REFERENCES posts (id) ON DELETE CASCADE
    )""",
    """CREATE TABLE subscribers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email_address VARCHAR(255) NOT NULL UNIQUE,
        DisplayName VARCHAR(80) NULL
    )""",
]


class QueryLog:
    """Wraps an executor and records every statement passed to execute()."""

    def __init__(self, executor: DatabaseConnection) -> None:
        self._executor = executor
        self.statements: list[tuple[str, list[Any]]] = []

    def __getattr__(self, name: str) -> Any:
        return getattr(self._executor, name)

    @property
    def last_insert_id(self) -> Any:
        return self._executor.last_insert_id

    def execute(self, sql: str, bindings: Sequence[Any] = ()) -> Any:
        self.statements.append((sql, list(bindings)))
        return self._executor.execute(sql, bindings)

    @property
    def selects(self) -> list[str]:
        return [sql for sql, _ in self.statements if sql.lstrip().upper().startswith("SELECT")]

    @property
    def writes(self) -> list[str]:
        return [
            sql
            for sql, _ in self.statements
            if sql.lstrip().upper().startswith(("INSERT", "UPDATE", "DELETE"))
        ]

    def clear(self) -> None:
        self.statements.clear()


class FakeExecutor:
    """In-memory stand-in for a live database, for schema diff tests."""

    def __init__(
        self,
        tables: dict[str, list[LiveColumn]] | None = None,
        constraints: dict[str, list[str]] | None = None,
        indexes: dict[str, list[str]] | None = None,
        fail_on: str | None = None,
    ) -> None:
        self.tables = tables or {}
        self.constraints = constraints or {}
        self.indexes = indexes or {}
        self.fail_on = fail_on
        self.executed: list[str] = []
        self.checks: list[str] = []
        self.last_insert_id: Any = None

    def execute(self, sql: str, bindings: Sequence[Any] = ()) -> list[dict[str, Any]] | int:
        if self.fail_on and self.fail_on in sql:
            raise QueryError(f"Simulated failure: {sql}")
        self.executed.append(sql)
        return 0

    def table_exists(self, table: str) -> bool:
        return table in self.tables

    def introspect_schema(self, table: str) -> list[LiveColumn]:
        return list(self.tables.get(table, []))

    def list_constraints(self, table: str) -> list[str]:
        return list(self.constraints.get(table, []))

    def list_indexes(self, table: str) -> list[str]:
        return list(self.indexes.get(table, []))

    @contextmanager
    def constraints_disabled(self) -> Iterator[None]:
        self.checks.append("off")
        try:
            yield
        finally:
            self.checks.append("on")


def live(name: str, type: str, nullable: bool = False, extra: str = "") -> LiveColumn:
    """Shorthand for a DESCRIBE row."""
    return LiveColumn(name=name, type=type, nullable=nullable, extra=extra)


@pytest.fixture
def connection() -> Generator[DatabaseConnection, None, None]:
    """SQLite in-memory database with the test entity tables, bound to Model."""
    conn = DatabaseConnection("sqlite:///:memory:")
    for statement in SQLITE_SCHEMA:
        conn.execute(statement)
    Model.set_connection(conn)
    yield conn
    Model.set_connection(None)
    conn.close()


@pytest.fixture
def query_log(connection: DatabaseConnection) -> Generator[QueryLog, None, None]:
    """Route entity queries through a recording wrapper."""
    log = QueryLog(connection)
    Model.set_connection(log)
    yield log
    Model.set_connection(connection)


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def seeded(connection: DatabaseConnection) -> dict[str, Any]:
    """Two roles, three users, posts, tags and comments."""
    admin = Role.create(name="admin")
    member = Role.create(name="member")

    alice = User.create(email="alice@example.com", roleId=admin.id)
    bob = User.create(email="bob@example.com", roleId=member.id)
    carol = User.create(email="carol@example.com", roleId=member.id, active=False)

    Profile.create(bio="Alice's bio", user_id=alice.id)

    first = Post.create(title="First", user_id=alice.id)
    second = Post.create(title="Second", user_id=alice.id)
    third = Post.create(title="Third", user_id=bob.id)

    python = Tag.create(name="python")
    sql = Tag.create(name="sql")
    first.related("tags").attach([python.id, sql.id])
    third.related("tags").attach(python.id)

    Comment.create(body="Nice", post_id=first.id)
    Comment.create(body="Agreed", post_id=first.id)

    return {
        "roles": [admin, member],
        "users": [alice, bob, carol],
        "posts": [first, second, third],
        "tags": [python, sql],
    }
