"""Runtime settings for QuarryDB.

Settings resolve from explicit arguments first, then ``QUARRYDB_*``
environment variables, then the defaults below.
"""

from __future__ import annotations

import os

from pydantic import BaseModel, Field

DEFAULT_DATABASE_URL = "sqlite:///./quarrydb.db"


def get_database_url(url: str | None = None) -> str:
    """Resolve database URL from argument, environment variable, or default.

    Priority:
    1. Explicit URL argument
    2. QUARRYDB_URL environment variable
    3. Default: sqlite:///./quarrydb.db
    """
    if url:
        return url
    if env_url := os.getenv("QUARRYDB_URL"):
        return env_url
    return DEFAULT_DATABASE_URL


class QuarrySettings(BaseModel):
    """Connection, DDL and migration settings."""

    database_url: str = Field(default=DEFAULT_DATABASE_URL, description="SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Echo SQL statements")
    migrations_path: str = Field(
        default="database/migrations", description="Directory holding migration artifacts"
    )
    migrations_table: str = Field(default="_migrations", description="Applied-migrations ledger")
    table_engine: str = Field(default="InnoDB", description="Storage engine for CREATE TABLE")
    charset: str = Field(default="utf8mb4")
    collation: str = Field(default="utf8mb4_unicode_ci")

    @classmethod
    def from_env(cls, **overrides: object) -> QuarrySettings:
        """Build settings from the environment, letting non-None overrides win."""
        values: dict[str, object] = {"database_url": get_database_url()}
        env_map = {
            "migrations_path": "QUARRYDB_MIGRATIONS_PATH",
            "migrations_table": "QUARRYDB_MIGRATIONS_TABLE",
            "table_engine": "QUARRYDB_TABLE_ENGINE",
            "charset": "QUARRYDB_CHARSET",
            "collation": "QUARRYDB_COLLATION",
        }
        for key, env_var in env_map.items():
            if env_value := os.getenv(env_var):
                values[key] = env_value
        if os.getenv("QUARRYDB_ECHO", "").lower() in ("1", "true", "yes"):
            values["echo"] = True

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def table_options(self) -> str:
        """Trailing CREATE TABLE options, e.g. ``ENGINE=InnoDB DEFAULT CHARSET=...``."""
        return (
            f"ENGINE={self.table_engine or 'InnoDB'} "
            f"DEFAULT CHARSET={self.charset} COLLATE={self.collation}"
        )
