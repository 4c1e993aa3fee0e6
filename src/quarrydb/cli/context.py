"""CLI context management for database connections and shared state."""

from dataclasses import dataclass, field

from quarrydb.core.config import QuarrySettings
from quarrydb.core.connection import DatabaseConnection


@dataclass
class CLIContext:
    """Shared context for CLI commands.

    Manages database connection lifecycle and output preferences.
    """

    settings: QuarrySettings
    json_output: bool
    _db: DatabaseConnection | None = field(default=None, init=False, repr=False)

    @property
    def database_url(self) -> str:
        return self.settings.database_url

    def get_db(self) -> DatabaseConnection:
        """Get or create database connection (lazy initialization).

        Returns:
            DatabaseConnection instance
        """
        if self._db is None:
            self._db = DatabaseConnection(self.settings.database_url, echo=self.settings.echo)
        return self._db

    def close(self) -> None:
        """Close database connection if open."""
        if self._db is not None:
            self._db.close()
            self._db = None
