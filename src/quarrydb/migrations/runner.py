"""Applies and reverts migration artifacts, tracking them in a ledger table.

The ledger (``_migrations`` by default) stores one row per applied artifact
with the batch it was applied in. ``downgrade()`` reverts whole batches.
"""

from __future__ import annotations

import importlib.util
import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any, ClassVar

from quarrydb.core.config import QuarrySettings
from quarrydb.core.connection import fetch_rows
from quarrydb.core.types import MigrationStatus
from quarrydb.exceptions import MigrationError, MigrationTableNotFoundError, QuarryDBError
from quarrydb.migrations.reversal import ReversalStrategy
from quarrydb.migrations.seeder import Seeder, run_seeder
from quarrydb.migrations.writer import MigrationWriter, is_executable
from quarrydb.schema.synchronizer import SchemaSynchronizer

if TYPE_CHECKING:
    from quarrydb.core.connection import SQLExecutor
    from quarrydb.orm.model import Model

logger = logging.getLogger(__name__)


class Migration:
    """Base class for generated migration artifacts."""

    up_statements: ClassVar[list[str]] = []
    down_statements: ClassVar[list[str]] = []

    def up(self, executor: SQLExecutor) -> None:
        self._run(executor, self.up_statements)

    def down(self, executor: SQLExecutor) -> None:
        self._run(executor, self.down_statements)

    @staticmethod
    def _run(executor: SQLExecutor, statements: Sequence[str]) -> None:
        """Execute statements with foreign key checks suspended.

        Comment lines are skipped. Checks are restored before any failure
        propagates.
        """
        executable = [s for s in statements if is_executable(s)]
        if not executable:
            return
        with executor.constraints_disabled():
            for statement in executable:
                executor.execute(statement)


def load_migration(path: Path) -> Migration:
    """Import an artifact file and instantiate the Migration it defines."""
    spec = importlib.util.spec_from_file_location(f"quarrydb_migration_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise MigrationError(path.stem, f"cannot import {path}")

    module: ModuleType = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise MigrationError(path.stem, f"import failed: {e}") from e

    for value in vars(module).values():
        if (
            isinstance(value, type)
            and issubclass(value, Migration)
            and value is not Migration
            and value.__module__ == module.__name__
        ):
            return value()
    raise MigrationError(path.stem, "no Migration subclass defined")


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class MigrationRunner:
    """Runs migration artifacts from a directory against one executor."""

    def __init__(
        self,
        executor: SQLExecutor,
        settings: QuarrySettings | None = None,
        strategy: ReversalStrategy | None = None,
    ) -> None:
        self._executor = executor
        self._settings = settings or QuarrySettings()
        self._strategy = strategy

    @property
    def path(self) -> Path:
        return Path(self._settings.migrations_path)

    @property
    def table(self) -> str:
        return self._settings.migrations_table

    # === Ledger ===

    def ledger_exists(self) -> bool:
        return self._executor.table_exists(self.table)

    def ensure_ledger(self) -> None:
        """Create the ledger table if it does not exist."""
        if self.ledger_exists():
            return
        if getattr(self._executor, "is_sqlite", False):
            ddl = (
                f"CREATE TABLE IF NOT EXISTS `{self.table}` ("
                "`id` INTEGER PRIMARY KEY AUTOINCREMENT, "
                "`migration` VARCHAR(255) NOT NULL, "
                "`batch` INTEGER NOT NULL, "
                "`created_at` TIMESTAMP NULL)"
            )
        else:
            ddl = (
                f"CREATE TABLE IF NOT EXISTS `{self.table}` ("
                "`id` INT UNSIGNED NOT NULL AUTO_INCREMENT PRIMARY KEY, "
                "`migration` VARCHAR(255) NOT NULL, "
                "`batch` INT NOT NULL, "
                "`created_at` TIMESTAMP NULL DEFAULT CURRENT_TIMESTAMP"
                f") {self._settings.table_options}"
            )
        self._executor.execute(ddl)
        logger.info(f"Created migration ledger table {self.table}")

    def _require_ledger(self) -> None:
        if not self.ledger_exists():
            raise MigrationTableNotFoundError(self.table)

    def _applied_rows(self) -> list[dict[str, Any]]:
        return fetch_rows(
            self._executor,
            f"SELECT `id`, `migration`, `batch`, `created_at` FROM `{self.table}` ORDER BY `id` ASC",
        )

    def _next_batch(self) -> int:
        rows = fetch_rows(self._executor, f"SELECT MAX(`batch`) AS batch FROM `{self.table}`")
        current = rows[0]["batch"] if rows else None
        return int(current or 0) + 1

    # === Artifacts ===

    def migration_files(self) -> list[Path]:
        """Artifact files in application order (file names sort by timestamp)."""
        if not self.path.is_dir():
            return []
        return sorted(p for p in self.path.glob("*.py") if not p.name.startswith("_"))

    def pending(self) -> list[Path]:
        applied = {row["migration"] for row in self._applied_rows()} if self.ledger_exists() else set()
        return [p for p in self.migration_files() if p.stem not in applied]

    # === Operations ===

    def upgrade(self) -> list[str]:
        """Apply every pending artifact as one new batch.

        Returns:
            Names of the applied migrations, in order
        """
        self.ensure_ledger()
        pending = self.pending()
        if not pending:
            logger.info("No pending migrations")
            return []

        batch = self._next_batch()
        applied: list[str] = []
        for path in pending:
            migration = load_migration(path)
            logger.info(f"Migrating: {path.stem}")
            try:
                migration.up(self._executor)
            except QuarryDBError as e:
                raise MigrationError(path.stem, e.message) from e
            self._executor.execute(
                f"INSERT INTO `{self.table}` (`migration`, `batch`, `created_at`) VALUES (?, ?, ?)",
                [path.stem, batch, datetime.now().replace(microsecond=0).isoformat(sep=" ")],
            )
            applied.append(path.stem)
            logger.info(f"Migrated: {path.stem} (batch {batch})")
        return applied

    def downgrade(self, steps: int = 1) -> list[str]:
        """Revert the most recent ``steps`` batches, newest migration first.

        Returns:
            Names of the reverted migrations, in revert order

        Raises:
            MigrationTableNotFoundError: If nothing was ever migrated
        """
        self._require_ledger()
        rows = self._applied_rows()
        if not rows:
            logger.info("Nothing to roll back")
            return []

        batches = sorted({row["batch"] for row in rows}, reverse=True)[: max(steps, 1)]
        targets = sorted(
            (row for row in rows if row["batch"] in batches), key=lambda row: row["id"], reverse=True
        )
        files = {p.stem: p for p in self.migration_files()}

        reverted: list[str] = []
        for row in targets:
            name = row["migration"]
            path = files.get(name)
            if path is None:
                raise MigrationError(name, f"artifact not found in {self.path}")
            migration = load_migration(path)
            logger.info(f"Rolling back: {name}")
            try:
                migration.down(self._executor)
            except QuarryDBError as e:
                raise MigrationError(name, e.message) from e
            self._executor.execute(f"DELETE FROM `{self.table}` WHERE `id` = ?", [row["id"]])
            reverted.append(name)
            logger.info(f"Rolled back: {name}")
        return reverted

    def status(self) -> list[MigrationStatus]:
        """Applied and pending state of every known migration.

        Raises:
            MigrationTableNotFoundError: If the ledger table does not exist
        """
        self._require_ledger()
        applied = {row["migration"]: row for row in self._applied_rows()}

        statuses = [
            MigrationStatus(
                name=name,
                applied=True,
                batch=row["batch"],
                applied_at=_parse_timestamp(row["created_at"]),
            )
            for name, row in applied.items()
        ]
        statuses.extend(
            MigrationStatus(name=path.stem, applied=False)
            for path in self.migration_files()
            if path.stem not in applied
        )
        return statuses

    def generate(self, name: str, entities: Iterable[type[Model]]) -> Path | None:
        """Diff the entities against the live schema and write an artifact.

        Returns:
            The written artifact, or None when nothing executable changed
        """
        statements = SchemaSynchronizer(self._executor, self._settings).generate(entities)
        return MigrationWriter(self.path, self._strategy).write(name, statements)

    def seed(self, *seeders: str | type[Seeder]) -> list[str]:
        """Run seeders in the given order, each referenced by class or dotted path.

        Returns:
            Class names of the seeders that ran
        """
        return [run_seeder(seeder, self._executor) for seeder in seeders]
