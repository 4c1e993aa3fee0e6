"""Migration artifacts: writing, reversal and execution."""

from quarrydb.migrations.reversal import RegexReversalStrategy, ReversalStrategy, derive_down_statements
from quarrydb.migrations.runner import Migration, MigrationRunner
from quarrydb.migrations.seeder import Seeder
from quarrydb.migrations.writer import MigrationWriter

__all__ = [
    "Migration",
    "MigrationRunner",
    "MigrationWriter",
    "ReversalStrategy",
    "RegexReversalStrategy",
    "Seeder",
    "derive_down_statements",
]
