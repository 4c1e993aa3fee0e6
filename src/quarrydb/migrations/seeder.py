"""Seeders: classes that fill tables with initial or sample rows.

A seeder is referenced by dotted path, e.g. ``app.seeders.RoleSeeder`` or
``app.seeders:RoleSeeder``.
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from quarrydb.exceptions import SeederError

if TYPE_CHECKING:
    from quarrydb.core.connection import SQLExecutor

logger = logging.getLogger(__name__)


class Seeder:
    """Base class for seeders. Subclasses implement ``run``."""

    def run(self, executor: SQLExecutor) -> None:
        raise NotImplementedError


def resolve_seeder(reference: str | type[Seeder]) -> Seeder:
    """Import and instantiate a seeder class.

    Raises:
        SeederError: If the reference cannot be imported or is not a Seeder subclass
    """
    if isinstance(reference, str):
        module_name, _, class_name = reference.replace(":", ".").rpartition(".")
        if not module_name:
            raise SeederError(reference, "expected a dotted path such as 'app.seeders.RoleSeeder'")
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            raise SeederError(reference, f"cannot import module '{module_name}': {e}") from e
        cls = getattr(module, class_name, None)
        if cls is None:
            raise SeederError(reference, f"module '{module_name}' has no attribute '{class_name}'")
    else:
        cls = reference

    if not (isinstance(cls, type) and issubclass(cls, Seeder)):
        raise SeederError(str(reference), "must be a subclass of quarrydb.migrations.seeder.Seeder")
    return cls()


def run_seeder(reference: str | type[Seeder], executor: SQLExecutor) -> str:
    """Run one seeder against an executor and return its class name."""
    seeder = resolve_seeder(reference)
    name = type(seeder).__name__
    logger.info(f"Seeding: {name}")
    seeder.run(executor)
    logger.info(f"Seeded: {name}")
    return name
