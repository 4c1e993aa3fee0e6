"""Migration commands: make, up, down, status, seed."""

import importlib
from typing import Annotated

import typer

from quarrydb.cli.context import CLIContext
from quarrydb.cli.output import OutputFormatter
from quarrydb.migrations.runner import MigrationRunner
from quarrydb.orm.model import Model
from quarrydb.schema.registry import registry
from quarrydb.schema.synchronizer import SchemaSynchronizer

# Create migrate subcommand group
app = typer.Typer(help="Generate, apply and revert schema migrations")


def import_entities(modules: list[str]) -> list[type[Model]]:
    """Import entity modules and return the entity classes they define."""
    names = []
    for module_name in modules:
        module = importlib.import_module(module_name)
        names.append(module.__name__)
    return [
        cls
        for cls in registry.registered()
        if any(cls.__module__ == name or cls.__module__.startswith(f"{name}.") for name in names)
    ]


@app.command()
def make(
    ctx: typer.Context,
    name: Annotated[
        str,
        typer.Argument(help="Migration name, e.g. create_users_table"),
    ] = "auto_generated_diff",
    models: Annotated[
        list[str] | None,
        typer.Option("--models", "-m", help="Module defining entity classes (repeatable)"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Print the statements without writing a file"),
    ] = False,
) -> None:
    """Diff entity classes against the database and write a migration.

    Examples:

        quarrydb migrate make create_users --models app.models
        quarrydb migrate make --models app.models --dry-run
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        if not models:
            raise typer.BadParameter("at least one --models module is required", param_hint="--models")
        entities = import_entities(models)
        if dry_run:
            statements = SchemaSynchronizer(cli_ctx.get_db(), cli_ctx.settings).generate(entities)
            formatter.print_statements(f"Pending schema changes for {len(entities)} entities", statements)
            return

        path = MigrationRunner(cli_ctx.get_db(), cli_ctx.settings).generate(name, entities)
        if path is None:
            formatter.print_success("Schema is up to date; no migration written", {"entities": len(entities)})
        else:
            formatter.print_success("Migration written", {"file": str(path), "entities": len(entities)})

    except typer.BadParameter:
        raise
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command()
def up(
    ctx: typer.Context,
) -> None:
    """Apply all pending migrations as one batch.

    Examples:

        quarrydb migrate up
        quarrydb --database mysql://root@localhost/app migrate up
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        applied = MigrationRunner(cli_ctx.get_db(), cli_ctx.settings).upgrade()
        if applied:
            formatter.print_success(f"Applied {len(applied)} migration(s)", {"migrations": applied})
        else:
            formatter.print_success("Nothing to migrate", {"migrations": []})

    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command()
def down(
    ctx: typer.Context,
    steps: Annotated[
        int,
        typer.Option("--steps", "-s", help="Number of batches to roll back"),
    ] = 1,
) -> None:
    """Roll back the most recent migration batch.

    Examples:

        quarrydb migrate down
        quarrydb migrate down --steps 2
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        reverted = MigrationRunner(cli_ctx.get_db(), cli_ctx.settings).downgrade(steps)
        if reverted:
            formatter.print_success(f"Rolled back {len(reverted)} migration(s)", {"migrations": reverted})
        else:
            formatter.print_success("Nothing to roll back", {"migrations": []})

    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command()
def status(
    ctx: typer.Context,
) -> None:
    """Show applied and pending migrations.

    Examples:

        quarrydb migrate status
        quarrydb --json migrate status
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        statuses = MigrationRunner(cli_ctx.get_db(), cli_ctx.settings).status()
        rows = [
            {
                "name": s.name,
                "status": "applied" if s.applied else "pending",
                "batch": s.batch,
                "applied_at": s.applied_at,
            }
            for s in statuses
        ]
        formatter.print_table("Migrations", rows, ["name", "status", "batch", "applied_at"])

    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command()
def seed(
    ctx: typer.Context,
    seeders: Annotated[
        list[str],
        typer.Argument(help="Seeder classes by dotted path, e.g. app.seeders.RoleSeeder"),
    ],
) -> None:
    """Run seeders in order. Entity classes are bound to the database while they run.

    Examples:

        quarrydb migrate seed app.seeders.RoleSeeder app.seeders.UserSeeder
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        db = cli_ctx.get_db()
        Model.set_connection(db)
        try:
            ran = MigrationRunner(db, cli_ctx.settings).seed(*seeders)
        finally:
            Model.set_connection(None)
        formatter.print_success(f"Ran {len(ran)} seeder(s)", {"seeders": ran})

    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()
