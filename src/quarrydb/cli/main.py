"""QuarryDB CLI - Main entry point."""

from typing import Annotated

import typer

import quarrydb
from quarrydb.cli.context import CLIContext
from quarrydb.core.config import QuarrySettings, get_database_url

# Create main Typer app
app = typer.Typer(
    name="quarrydb",
    help="QuarryDB CLI - schema synchronization and migrations",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    database: Annotated[
        str | None,
        typer.Option(
            "--database",
            "-d",
            envvar="QUARRYDB_URL",
            help="Database URL (MySQL/MariaDB or SQLite)",
        ),
    ] = None,
    migrations_path: Annotated[
        str | None,
        typer.Option(
            "--path",
            "-p",
            envvar="QUARRYDB_MIGRATIONS_PATH",
            help="Directory holding migration files",
        ),
    ] = None,
    echo: Annotated[
        bool,
        typer.Option(
            "--echo",
            "-e",
            help="Echo SQL statements to console",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            "-j",
            help="Output as JSON (machine-readable)",
        ),
    ] = False,
) -> None:
    """Initialize CLI context with global options."""
    settings = QuarrySettings.from_env(
        database_url=get_database_url(database),
        migrations_path=migrations_path,
        echo=echo or None,
    )

    cli_ctx = CLIContext(settings=settings, json_output=json_output)

    # Store in Typer context for command access
    ctx.obj = cli_ctx


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"QuarryDB v{quarrydb.__version__}")


# Register command groups
from quarrydb.cli.commands import migrate  # noqa: E402

app.add_typer(migrate.app, name="migrate")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
