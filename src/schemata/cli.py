"""
Command-line interface for schemata.
"""

import asyncio
import sys
from contextlib import asynccontextmanager
from functools import wraps
from pathlib import Path
from typing import AsyncIterator

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import DatabaseConnection, SchemataConfig, StorageConfig, configure_logging
from .database.metadata import MetadataManager
from .exceptions import ConfigurationError, SchemataError
from .schema.impact import is_compatible_type_change
from .schema.models import ColumnType, GlobalSchema
from .schema.service import SchemaService
from .store.factory import StoreFactory


console = Console()


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SchemataError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {e}")
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


def _load_config(path: str) -> SchemataConfig:
    config = SchemataConfig.from_yaml(path)
    config.validate_config()
    ctx = click.get_current_context(silent=True)
    debug = bool(ctx and ctx.obj and ctx.obj.get("debug"))
    configure_logging(config.logging, debug=debug or config.debug)
    return config


@asynccontextmanager
async def _open_service(config: SchemataConfig) -> AsyncIterator[SchemaService]:
    """Build the stores for the configured backend and a service over them."""
    stores = StoreFactory.create(config)
    if stores.pool is not None:
        await stores.pool.initialize()
    try:
        yield SchemaService(stores.schemas, stores.transactions, config=config)
    finally:
        if stores.pool is not None:
            await stores.pool.close()


config_option = click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """schemata: versioned global schemas with staged transactions."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="schemata-config.yaml",
    help="Output configuration file path",
)
@click.option(
    "--backend",
    type=click.Choice(["memory", "postgres"]),
    default="postgres",
    help="Storage backend to configure",
)
@handle_errors
def init(output: str, backend: str):
    """Initialize a new schemata configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    config = _create_default_config(backend)
    config.to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the configuration file with your database details")
    console.print(f"2. Run: schemata validate-config -c {output}")
    if backend == "postgres":
        console.print(f"3. Run: schemata setup-db -c {output}")


@main.command()
@config_option
@handle_errors
def validate_config(config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        schemata_config = SchemataConfig.from_yaml(config)
        schemata_config.validate_config()
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)

    console.print("[green]✓[/green] Configuration is valid")
    _display_config_summary(schemata_config)


@main.command()
@config_option
@handle_errors
def setup_db(config: str):
    """Create the schema and transaction tables."""
    schemata_config = _load_config(config)
    if schemata_config.storage.backend != "postgres":
        console.print("[yellow]Storage backend is not postgres; nothing to set up[/yellow]")
        return

    async def run_setup():
        stores = StoreFactory.create(schemata_config)
        async with stores.pool:
            manager = MetadataManager(
                stores.pool,
                schema_table=schemata_config.storage.schema_table,
                transaction_table=schemata_config.storage.transaction_table,
            )
            results = await manager.setup_tables()
            report = await manager.check_integrity()
        return results, report

    results, report = asyncio.run(run_setup())

    for table in results["tables_created"]:
        console.print(f"[green]✓[/green] Created table {table}")
    for table in results["tables_existing"]:
        console.print(f"[blue]•[/blue] Table {table} already exists")
    for error in results["errors"]:
        console.print(f"[red]✗[/red] {error}")

    if results["errors"] or not report["is_healthy"]:
        sys.exit(1)


@main.command()
@config_option
@click.argument("schema_id")
@handle_errors
def show(config: str, schema_id: str):
    """Show a schema and its columns."""
    schemata_config = _load_config(config)

    async def run_show():
        async with _open_service(schemata_config) as service:
            return await service.get_by_id(schema_id)

    result = asyncio.run(run_show())
    result.raise_for_error()
    _display_schema(result.schema)


@main.command()
@config_option
@click.argument("schema_id")
@handle_errors
def history(config: str, schema_id: str):
    """List the versions of a schema lineage, newest first."""
    schemata_config = _load_config(config)

    async def run_history():
        async with _open_service(schemata_config) as service:
            return await service.get_history(schema_id)

    result = asyncio.run(run_history())
    result.raise_for_error()

    table = Table(title=f"History of {result.schema.name}")
    table.add_column("Version", style="cyan", justify="right")
    table.add_column("Id", style="magenta")
    table.add_column("Columns", style="green", justify="right")
    table.add_column("Active", style="yellow")
    table.add_column("Created", style="white")

    for schema in result.schemas:
        table.add_row(
            str(schema.version),
            schema.id,
            str(len(schema.columns)),
            "yes" if schema.is_active else "",
            schema.created_at.isoformat(timespec="seconds"),
        )

    console.print(table)


@main.command()
@config_option
@click.argument("schema_id")
@handle_errors
def transactions(config: str, schema_id: str):
    """List the transactions opened against a schema."""
    schemata_config = _load_config(config)

    async def run_transactions():
        async with _open_service(schemata_config) as service:
            return await service.transactions.get_transactions_for_schema(schema_id)

    found = asyncio.run(run_transactions())
    if not found:
        console.print(f"[yellow]No transactions for schema {schema_id}[/yellow]")
        return

    table = Table(title=f"Transactions on {schema_id}")
    table.add_column("Id", style="cyan")
    table.add_column("User", style="magenta")
    table.add_column("Status", style="green")
    table.add_column("Operations", style="yellow", justify="right")
    table.add_column("Started", style="white")
    table.add_column("Error", style="red")

    for transaction in found:
        table.add_row(
            transaction.id,
            transaction.user_id,
            transaction.status.value,
            str(len(transaction.operations)),
            transaction.started_at.isoformat(timespec="seconds"),
            transaction.error_message or "",
        )

    console.print(table)


@main.command()
@click.argument("from_type", type=click.Choice([t.value for t in ColumnType]))
@click.argument("to_type", type=click.Choice([t.value for t in ColumnType]))
def check_type(from_type: str, to_type: str):
    """Check whether a column type change is a safe widening."""
    if is_compatible_type_change(from_type, to_type):
        console.print(f"[green]✓[/green] {from_type} -> {to_type} is compatible")
    else:
        console.print(f"[red]✗[/red] {from_type} -> {to_type} is a breaking change")


def _create_default_config(backend: str) -> SchemataConfig:
    """Create a default configuration for the chosen backend."""
    storage = StorageConfig(backend=backend)
    if backend == "postgres":
        storage.connection = DatabaseConnection(
            host="${POSTGRES_HOST}",
            database="${POSTGRES_DB}",
            user="${POSTGRES_USER}",
            password="${POSTGRES_PASSWORD}",
        )
    return SchemataConfig(storage=storage)


def _display_schema(schema: GlobalSchema):
    """Display a schema header and its column table."""
    status = "[green]active[/green]" if schema.is_active else "[dim]inactive[/dim]"
    console.print(f"\n[bold]{schema.name}[/bold] v{schema.version} ({status})")
    console.print(f"Id: {schema.id}")
    if schema.project_id:
        console.print(f"Project: {schema.project_id}")
    if schema.previous_version_id:
        console.print(f"Previous version: {schema.previous_version_id}")
    if schema.description:
        console.print(schema.description)

    table = Table(title="Columns")
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Flags", style="yellow")
    table.add_column("Rules", style="green", justify="right")

    for column in schema.columns:
        flags = []
        if column.is_required:
            flags.append("required")
        if column.is_primary_key:
            flags.append("pk")
        if column.is_foreign_key:
            flags.append(f"fk -> {column.references_table}.{column.references_column}")
        table.add_row(
            column.name,
            column.type.value,
            ", ".join(flags),
            str(len(column.validation_rules)),
        )

    console.print(table)


def _display_config_summary(config: SchemataConfig):
    """Display a summary of the configuration."""
    console.print("\n[blue]Configuration Summary[/blue]")

    table = Table(title="Storage")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    storage = config.storage
    table.add_row("Backend", storage.backend)
    if storage.connection:
        table.add_row("Host", storage.connection.host)
        table.add_row("Database", storage.connection.database)
        table.add_row("Pool", f"{storage.min_pool_size}-{storage.max_pool_size}")
    table.add_row("Schema table", storage.schema_table)
    table.add_row("Transaction table", storage.transaction_table)
    console.print(table)

    tx_table = Table(title="Transactions")
    tx_table.add_column("Setting", style="cyan")
    tx_table.add_column("Value", style="green")
    tx_table.add_row("Max operations", str(config.transactions.max_operations))
    tx_table.add_row("New version on commit", str(config.transactions.create_new_version))
    tx_table.add_row("Activate on commit", str(config.transactions.activate_on_commit))
    console.print(tx_table)


if __name__ == "__main__":
    main()
