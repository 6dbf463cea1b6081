"""Command line interface for the couchflow process registry."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, NoReturn, Optional

import typer

from couchflow.config import load_config
from couchflow.errors import CouchflowError, NotFoundError
from couchflow.export import BulkExporter
from couchflow.models import IndexDescriptor, ProcessDocument, ProcessState
from couchflow.service import ProcessRegistry
from couchflow.store import store_connector

app = typer.Typer(help="CLI for couchflow process registries")

# Command groups
process_app = typer.Typer(help="Commands for inspecting and updating processes")
index_app = typer.Typer(help="Commands for managing indexes")
db_app = typer.Typer(help="Commands for the configured database")

app.add_typer(process_app, name="process")
app.add_typer(index_app, name="index")
app.add_typer(db_app, name="db")


def get_registry(config_path: Optional[str] = None) -> ProcessRegistry:
    """Open a registry on the configured backing store."""
    return ProcessRegistry.from_config(load_config(config_path))


def get_exporter(config_path: Optional[str] = None) -> BulkExporter:
    """Build an exporter that connects to each database on demand."""
    config = load_config(config_path)
    return BulkExporter(
        store_connector(config=config), progress_interval=config.export.progress_interval
    )


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _open(ctx: typer.Context) -> ProcessRegistry:
    try:
        return get_registry((ctx.obj or {}).get("config"))
    except CouchflowError as exc:
        _fail(f"Cannot open store: {exc}")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", help="Path to YAML config"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
) -> None:
    """couchflow CLI entry point."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"config": config}


@process_app.command("show")
def process_show(ctx: typer.Context, process_id: str) -> None:
    """
    Show a process document with its full state history.

    Example:
        couchflow process show order-42
        # Output: Process order-42: failed
        #         Revision: 3-9f1c...
        #         - 2024-01-01 10:00:00+00:00 started
        #         - 2024-01-01 10:05:00+00:00 failed (timeout)
    """
    with _open(ctx) as registry:
        try:
            doc = registry.get(process_id)
        except NotFoundError:
            _fail("Process not found")
        except CouchflowError as exc:
            _fail(str(exc))

    typer.echo(f"Process {doc.id}: {doc.state.value}")
    typer.echo(f"Revision: {doc.revision}")
    typer.echo(f"Created: {doc.created_at}  Updated: {doc.updated_at}")
    if doc.description:
        typer.echo(f"Description: {doc.description}")
    if doc.error_message:
        typer.echo(f"Error: {doc.error_message}")
    if doc.metadata:
        typer.echo(f"Metadata: {json.dumps(doc.metadata)}")
    for change in doc.history:
        typer.echo(
            f"- {change.timestamp} {change.state.value}"
            + (f" ({change.error_message})" if change.error_message else "")
        )


@process_app.command("list")
def process_list(
    ctx: typer.Context,
    state: Optional[ProcessState] = typer.Option(None, help="Only list processes in this state"),
) -> None:
    """
    List processes with their current state.

    Example:
        couchflow process list --state running
        # Output: order-42    running    2024-01-01 10:00:00+00:00
    """
    with _open(ctx) as registry:
        try:
            docs = registry.list_by_state(state) if state else registry.list_all()
        except CouchflowError as exc:
            _fail(str(exc))

    if not docs:
        typer.echo("No processes found")
        return
    for doc in docs:
        typer.echo(f"{doc.id}\t{doc.state.value}\t{doc.updated_at}")


@process_app.command("record")
def process_record(
    ctx: typer.Context,
    process_id: str,
    state: ProcessState,
    description: str = typer.Option("", help="Description of the transition"),
    error: str = typer.Option("", help="Error message for failed transitions"),
) -> None:
    """Record a state transition, appending it to the process history."""
    doc = ProcessDocument(
        process_id=process_id,
        state=state,
        description=description,
        error_message=error,
    )
    with _open(ctx) as registry:
        try:
            result = registry.save(doc)
        except CouchflowError as exc:
            _fail(str(exc))
    typer.echo(f"Saved {result.id} at revision {result.rev}")


@process_app.command("delete")
def process_delete(ctx: typer.Context, process_id: str, revision: str) -> None:
    """Delete a process document at the given revision."""
    with _open(ctx) as registry:
        try:
            registry.delete(process_id, revision)
        except NotFoundError:
            _fail("Process not found")
        except CouchflowError as exc:
            _fail(str(exc))
    typer.echo(f"Deleted {process_id}")


@index_app.command("list")
def index_list(ctx: typer.Context) -> None:
    """List the indexes of the configured database."""
    with _open(ctx) as registry:
        try:
            indexes = registry.list_indexes()
        except CouchflowError as exc:
            _fail(str(exc))
    for info in indexes:
        typer.echo(f"{info.name}\t{info.type}\t{','.join(info.fields)}\t{info.design_doc or '-'}")


@index_app.command("ensure")
def index_ensure(
    ctx: typer.Context,
    fields: List[str],
    name: Optional[str] = typer.Option(None, help="Explicit index name"),
    index_type: str = typer.Option("json", "--type", help="Index type: json or text"),
) -> None:
    """Create an index on FIELDS unless an identical one exists."""
    descriptor = IndexDescriptor(fields=fields, name=name, type=index_type)
    with _open(ctx) as registry:
        try:
            created = registry.ensure_index(descriptor)
        except CouchflowError as exc:
            _fail(str(exc))
    typer.echo("Index created" if created else "Index already existed")


@index_app.command("delete")
def index_delete(ctx: typer.Context, design_doc: str, name: str) -> None:
    """Delete an index by design document and name."""
    with _open(ctx) as registry:
        try:
            registry.delete_index(design_doc, name)
        except CouchflowError as exc:
            _fail(str(exc))
    typer.echo(f"Deleted index {name}")


@db_app.command("info")
def db_info(ctx: typer.Context) -> None:
    """Show statistics for the configured database."""
    with _open(ctx) as registry:
        try:
            info = registry.database_info()
        except CouchflowError as exc:
            _fail(str(exc))
    for key, value in info.model_dump().items():
        typer.echo(f"{key}: {value}")


@app.command("export")
def export(
    ctx: typer.Context,
    database: str,
    output_dir: Optional[Path] = typer.Option(None, help="Directory to write into"),
) -> None:
    """
    Export every document of DATABASE to one JSON file per document.

    Example:
        couchflow export flow_processes --output-dir ./backup
        # Output: Exported 250 documents to backup/flow_processes (0 failed)
    """
    target = output_dir or Path(load_config((ctx.obj or {}).get("config")).export.output_dir)
    try:
        result = get_exporter((ctx.obj or {}).get("config")).export(database, target)
    except NotFoundError:
        _fail(f"Database {database} does not exist")
    except (CouchflowError, OSError) as exc:
        _fail(f"Export failed: {exc}")
    typer.echo(
        f"Exported {result.exported} documents to {result.output_dir} ({result.failed} failed)"
    )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
