from __future__ import annotations

import importlib
import json
import sys
from typing import List

import typer

from chronostore.config import get_settings
from chronostore.infrastructure.db_factory import ConnectionSource
from chronostore.persistence.errors import MappingError, SchemaError
from chronostore.persistence.schema import SchemaSynchronizer
from chronostore.persistence.statements import StatementEngine
from chronostore.persistence.type_mapper import TypeCatalog, describe, is_persisted
from chronostore.reporter import entity_to_dict, print_entity, print_settings
from chronostore.services.defaults import SystemService, TenantService, check_default_entries
from chronostore.services.versioning import TemporalService
from chronostore.utils.logging import configure_logging

app = typer.Typer(help="chronostore CLI.")


def load_model(path: str) -> type:
    """
    Import a record type given as `package.module:ClassName`.
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise typer.BadParameter(f"Expected 'package.module:ClassName', got '{path}'")
    try:
        model = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as exc:
        raise typer.BadParameter(f"Cannot import '{path}': {exc}") from exc
    try:
        describe(model)
    except MappingError as exc:
        raise typer.BadParameter(str(exc)) from exc
    return model


def resolve_model(name: str, catalog: TypeCatalog) -> type:
    """A registered type by class or table name, or an importable `module:Class` path."""
    model = catalog.get(name) if ":" not in name else load_model(name)
    if model is None:
        raise typer.BadParameter(
            f"Unknown record type '{name}'; use a registered name or 'package.module:ClassName'"
        )
    if not is_persisted(model):
        raise typer.BadParameter(f"Record type '{name}' is excluded from persistence")
    return model


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"pool={settings.db_pool_min_size}-{settings.db_pool_max_size} "
        f"atomic_writes={settings.atomic_writes} tenant={settings.default_tenant_id}"
    )
    print_settings(settings)


@app.command()
def sync(
    model: List[str] = typer.Option(
        [],
        "--model",
        "-m",
        help="Record type to register, as package.module:ClassName (repeatable).",
    ),
) -> None:
    """
    Create missing tables and columns, then the default system and tenant entries.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    catalog = TypeCatalog(load_model(path) for path in model)

    with ConnectionSource(settings) as source:
        try:
            summary = SchemaSynchronizer(source, catalog, settings).bootstrap()
        except SchemaError as exc:
            typer.echo(f"Schema bootstrap failed: {exc}", err=True)
            raise typer.Exit(code=1) from exc
        versioning = TemporalService(StatementEngine(source), settings)
        summary["default_entries"] = check_default_entries(
            SystemService(versioning), TenantService(versioning), settings
        )
    typer.echo(json.dumps(summary, indent=2))


@app.command()
def show(
    model: str = typer.Argument(..., help="Record type: registered name or package.module:ClassName."),
    entity_id: int = typer.Argument(..., help="Entity id to show."),
    table: bool = typer.Option(False, "--table", "-t", help="Render a table instead of JSON."),
) -> None:
    """
    Print an entity's current state and history.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    record_type = resolve_model(model, TypeCatalog())

    with ConnectionSource(settings) as source:
        entity = TemporalService(StatementEngine(source), settings).get_entity_by_id(
            record_type, entity_id
        )

    if entity is None:
        typer.echo(f"No {record_type.__name__} entity with id {entity_id}.", err=True)
        raise typer.Exit(code=1)
    if table:
        print_entity(entity)
    else:
        typer.echo(json.dumps(entity_to_dict(entity), indent=2, default=str))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
