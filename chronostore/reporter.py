"""
Console rendering of entities and effective settings with rich tables.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from chronostore.config import Settings
from chronostore.domain.models import CommonState, Entity
from chronostore.persistence.type_mapper import describe

# Shown first, in this order; the record type's own attributes follow.
TEMPORAL_COLUMNS = ["rid", "id", "cf", "df", "arsd", "ared", "euid", "esid", "tid"]


def state_to_dict(state: CommonState) -> Dict[str, Any]:
    """Dict of one state's persisted attributes, in column order."""
    table = describe(type(state))
    return {column.field_name: getattr(state, column.field_name, None) for column in table.columns}


def entity_to_dict(entity: Entity) -> Dict[str, Any]:
    return {
        "entity_id": entity.entity_id,
        "current": state_to_dict(entity.current) if entity.current is not None else None,
        "history": [state_to_dict(state) for state in entity.history],
    }


def _format(value: Any) -> str:
    if value is None:
        return "[dim]-[/dim]"
    if isinstance(value, bool):
        return "✔" if value else ""
    return str(value)


def print_entity(entity: Entity, console: Optional[Console] = None) -> None:
    """
    Render every state of one entity, current first, as a rich table.
    """
    console = console or Console()
    states = entity.states
    if not states:
        console.print(f"[yellow]Entity {entity.entity_id} has no states.[/yellow]")
        return

    model = type(states[0])
    table_descriptor = describe(model)
    attributes = [
        column.field_name
        for column in table_descriptor.columns
        if column.field_name not in TEMPORAL_COLUMNS
    ]

    table = Table(
        title=f"{model.__name__} entity {entity.entity_id}",
        box=box.ROUNDED,
        caption="Current state first, then history",
    )
    for name in TEMPORAL_COLUMNS:
        table.add_column(name, justify="right", style="cyan" if name in ("rid", "id") else None)
    for name in attributes:
        table.add_column(name, style="green")

    rows: List[Dict[str, Any]] = [state_to_dict(state) for state in states]
    for row in rows:
        table.add_row(*[_format(row.get(name)) for name in TEMPORAL_COLUMNS + attributes])

    console.print(table)


def print_settings(settings: Settings, console: Optional[Console] = None) -> None:
    """Render the effective configuration, passwords masked."""
    console = console or Console()
    table = Table(title="chronostore settings", box=box.ROUNDED)
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")

    for name, value in settings.model_dump().items():
        shown = "********" if "password" in name and value else value
        table.add_row(name, str(shown))
    console.print(table)


__all__ = ["entity_to_dict", "print_entity", "print_settings", "state_to_dict"]
