"""Rendering of API responses and watch events for the kubeconn CLI.

Machine-readable JSON goes to stdout. Tables and status messages go to the
stderr console so piped output stays parseable.
"""

from __future__ import annotations

import json
import sys
from enum import Enum
from typing import Any

from rich.console import Console
from rich.table import Table

console = Console(stderr=True)


class OutputFormat(str, Enum):
    TABLE = "table"
    JSON = "json"


def print_output(
    data: list[dict[str, Any]] | dict[str, Any],
    fmt: OutputFormat = OutputFormat.TABLE,
    columns: list[str] | None = None,
    title: str | None = None,
) -> None:
    """Render resources or command results.

    Args:
        data: One record or a list of records.
        fmt: JSON for scripts, TABLE for a terminal.
        columns: Table columns; defaults to the keys of the first record.
        title: Heading shown above the table.
    """
    if fmt == OutputFormat.JSON:
        print_json(data)
    else:
        print_table(data, columns, title)


def print_json(data: Any, indent: int | None = 2) -> None:
    """Write JSON to stdout and flush. Watch output passes ``indent=None`` for one event per line."""
    json.dump(data, sys.stdout, indent=indent, default=str)
    sys.stdout.write("\n")
    sys.stdout.flush()


def print_table(
    data: list[dict[str, Any]] | dict[str, Any],
    columns: list[str] | None = None,
    title: str | None = None,
) -> None:
    """Render records as a Rich table on the stderr console."""
    records = [data] if isinstance(data, dict) else data
    if not records:
        console.print("[dim]No resources found.[/dim]")
        return

    headers = columns or list(records[0])
    table = Table(title=title)
    for header in headers:
        table.add_column(header, overflow="fold")
    for record in records:
        table.add_row(*(str(record.get(h, "")) for h in headers))
    console.print(table)


def summarize(obj: dict[str, Any]) -> dict[str, Any]:
    """Pick the kind, namespace, name and resourceVersion of a resource for display."""
    metadata = obj.get("metadata") or {}
    return {
        "kind": obj.get("kind", ""),
        "namespace": metadata.get("namespace", ""),
        "name": metadata.get("name", ""),
        "resourceVersion": metadata.get("resourceVersion", ""),
    }
