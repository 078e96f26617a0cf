"""
CLI utility helpers — snapshot loading and output formatting.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
import yaml
from rich.console import Console
from rich.table import Table

from synapse_operator.core.errors import OperatorError
from synapse_operator.core.memory_store import InMemoryObjectStore
from synapse_operator.core.objects import Manifest
from synapse_operator.reconcile.testing import DriveResult

console = Console()
err_console = Console(stderr=True)


# ── Snapshot helpers ─────────────────────────────────────────────────────


def read_snapshot(path: Path) -> list[Manifest]:
    """Read manifests from a YAML file.

    Accepts multi-document YAML; a ``kind: List`` document (or any mapping
    with ``items``) contributes each of its items.
    """
    try:
        documents = list(yaml.safe_load_all(path.read_text(encoding="utf-8")))
    except yaml.YAMLError as e:
        err_console.print(f"[bold red]Error[/bold red]: cannot parse {path}: {e}")
        raise typer.Exit(code=1) from e

    manifests: list[Manifest] = []
    for doc in documents:
        if doc is None:
            continue
        if not isinstance(doc, dict):
            err_console.print(f"[bold red]Error[/bold red]: {path} holds a non-mapping document")
            raise typer.Exit(code=1)
        if isinstance(doc.get("items"), list):
            manifests.extend(doc["items"])
        else:
            manifests.append(doc)
    return manifests


def load_store(path: Path, install_kinds: list[str] | None = None) -> InMemoryObjectStore:
    """Seed an in-memory store from a snapshot file."""
    store = InMemoryObjectStore()
    for kind in install_kinds or []:
        store.register_kind(kind)
    try:
        store.load(read_snapshot(path))
    except OperatorError as e:
        err_console.print(f"[bold red]Error[/bold red]: cannot load {path}: {e.message}")
        raise typer.Exit(code=1) from e
    return store


def write_objects(path: Path, objects: list[Manifest]) -> None:
    path.write_text(yaml.safe_dump_all(objects, sort_keys=False), encoding="utf-8")


# ── Output helpers ───────────────────────────────────────────────────────


def drive_payload(drive: DriveResult, status: dict[str, Any] | None) -> dict[str, Any]:
    return {
        "kind": drive.kind,
        "key": str(drive.key),
        "settled": drive.settled,
        "runs": [result.to_dict() for result in drive.results],
        "status": status,
    }


def output_drive(drive: DriveResult, status: dict[str, Any] | None, *, as_json: bool = False) -> None:
    """Render the runs made for one Entity and its final status."""
    if as_json:
        console.print_json(json.dumps(drive_payload(drive, status), default=str))
        return

    table = Table(title=f"{drive.kind} {drive.key}", show_lines=False)
    table.add_column("Run", justify="right")
    table.add_column("Outcome")
    table.add_column("Stopped at")
    table.add_column("Steps", justify="right")
    table.add_column("Error", overflow="fold")
    for i, result in enumerate(drive.results, start=1):
        table.add_row(
            str(i),
            str(result.outcome.kind.value),
            result.terminal_step or "-",
            str(len(result.step_executions)),
            str(result.error) if result.error else "",
        )
    console.print(table)

    if not drive.settled:
        console.print(f"[yellow]Still requeueing after {drive.runs} runs[/yellow]")
    if status is None:
        console.print("[dim]Entity not found.[/dim]")
        return
    console.print(f"[bold]State:[/bold] {status.get('state', '-')}")
    if status.get("reason"):
        console.print(f"[bold]Reason:[/bold] {status['reason']}")


def output_manifests(objects: list[Manifest], *, as_json: bool = False) -> None:
    if as_json:
        console.print_json(json.dumps(objects, default=str))
        return
    if not objects:
        console.print("[dim]No objects.[/dim]")
        return
    typer.echo(yaml.safe_dump_all(objects, sort_keys=False), nl=False)
