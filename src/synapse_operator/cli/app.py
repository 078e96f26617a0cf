"""
Root Typer application for the synapse-operator CLI.

Both commands work on a YAML snapshot of cluster objects loaded into an
in-memory store, so they need no cluster:

- ``reconcile`` drives one Entity until it stops requeueing and reports
  every run.
- ``render`` does the same, then prints the child objects the Entity ended
  up controlling.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path

import typer
from typer import Typer

from synapse_operator import __version__
from synapse_operator.cli.utils import (
    err_console,
    load_store,
    output_drive,
    output_manifests,
    write_objects,
)
from synapse_operator.controllers import ENTITY_TYPES, build_controllers
from synapse_operator.core.errors import NotFoundError
from synapse_operator.core.logging import configure_from_settings
from synapse_operator.core.memory_store import InMemoryObjectStore
from synapse_operator.core.objects import Manifest, ObjectKey, controller_of
from synapse_operator.core.settings import get_settings
from synapse_operator.reconcile.testing import DriveResult, LocalRuntime

app = Typer(
    name="synapse-operator",
    help="synapse-operator — desired-state reconciliation for Synapse and its bridges.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("synapse-operator")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"synapse-operator {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """synapse-operator CLI — reconcile and render Entities from a snapshot."""


# ── Shared plumbing ──────────────────────────────────────────────────────


def _check_kind(kind: str) -> str:
    if kind not in ENTITY_TYPES:
        raise typer.BadParameter(f"expected one of {', '.join(sorted(ENTITY_TYPES))}", param_hint="--kind")
    return kind


def _drive(
    snapshot: Path,
    kind: str,
    key: ObjectKey,
    install_kinds: list[str],
    max_runs: int,
) -> tuple[InMemoryObjectStore, DriveResult]:
    settings = get_settings()
    configure_from_settings(settings)

    store = load_store(snapshot, install_kinds)
    runtime = LocalRuntime(build_controllers(store, settings), store)
    return store, runtime.drive(kind, key, max_runs=max_runs)


def _entity(store: InMemoryObjectStore, kind: str, key: ObjectKey) -> Manifest | None:
    try:
        return store.get(kind, key)
    except NotFoundError:
        return None


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("reconcile")
def reconcile(
    snapshot: Path = typer.Argument(..., exists=True, dir_okay=False, help="YAML snapshot of cluster objects"),
    kind: str = typer.Option(..., "--kind", "-k", callback=_check_kind, help="Entity kind"),
    name: str = typer.Option(..., "--name", "-n", help="Entity name"),
    namespace: str = typer.Option("default", "--namespace", help="Entity namespace"),
    install_kind: list[str] = typer.Option(
        [], "--install-kind", help="Treat this kind as installed (repeatable), e.g. PostgresCluster"
    ),
    max_runs: int = typer.Option(10, "--max-runs", min=1, help="Stop after this many immediate requeues"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the resulting objects as YAML"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Drive one Entity until it stops requeueing and report each run."""
    key = ObjectKey(namespace=namespace, name=name)
    store, drive = _drive(snapshot, kind, key, install_kind, max_runs)

    entity = _entity(store, kind, key)
    output_drive(drive, entity.get("status") if entity is not None else None, as_json=json_out)

    if output is not None:
        write_objects(output, store.objects())
        err_console.print(f"[dim]Wrote {len(store.objects())} objects to {output}[/dim]")


@app.command("render")
def render(
    snapshot: Path = typer.Argument(..., exists=True, dir_okay=False, help="YAML snapshot of cluster objects"),
    kind: str = typer.Option(..., "--kind", "-k", callback=_check_kind, help="Entity kind"),
    name: str = typer.Option(..., "--name", "-n", help="Entity name"),
    namespace: str = typer.Option("default", "--namespace", help="Entity namespace"),
    install_kind: list[str] = typer.Option([], "--install-kind", help="Treat this kind as installed (repeatable)"),
    max_runs: int = typer.Option(10, "--max-runs", min=1),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Print the child objects an Entity controls after reconciling it."""
    key = ObjectKey(namespace=namespace, name=name)
    store, _ = _drive(snapshot, kind, key, install_kind, max_runs)

    entity = _entity(store, kind, key)
    if entity is None:
        err_console.print(f"[bold red]Error[/bold red]: {kind} {key} not found in {snapshot}")
        raise typer.Exit(code=1)

    uid = entity["metadata"]["uid"]
    owned = [obj for obj in store.objects() if (controller_of(obj) or {}).get("uid") == uid]
    output_manifests(owned, as_json=json_out)
