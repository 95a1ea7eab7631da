"""CLI commands over the lockfile store."""

from __future__ import annotations

import asyncio
import importlib
from typing import TYPE_CHECKING, Annotated

if TYPE_CHECKING:  # pragma: no cover - typing only
    import typer
else:  # pragma: no cover - runtime fallback for typing
    typer = importlib.import_module("typer")

from rich.table import Table

from bundle_registry.cli.options import (
    BundleIdArgument,
    JsonFlag,
    RootOption,
    console,
    emit_json,
    fail,
    open_store,
)
from bundle_registry.core.errors import BundleRegistryError
from bundle_registry.install.installer import ScopedInstaller
from bundle_registry.lockfile.store import parse_commit_mode

ModeArgument = Annotated[str, typer.Argument(help="Target commit mode (commit or local-only).")]


def list_bundles(root: RootOption = None, json_output: JsonFlag = False) -> None:
    """List bundles recorded in both lockfiles."""

    store = open_store(root)
    report = asyncio.run(store.get_installed_bundles())

    if json_output:
        emit_json(report.to_json_dict())
    else:
        table = Table(title="Installed bundles")
        table.add_column("Bundle")
        table.add_column("Version")
        table.add_column("Mode")
        table.add_column("Source")
        table.add_column("Files")
        for bundle in report.bundles:
            files = str(len(bundle.files))
            if bundle.files_missing:
                files += " [yellow](missing)[/yellow]"
            table.add_row(
                bundle.bundle_id,
                bundle.version,
                bundle.commit_mode.value,
                bundle.source_id,
                files,
            )
        console.print(table)
        for bundle_id in report.conflicts:
            typer.secho(
                f'Bundle "{bundle_id}" exists in both lockfiles; remove it from one of them.',
                err=True,
                fg=typer.colors.RED,
            )

    if report.conflicts:
        raise typer.Exit(code=1)


def validate(root: RootOption = None, json_output: JsonFlag = False) -> None:
    """Validate the lockfiles against the lockfile schema."""

    store = open_store(root)
    results = asyncio.run(store.validate())

    if json_output:
        emit_json([result.to_json_dict() for result in results])
    else:
        for result in results:
            colour = typer.colors.GREEN if result.valid else typer.colors.RED
            typer.secho(f"{result.path}: {'valid' if result.valid else 'invalid'}", fg=colour)
            for error in result.errors:
                typer.secho(f"  error: {error}", fg=typer.colors.RED)
            for warning in result.warnings:
                typer.secho(f"  warning: {warning}", fg=typer.colors.YELLOW)

    if not all(result.valid for result in results):
        raise typer.Exit(code=1)


def remove(
    bundle_id: BundleIdArgument, root: RootOption = None, json_output: JsonFlag = False
) -> None:
    """Remove a bundle's lockfile entry without touching its files."""

    store = open_store(root)
    removed = asyncio.run(store.remove(bundle_id))

    if json_output:
        emit_json({"bundleId": bundle_id, "removed": removed})
    elif removed:
        typer.secho(f"Removed {bundle_id} from the lockfile", fg=typer.colors.GREEN)
    else:
        typer.secho(f"Bundle {bundle_id} is not recorded", fg=typer.colors.YELLOW)


def switch_mode(
    bundle_id: BundleIdArgument,
    mode: ModeArgument,
    root: RootOption = None,
    json_output: JsonFlag = False,
) -> None:
    """Move a bundle between the tracked and local lockfiles."""

    store = open_store(root)
    installer = ScopedInstaller(store)

    async def run() -> list[str]:
        new_mode = parse_commit_mode(mode)
        paths = await installer.switch_commit_mode(bundle_id, new_mode)
        await store.update_commit_mode(bundle_id, new_mode)
        return paths

    try:
        paths = asyncio.run(run())
    except BundleRegistryError as exc:
        fail(exc, json_output)

    if json_output:
        emit_json({"bundleId": bundle_id, "commitMode": mode, "paths": paths})
    else:
        typer.secho(f"Switched {bundle_id} to {mode}", fg=typer.colors.GREEN)


def detect_modified(
    bundle_id: BundleIdArgument, root: RootOption = None, json_output: JsonFlag = False
) -> None:
    """Show recorded files that were modified or deleted since installation."""

    store = open_store(root)
    modified = asyncio.run(store.detect_modified_files(bundle_id))

    if json_output:
        emit_json([info.to_json_dict() for info in modified])
        return
    if not modified:
        typer.secho(f"No modified files for {bundle_id}", fg=typer.colors.GREEN)
        return
    for info in modified:
        typer.secho(f"{info.modification_type:>8}  {info.path}", fg=typer.colors.YELLOW)
