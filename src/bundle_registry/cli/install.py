"""CLI commands over the scoped installer."""

from __future__ import annotations

import asyncio
import importlib
from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

if TYPE_CHECKING:  # pragma: no cover - typing only
    import typer
else:  # pragma: no cover - runtime fallback for typing
    typer = importlib.import_module("typer")

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
from bundle_registry.install.installer import BundleOrigin, ScopedInstaller

BundlePathArgument = Annotated[
    Path, typer.Argument(help="Directory holding the bundle and its deployment manifest.")
]
BundleIdOption = Annotated[str, typer.Option("--bundle-id", help="Bundle identifier.")]
ModeOption = Annotated[
    str, typer.Option("--mode", help="Commit mode (commit or local-only).")
]
SourceIdOption = Annotated[str, typer.Option("--source-id", help="Source identifier.")]
SourceTypeOption = Annotated[
    str, typer.Option("--source-type", help="Source type (github, gitlab, local...).")
]
SourceUrlOption = Annotated[str, typer.Option("--source-url", help="Source URL.")]
VersionOption = Annotated[
    str | None,
    typer.Option("--version", help="Bundle version (defaults to the manifest's)."),
]


def install(
    bundle_path: BundlePathArgument,
    bundle_id: BundleIdOption,
    source_id: SourceIdOption,
    source_type: SourceTypeOption,
    source_url: SourceUrlOption,
    mode: ModeOption = "commit",
    version: VersionOption = None,
    root: RootOption = None,
    json_output: JsonFlag = False,
) -> None:
    """Install a fetched bundle and record it in the lockfile."""

    installer = ScopedInstaller(open_store(root))
    origin = BundleOrigin(
        source_id=source_id,
        source_type=source_type,
        source={"type": source_type, "url": source_url},
        version=version,
    )

    try:
        result = asyncio.run(installer.sync_bundle(bundle_id, bundle_path, mode, origin))
    except BundleRegistryError as exc:
        fail(exc, json_output)

    if json_output:
        emit_json(
            {
                "bundleId": result.bundle_id,
                "commitMode": result.commit_mode.value,
                "installedPaths": result.installed_paths,
                "recorded": result.recorded,
            }
        )
        return
    typer.secho(
        f"Installed {len(result.installed_paths)} files for {bundle_id}",
        fg=typer.colors.GREEN,
    )


def uninstall(
    bundle_id: BundleIdArgument, root: RootOption = None, json_output: JsonFlag = False
) -> None:
    """Remove a bundle's files (keeping modified and shared ones) and its entry."""

    installer = ScopedInstaller(open_store(root))
    report = asyncio.run(installer.unsync_bundle(bundle_id))

    if json_output:
        emit_json(asdict(report))
    else:
        typer.secho(
            f"Removed {len(report.removed)} files for {bundle_id}", fg=typer.colors.GREEN
        )
        for item in report.skipped:
            typer.secho(f"  kept {item.path} ({item.reason})", fg=typer.colors.YELLOW)
        for error in report.errors:
            typer.secho(f"  error: {error}", err=True, fg=typer.colors.RED)

    if report.errors:
        raise typer.Exit(code=1)


def status(root: RootOption = None, json_output: JsonFlag = False) -> None:
    """Show files present in the managed directories."""

    installer = ScopedInstaller(open_store(root))
    scope = asyncio.run(installer.get_status())

    if json_output:
        emit_json(asdict(scope))
        return
    if not scope.dir_exists:
        typer.secho(f"{scope.base_directory} does not exist", fg=typer.colors.YELLOW)
        return
    console.print(f"[bold]{scope.base_directory}[/bold]: {scope.synced_files} files")
    for subdir, files in scope.files.items():
        for name in files:
            console.print(f"  {subdir}/{name}")
