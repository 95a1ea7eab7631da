"""CLI entrypoints for Bundle Registry."""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Annotated, Any

if TYPE_CHECKING:  # pragma: no cover - typing only
    import typer
    from typer import Typer as TyperType
else:  # pragma: no cover - runtime fallback for typing
    typer = importlib.import_module("typer")
    TyperType = Any

from bundle_registry.cli.install import install, status, uninstall
from bundle_registry.cli.lockfile import (
    detect_modified,
    list_bundles,
    remove,
    switch_mode,
    validate,
)
from bundle_registry.cli.options import configure_logging

app: TyperType = typer.Typer(help="Manage repository-scoped prompt bundles.")

VerboseFlag = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Log info and debug events to stderr."),
]


def main(verbose: VerboseFlag = False) -> None:
    """Manage repository-scoped prompt bundles."""

    configure_logging(verbose)


app.callback()(main)

app.command("list")(list_bundles)
app.command("validate")(validate)
app.command("remove")(remove)
app.command("switch-mode")(switch_mode)
app.command("detect-modified")(detect_modified)
app.command("install")(install)
app.command("uninstall")(uninstall)
app.command("status")(status)

__all__ = ["app"]
