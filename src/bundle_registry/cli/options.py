"""Shared CLI options and helpers."""

from __future__ import annotations

import importlib
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any, NoReturn

if TYPE_CHECKING:  # pragma: no cover - typing only
    import typer
else:  # pragma: no cover - runtime fallback for typing
    typer = importlib.import_module("typer")

import structlog
from rich.console import Console

from bundle_registry.core.errors import BundleRegistryError
from bundle_registry.core.settings import RegistrySettings
from bundle_registry.lockfile.store import LockfileStore

console = Console()

RootOption = Annotated[
    Path | None,
    typer.Option(
        "--root",
        help="Repository root (defaults to BUNDLE_REGISTRY_ROOT or the current directory).",
    ),
]
JsonFlag = Annotated[
    bool,
    typer.Option("--json", help="Emit JSON instead of a table."),
]
BundleIdArgument = Annotated[str, typer.Argument(help="Bundle identifier.")]


def open_store(root: Path | None) -> LockfileStore:
    return LockfileStore(RegistrySettings.from_env(root))


def emit_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def fail(exc: BundleRegistryError, json_output: bool) -> NoReturn:
    """Report a registry error and exit non-zero."""
    if json_output and hasattr(exc, "to_dict"):
        emit_json(exc.to_dict())
    else:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
    raise typer.Exit(code=1) from exc


def _stderr_logger(*args: Any) -> structlog.PrintLogger:
    # Resolved per logger so redirected streams (CliRunner, pipes) are honoured.
    return structlog.PrintLogger(sys.stderr)


def configure_logging(verbose: bool = False) -> None:
    """Route structlog output to stderr so stdout only carries command output.

    Args:
        verbose: Emit debug and info events; otherwise only warnings and errors.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )
