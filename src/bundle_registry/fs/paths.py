"""Path utilities for filesystem operations.

This module provides path normalization helpers shared by the lockfile store
and the installer. Lockfile and exclusion entries always use POSIX separators
relative to the workspace root, regardless of platform.
"""

import os
import unicodedata
from pathlib import Path, PurePosixPath


def normalize_path(path: Path | str, root: Path | None = None) -> Path:
    """Normalize a path for consistent handling.

    Args:
        path: Path to normalize
        root: Optional root directory for relative paths

    Returns:
        Normalized absolute path
    """
    if not isinstance(path, Path):
        path = Path(path)

    if not path.is_absolute() and root is not None:
        path = root / path
    path = path.resolve()

    # Normalize Unicode (NFC on macOS, NFD handling)
    if os.name == "posix":
        path = Path(unicodedata.normalize("NFC", str(path)))

    return path


def to_relative_posix(path: Path, root: Path) -> str:
    """Return ``path`` relative to ``root`` with forward slashes.

    Raises:
        ValueError: If ``path`` is not inside ``root``
    """
    relative = os.path.relpath(path, root)
    if relative == os.pardir or relative.startswith(os.pardir + os.sep):
        raise ValueError(f"{path} is not inside {root}")
    return PurePosixPath(*Path(relative).parts).as_posix()


def to_posix(path: str) -> str:
    """Convert a relative path string to forward slashes."""
    return path.replace("\\", "/")


def resolve_relative(root: Path, relative: str) -> Path:
    """Join a workspace-relative POSIX path onto ``root``."""
    return root.joinpath(*PurePosixPath(to_posix(relative)).parts)


def is_within(path: Path, directory: Path) -> bool:
    """Check whether ``path`` is ``directory`` or lies underneath it."""
    try:
        path.relative_to(directory)
    except ValueError:
        return False
    return True
