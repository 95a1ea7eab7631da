"""Custom exceptions for Bundle Registry.

This module defines typed exceptions used throughout the lockfile store and
the scoped installer. I/O failures are not wrapped: they surface as the
built-in ``OSError`` family.
"""

from pathlib import Path
from typing import Any


class BundleRegistryError(Exception):
    """Base exception for all Bundle Registry errors.

    All custom exceptions should inherit from this base class to allow
    for broad exception handling when needed.
    """

    pass


class ValidationError(BundleRegistryError):
    """Raised when create/update input or a deployment manifest is malformed.

    Raised before anything is written to disk.

    Attributes:
        field: Name of the offending field
        reason: Human-readable description of the problem
    """

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"{field} {reason}")

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON output."""
        return {"error": "validation_error", "field": self.field, "reason": self.reason}

    def __repr__(self) -> str:
        return f"ValidationError(field={self.field!r}, reason={self.reason!r})"


class NotFoundError(BundleRegistryError):
    """Raised when a bundle is not present in the lockfile it was expected in.

    Attributes:
        bundle_id: The bundle that was looked up
        mode: Commit mode of the lockfile that was searched
    """

    def __init__(self, bundle_id: str, mode: str | None = None) -> None:
        self.bundle_id = bundle_id
        self.mode = mode

        message = f"Bundle {bundle_id} not found"
        if mode is not None:
            message += f" in {mode} lockfile"

        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON output."""
        result: dict[str, Any] = {"error": "not_found", "bundle_id": self.bundle_id}
        if self.mode is not None:
            result["mode"] = self.mode
        return result


class ConflictError(BundleRegistryError):
    """Raised when the same bundle id is present in both lockfiles.

    The conflict is never resolved automatically; the user must remove the
    entry from one of the documents.

    Attributes:
        bundle_id: The conflicting bundle id
    """

    def __init__(self, bundle_id: str) -> None:
        self.bundle_id = bundle_id
        super().__init__(
            f'Bundle "{bundle_id}" exists in both lockfiles. '
            "Please manually remove it from one lockfile."
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON output."""
        return {"error": "conflict", "bundle_id": self.bundle_id}


class CorruptionError(BundleRegistryError):
    """Raised when an existing lockfile cannot be parsed.

    Read paths log this error and treat the document as absent.

    Attributes:
        path: Path of the unreadable document
        reason: Parser error message
    """

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Lockfile {path} is corrupt: {reason}")

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON output."""
        return {"error": "corruption", "path": str(self.path), "reason": self.reason}

    def __repr__(self) -> str:
        return f"CorruptionError(path={str(self.path)!r}, reason={self.reason!r})"
