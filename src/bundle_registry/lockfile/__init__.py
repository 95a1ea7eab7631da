"""Lockfile store for repository-scoped bundle installations.

The store keeps bundle records in a tracked and a local-only document,
writes them atomically, and reports conflicts and modified files.
"""

from bundle_registry.lockfile.events import LockfileChange, LockfileEvents
from bundle_registry.lockfile.models import (
    BundleEntry,
    CommitMode,
    FileEntry,
    HubEntry,
    InstalledBundle,
    InstalledBundlesReport,
    LockfileDocument,
    LockfileValidationResult,
    ModifiedFileInfo,
    ProfileEntry,
    SourceEntry,
)
from bundle_registry.lockfile.registry import LockfileStoreRegistry
from bundle_registry.lockfile.store import LockfileStore, parse_commit_mode

__all__ = [
    "BundleEntry",
    "CommitMode",
    "FileEntry",
    "HubEntry",
    "InstalledBundle",
    "InstalledBundlesReport",
    "LockfileChange",
    "LockfileDocument",
    "LockfileEvents",
    "LockfileStore",
    "LockfileStoreRegistry",
    "LockfileValidationResult",
    "ModifiedFileInfo",
    "ProfileEntry",
    "SourceEntry",
    "parse_commit_mode",
]
