"""Scoped installation of bundle files into the managed directory tree."""

from bundle_registry.install.installer import (
    BundleOrigin,
    InstallationTracker,
    ScopedInstaller,
    ScopeStatus,
    SkippedFile,
    SyncResult,
    UninstallReport,
)
from bundle_registry.install.manifest import DeploymentManifest, ManifestItem, load_manifest

__all__ = [
    "BundleOrigin",
    "DeploymentManifest",
    "InstallationTracker",
    "ManifestItem",
    "ScopeStatus",
    "ScopedInstaller",
    "SkippedFile",
    "SyncResult",
    "UninstallReport",
    "load_manifest",
]
