"""Filesystem helpers: atomic writes, checksums and path handling."""

from bundle_registry.fs.atomic import AtomicWriter
from bundle_registry.fs.checksum import compute_bundle_checksum, compute_file_checksum
from bundle_registry.fs.paths import normalize_path, resolve_relative, to_relative_posix

__all__ = [
    "AtomicWriter",
    "compute_bundle_checksum",
    "compute_file_checksum",
    "normalize_path",
    "resolve_relative",
    "to_relative_posix",
]
