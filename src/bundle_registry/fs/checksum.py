"""Content checksums used for modification detection."""

from __future__ import annotations

import hashlib
from pathlib import Path

import anyio

__all__ = ["CHUNK_SIZE", "compute_file_checksum", "compute_bundle_checksum"]

CHUNK_SIZE = 64 * 1024


async def compute_file_checksum(path: Path) -> str:
    """Return the SHA-256 hex digest of a file's content.

    Raises:
        FileNotFoundError: If the file does not exist
        OSError: On any other read failure
    """

    digest = hashlib.sha256()
    async with await anyio.open_file(path, "rb") as handle:
        while chunk := await handle.read(CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


def compute_bundle_checksum(file_checksums: dict[str, str]) -> str:
    """Derive a whole-bundle checksum from per-file checksums.

    The digest covers ``path:checksum`` pairs in path order, so it changes
    when a file is added, removed, renamed or edited.
    """

    digest = hashlib.sha256()
    for path in sorted(file_checksums):
        digest.update(f"{path}:{file_checksums[path]}\n".encode())
    return digest.hexdigest()
