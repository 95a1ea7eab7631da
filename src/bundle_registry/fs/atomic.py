"""Atomic JSON document writes.

Documents are written to ``<path>.tmp``, flushed to disk and then renamed
over the target, so the target path only ever holds the previous content or
the complete new content. All writes issued through one ``AtomicWriter`` are
serialized in submission order.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import anyio
import structlog

from bundle_registry.core.constants import TEMP_SUFFIX
from bundle_registry.utils.debug import debug

__all__ = ["AtomicWriter", "serialize_document", "temp_path_for"]

logger = structlog.get_logger(__name__)


def serialize_document(document: dict[str, Any]) -> str:
    """Serialize a document with stable two-space indentation."""
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def temp_path_for(target: Path) -> Path:
    """Return the temporary sibling used while writing ``target``."""
    return target.with_name(target.name + TEMP_SUFFIX)


class AtomicWriter:
    """Serialized temp-file-then-rename writer.

    One instance is owned by each lockfile store. ``anyio.Lock`` wakes
    waiters in FIFO order, which gives the strict one-at-a-time, submission
    order semantics the store relies on.
    """

    def __init__(self) -> None:
        self._lock = anyio.Lock()
        self._writes = 0

    @property
    def write_count(self) -> int:
        """Number of documents successfully written by this writer."""
        return self._writes

    async def write(self, document: dict[str, Any], target: Path) -> None:
        """Write ``document`` as JSON to ``target`` atomically.

        Raises:
            OSError: The original write/rename failure, after the temporary
                file has been removed
        """
        content = serialize_document(document)
        async with self._lock:
            await anyio.to_thread.run_sync(self._write_sync, content, target)
            self._writes += 1
        logger.debug("lockfile.write", path=str(target), bytes=len(content))

    async def delete(self, target: Path) -> bool:
        """Delete ``target`` in write order.

        Returns:
            True if a file was removed, False if it did not exist
        """
        async with self._lock:
            try:
                await anyio.Path(target).unlink()
            except FileNotFoundError:
                return False
        logger.debug("lockfile.delete", path=str(target))
        return True

    @staticmethod
    def _write_sync(content: str, target: Path) -> None:
        temp_path = temp_path_for(target)
        try:
            with open(temp_path, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, target)
            debug(f"Atomic write: {temp_path} -> {target}")
        except BaseException:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                debug(f"Failed to remove temp file {temp_path}: {cleanup_error}")
            raise
