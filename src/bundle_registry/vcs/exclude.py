"""Maintenance of the managed section of ``.git/info/exclude``.

The section starts at a fixed header comment and runs until the next comment
line or the end of the file. Everything outside the section is preserved
verbatim. Exclusion is a best-effort feature: I/O failures are logged and
swallowed, and a workspace without a ``.git`` directory is silently skipped.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import anyio
import structlog

from bundle_registry.core.constants import EXCLUDE_SECTION_HEADER
from bundle_registry.fs.paths import to_posix

__all__ = ["ExcludeSection", "ExclusionManager", "parse_section", "render_section"]

logger = structlog.get_logger(__name__)


@dataclass
class ExcludeSection:
    """An exclude file split around the managed section."""

    before: str
    entries: list[str] = field(default_factory=list)
    after: str = ""
    found: bool = False


def parse_section(content: str, header: str = EXCLUDE_SECTION_HEADER) -> ExcludeSection:
    """Split ``content`` into text before, entries within, and text after the section."""

    lines = content.splitlines()
    start = next(
        (index for index, line in enumerate(lines) if line.strip() == header), None
    )
    if start is None:
        return ExcludeSection(before=content)

    entries: list[str] = []
    end = start + 1
    while end < len(lines) and not lines[end].lstrip().startswith("#"):
        entry = lines[end].strip()
        if entry and entry not in entries:
            entries.append(entry)
        end += 1

    return ExcludeSection(
        before="\n".join(lines[:start]),
        entries=entries,
        after="\n".join(lines[end:]),
        found=True,
    )


def render_section(section: ExcludeSection, header: str = EXCLUDE_SECTION_HEADER) -> str:
    """Rebuild file content; the section is dropped entirely when it has no entries."""

    chunks: list[str] = []
    if section.before.strip():
        chunks.append(section.before.rstrip())
    if section.entries:
        chunks.append("\n".join([header, *section.entries]))
    if section.after.strip():
        chunks.append(section.after.strip("\n"))
    if not chunks:
        return ""
    return "\n\n".join(chunks) + "\n"


class ExclusionManager:
    """Adds and removes workspace-relative paths in the managed exclude section."""

    def __init__(self, repository_root: Path, header: str = EXCLUDE_SECTION_HEADER) -> None:
        self.repository_root = repository_root
        self.header = header
        self._lock = anyio.Lock()

    def git_dir(self) -> Path | None:
        """Locate the repository's git directory.

        Handles worktrees and submodules, where ``.git`` is a file holding a
        ``gitdir:`` pointer.
        """
        dot_git = self.repository_root / ".git"
        if dot_git.is_dir():
            return dot_git
        if dot_git.is_file():
            try:
                pointer = dot_git.read_text(encoding="utf-8").strip()
            except OSError as exc:
                logger.warning("exclude.gitdir_unreadable", path=str(dot_git), error=str(exc))
                return None
            if pointer.startswith("gitdir:"):
                target = Path(pointer.split(":", 1)[1].strip())
                if not target.is_absolute():
                    target = self.repository_root / target
                return target
        return None

    @property
    def exclude_path(self) -> Path | None:
        git_dir = self.git_dir()
        if git_dir is None:
            return None
        return git_dir / "info" / "exclude"

    async def entries(self) -> list[str]:
        """Return the paths currently listed in the managed section."""
        exclude_path = self.exclude_path
        if exclude_path is None:
            return []
        try:
            content = await anyio.Path(exclude_path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning("exclude.read_failed", path=str(exclude_path), error=str(exc))
            return []
        return parse_section(content, self.header).entries

    async def add(self, paths: Iterable[str]) -> bool:
        """Add ``paths`` to the managed section.

        Returns:
            True if the exclude file was rewritten
        """
        new_paths = [to_posix(path) for path in paths if path]
        exclude_path = self.exclude_path
        if exclude_path is None:
            logger.debug("exclude.skipped", reason="no .git directory")
            return False
        if not new_paths:
            return False

        async with self._lock:
            try:
                await anyio.Path(exclude_path.parent).mkdir(parents=True, exist_ok=True)
                content = await self._read(exclude_path)
                section = parse_section(content, self.header)
                merged = set(section.entries) | set(new_paths)
                if section.found and merged == set(section.entries):
                    return False
                section.entries = sorted(merged)
                await anyio.Path(exclude_path).write_text(
                    render_section(section, self.header), encoding="utf-8"
                )
            except OSError as exc:
                logger.warning("exclude.add_failed", path=str(exclude_path), error=str(exc))
                return False

        logger.debug("exclude.added", count=len(new_paths))
        return True

    async def remove(self, paths: Iterable[str]) -> bool:
        """Remove ``paths`` from the managed section.

        Returns:
            True if the exclude file was rewritten
        """
        doomed = {to_posix(path) for path in paths if path}
        exclude_path = self.exclude_path
        if exclude_path is None or not doomed:
            return False

        async with self._lock:
            try:
                if not await anyio.Path(exclude_path).exists():
                    return False
                content = await self._read(exclude_path)
                section = parse_section(content, self.header)
                if not section.found:
                    return False
                remaining = [entry for entry in section.entries if entry not in doomed]
                if section.entries and remaining == section.entries:
                    return False
                section.entries = remaining
                await anyio.Path(exclude_path).write_text(
                    render_section(section, self.header), encoding="utf-8"
                )
            except OSError as exc:
                logger.warning("exclude.remove_failed", path=str(exclude_path), error=str(exc))
                return False

        logger.debug("exclude.removed", count=len(doomed))
        return True

    @staticmethod
    async def _read(exclude_path: Path) -> str:
        try:
            return await anyio.Path(exclude_path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
