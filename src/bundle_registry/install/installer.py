"""Scoped installer: copies bundle files into the managed tree and removes them.

Installation is transactional. Every file and skill directory written during
one ``sync_bundle`` call is tracked, and files that already existed are
backed up first, so a failure anywhere in the call (including the lockfile
write) restores the tree to its previous state before the error propagates.

Removal is conservative. A recorded file is only deleted when no other
bundle records the same path and its checksum still matches the lockfile.
"""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import anyio
import structlog

from bundle_registry.core.constants import (
    MANAGED_SUBDIRS,
    SKILL_ITEM_TYPE,
    SKILLS_SUBDIR,
    SKIP_MODIFIED,
    SKIP_SHARED,
    SKIP_UNVERIFIED,
)
from bundle_registry.core.errors import BundleRegistryError, ValidationError
from bundle_registry.fs.checksum import compute_bundle_checksum, compute_file_checksum
from bundle_registry.fs.paths import is_within, resolve_relative, to_relative_posix
from bundle_registry.install.file_types import (
    consolidate_skill_paths,
    determine_item_type,
    normalize_item_id,
    target_relative_path,
)
from bundle_registry.install.manifest import DeploymentManifest, ManifestItem, load_manifest
from bundle_registry.lockfile.models import (
    CommitMode,
    FileEntry,
    HubEntry,
    ProfileEntry,
    SourceEntry,
)
from bundle_registry.lockfile.store import LockfileStore, parse_commit_mode
from bundle_registry.utils.debug import debug

__all__ = [
    "BundleOrigin",
    "InstallationTracker",
    "ScopeStatus",
    "ScopedInstaller",
    "SkippedFile",
    "SyncResult",
    "UninstallReport",
]

logger = structlog.get_logger(__name__)


@dataclass
class InstallationTracker:
    """What one ``sync_bundle`` call has written, for rollback.

    Attributes:
        relative_paths: Workspace-relative paths of copied files
        absolute_paths: Absolute paths of copied files
        skill_dirs: Skill directories written as a unit
        backups: Pre-existing targets mapped to their backup copies
        created_dirs: Directories that did not exist before the install
    """

    relative_paths: list[str] = field(default_factory=list)
    absolute_paths: list[Path] = field(default_factory=list)
    skill_dirs: list[Path] = field(default_factory=list)
    backups: dict[Path, Path] = field(default_factory=dict)
    created_dirs: list[Path] = field(default_factory=list)

    def record_file(self, absolute: Path, relative: str) -> None:
        self.absolute_paths.append(absolute)
        self.relative_paths.append(relative)

    def ensure_dir(self, directory: Path) -> None:
        """Create ``directory`` and remember which of its ancestors were missing."""
        missing: list[Path] = []
        current = directory
        while not current.exists():
            missing.append(current)
            current = current.parent
        directory.mkdir(parents=True, exist_ok=True)
        self.created_dirs.extend(reversed(missing))


@dataclass
class BundleOrigin:
    """Where a bundle came from; recorded in the lockfile after a successful sync."""

    source_id: str
    source_type: str
    source: SourceEntry | Mapping[str, Any]
    version: str | None = None
    hub: tuple[str, HubEntry | Mapping[str, Any]] | None = None
    profile: tuple[str, ProfileEntry | Mapping[str, Any]] | None = None


@dataclass
class SyncResult:
    """Outcome of ``sync_bundle``."""

    bundle_id: str
    commit_mode: CommitMode
    installed_paths: list[str] = field(default_factory=list)
    files: list[FileEntry] = field(default_factory=list)
    recorded: bool = False


@dataclass
class SkippedFile:
    path: str
    reason: str


@dataclass
class UninstallReport:
    """Outcome of ``unsync_bundle``."""

    bundle_id: str
    found: bool = False
    removed: list[str] = field(default_factory=list)
    skipped: list[SkippedFile] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def skipped_for(self, reason: str) -> list[str]:
        return [item.path for item in self.skipped if item.reason == reason]


@dataclass
class ScopeStatus:
    """Diagnostic snapshot of the managed tree."""

    base_directory: str
    dir_exists: bool
    synced_files: int = 0
    files: dict[str, list[str]] = field(default_factory=dict)


class ScopedInstaller:
    """Installs bundle files into ``<workspace>/<managed dir>`` and removes them again."""

    def __init__(self, store: LockfileStore) -> None:
        self.store = store
        self.workspace_root = store.repository_root
        self.managed_dir = store.settings.managed_dir
        self.exclusions = store.exclusions

    @property
    def managed_root(self) -> Path:
        return self.workspace_root / self.managed_dir

    def _relative(self, path: Path) -> str:
        return to_relative_posix(path, self.workspace_root)

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    async def sync_bundle(
        self,
        bundle_id: str,
        bundle_path: Path,
        commit_mode: CommitMode | str,
        origin: BundleOrigin | None = None,
    ) -> SyncResult:
        """Copy a bundle's manifest items into the managed tree.

        Raises:
            ValidationError: If the manifest or commit mode is malformed, or if
                ``origin`` is given and the bundle is already recorded under
                the other commit mode
            Exception: Any copy or lockfile failure, unchanged, after rollback
        """
        mode = parse_commit_mode(commit_mode)
        result = SyncResult(bundle_id=bundle_id, commit_mode=mode)
        log = logger.bind(bundle_id=bundle_id, mode=mode.value)

        if origin is not None:
            found = await self.store.read_entry(bundle_id)
            if found is not None and found[0] is not mode:
                raise ValidationError(
                    "commitMode",
                    f'does not match the existing "{found[0].value}" entry for '
                    f"{bundle_id}; switch its commit mode instead",
                )

        manifest = await load_manifest(Path(bundle_path))
        if manifest is None:
            log.warning("installer.no_manifest", bundle_path=str(bundle_path))
            return result
        if not manifest.items:
            log.debug("installer.empty_manifest")
            return result

        tracker = InstallationTracker()
        with tempfile.TemporaryDirectory(prefix="bundle-registry-") as backup_root:
            try:
                await self._copy_items(Path(bundle_path), manifest, tracker, Path(backup_root))
                if origin is not None:
                    result.files = await self._record(bundle_id, manifest, mode, origin, tracker)
                    result.recorded = True
            except Exception:
                log.error("installer.rollback", copied=len(tracker.absolute_paths))
                await anyio.to_thread.run_sync(self._rollback, tracker)
                raise

        if mode is CommitMode.LOCAL_ONLY and tracker.relative_paths:
            await self.exclusions.add(
                consolidate_skill_paths(tracker.relative_paths, self.managed_dir)
            )

        result.installed_paths = list(tracker.relative_paths)
        log.info("installer.synced", files=len(result.installed_paths))
        return result

    async def _copy_items(
        self,
        bundle_path: Path,
        manifest: DeploymentManifest,
        tracker: InstallationTracker,
        backup_root: Path,
    ) -> None:
        for item in manifest.items:
            try:
                item_id = normalize_item_id(item.id)
            except ValueError as exc:
                raise ValidationError("manifest", str(exc)) from exc
            item_type = determine_item_type(item.file, item.tags, item.type)
            target = resolve_relative(
                self.workspace_root,
                target_relative_path(item_type, item_id, self.managed_dir),
            )

            if item_type == SKILL_ITEM_TYPE:
                await self._install_skill(bundle_path, item, target, tracker, backup_root)
            else:
                await self._install_file(bundle_path, item, target, tracker, backup_root)

    async def _install_file(
        self,
        bundle_path: Path,
        item: ManifestItem,
        target: Path,
        tracker: InstallationTracker,
        backup_root: Path,
    ) -> None:
        source = bundle_path / item.file
        if not source.is_file():
            logger.warning("installer.source_missing", source=str(source))
            return

        await anyio.to_thread.run_sync(
            self._copy_file, source, target, tracker, backup_root
        )
        debug(f"Copied: {source.name} -> {self._relative(target)}")

    async def _install_skill(
        self,
        bundle_path: Path,
        item: ManifestItem,
        target: Path,
        tracker: InstallationTracker,
        backup_root: Path,
    ) -> None:
        source = bundle_path / item.file
        if source.is_file() and source.name.lower() == "skill.md":
            source = source.parent
        if not source.is_dir():
            logger.warning("installer.skill_missing", source=str(source))
            return

        await anyio.to_thread.run_sync(
            self._copy_skill_dir, source, target, tracker, backup_root
        )
        debug(f"Installed skill {target.name}")

    def _copy_file(
        self, source: Path, target: Path, tracker: InstallationTracker, backup_root: Path
    ) -> None:
        if target.exists() and target not in tracker.backups:
            backup = backup_root / f"{len(tracker.backups)}-{target.name}"
            shutil.copy2(target, backup)
            tracker.backups[target] = backup
        tracker.ensure_dir(target.parent)
        tracker.record_file(target, self._relative(target))
        shutil.copy2(source, target)

    def _copy_skill_dir(
        self, source: Path, target: Path, tracker: InstallationTracker, backup_root: Path
    ) -> None:
        if target.exists() and target not in tracker.backups:
            backup = backup_root / f"{len(tracker.backups)}-{target.name}"
            shutil.copytree(target, backup)
            tracker.backups[target] = backup
        tracker.skill_dirs.append(target)
        tracker.ensure_dir(target)

        for child in sorted(source.rglob("*")):
            destination = target / child.relative_to(source)
            if child.is_dir():
                destination.mkdir(parents=True, exist_ok=True)
            elif child.is_file():
                destination.parent.mkdir(parents=True, exist_ok=True)
                tracker.record_file(destination, self._relative(destination))
                shutil.copy2(child, destination)

    async def _record(
        self,
        bundle_id: str,
        manifest: DeploymentManifest,
        mode: CommitMode,
        origin: BundleOrigin,
        tracker: InstallationTracker,
    ) -> list[FileEntry]:
        checksums: dict[str, str] = {}
        for absolute, relative in zip(
            tracker.absolute_paths, tracker.relative_paths, strict=True
        ):
            checksums[relative] = await compute_file_checksum(absolute)
        files = [FileEntry(path=path, checksum=checksum) for path, checksum in checksums.items()]

        await self.store.create_or_update(
            bundle_id=bundle_id,
            version=origin.version or manifest.version or "",
            source_id=origin.source_id,
            source_type=origin.source_type,
            commit_mode=mode,
            files=files,
            source=origin.source,
            hub=origin.hub,
            profile=origin.profile,
            checksum=compute_bundle_checksum(checksums),
        )
        return files

    @staticmethod
    def _rollback(tracker: InstallationTracker) -> None:
        """Undo a partial install. Failures are logged, never raised."""
        removed_dirs: list[Path] = []
        for skill_dir in tracker.skill_dirs:
            try:
                if skill_dir.exists():
                    shutil.rmtree(skill_dir)
                removed_dirs.append(skill_dir)
                debug(f"Rolled back skill directory: {skill_dir}")
            except OSError as exc:
                logger.warning(
                    "installer.rollback_failed", path=str(skill_dir), error=str(exc)
                )

        for path in tracker.absolute_paths:
            if any(is_within(path, directory) for directory in removed_dirs):
                continue
            try:
                path.unlink(missing_ok=True)
                debug(f"Rolled back: {path}")
            except OSError as exc:
                logger.warning("installer.rollback_failed", path=str(path), error=str(exc))

        for original, backup in tracker.backups.items():
            try:
                if backup.is_dir():
                    shutil.copytree(backup, original, dirs_exist_ok=True)
                else:
                    original.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(backup, original)
                debug(f"Restored: {original}")
            except OSError as exc:
                logger.warning(
                    "installer.restore_failed", path=str(original), error=str(exc)
                )

        # Deepest first; directories that still hold other content stay.
        for directory in sorted(
            tracker.created_dirs, key=lambda path: len(path.parts), reverse=True
        ):
            try:
                directory.rmdir()
                debug(f"Removed created directory: {directory}")
            except FileNotFoundError:
                continue
            except OSError as exc:
                debug(f"Kept directory {directory}: {exc}")

    # ------------------------------------------------------------------
    # Uninstall
    # ------------------------------------------------------------------

    async def unsync_bundle(self, bundle_id: str) -> UninstallReport:
        """Remove a bundle's unmodified, unshared files and its lockfile entry.

        Never raises for missing or unreadable lockfiles; unexpected errors are
        logged and recorded on the report.
        """
        report = UninstallReport(bundle_id=bundle_id)
        log = logger.bind(bundle_id=bundle_id)

        try:
            found = await self.store.read_entry(bundle_id)
            if found is None:
                log.debug("installer.bundle_not_recorded")
                return report
            report.found = True
            _, entry = found

            shared = await self.store.collect_paths_used_by_others(bundle_id)
            for file in entry.files:
                await self._remove_recorded_file(file, shared, report)

            if report.removed:
                await self.exclusions.remove(
                    consolidate_skill_paths(report.removed, self.managed_dir)
                )
                await anyio.to_thread.run_sync(self._prune_managed_dirs)

            await self.store.remove(bundle_id)
        except (BundleRegistryError, OSError) as exc:
            log.error("installer.unsync_failed", error=str(exc))
            report.errors.append(str(exc))
            return report

        if report.skipped:
            log.info(
                "installer.preserved",
                files=[f"{item.path} ({item.reason})" for item in report.skipped],
            )
        log.info("installer.unsynced", removed=len(report.removed))
        return report

    async def _remove_recorded_file(
        self, file: FileEntry, shared: set[str], report: UninstallReport
    ) -> None:
        path = resolve_relative(self.workspace_root, file.path)
        if not is_within(path.resolve(), self.workspace_root.resolve()):
            logger.warning("installer.path_outside_workspace", path=file.path)
            return
        if not await anyio.Path(path).is_file():
            debug(f"File already removed: {file.path}")
            return
        if file.path in shared:
            report.skipped.append(SkippedFile(file.path, SKIP_SHARED))
            return

        try:
            current = await compute_file_checksum(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("installer.checksum_failed", path=file.path, error=str(exc))
            report.skipped.append(SkippedFile(file.path, SKIP_UNVERIFIED))
            return

        if current != file.checksum:
            report.skipped.append(SkippedFile(file.path, SKIP_MODIFIED))
            return

        try:
            await anyio.Path(path).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("installer.remove_failed", path=file.path, error=str(exc))
            report.errors.append(f"{file.path}: {exc}")
            return
        report.removed.append(file.path)

    def _prune_managed_dirs(self) -> None:
        """Remove empty directories inside the managed subtrees, bottom-up.

        The managed root itself and anything outside ``MANAGED_SUBDIRS`` are
        never touched.
        """
        for subdir in MANAGED_SUBDIRS:
            self._prune_empty(self.managed_root / subdir)

    def _prune_empty(self, directory: Path) -> bool:
        if not directory.is_dir() or directory.is_symlink():
            return False
        try:
            for child in list(directory.iterdir()):
                if child.is_dir() and not child.is_symlink():
                    self._prune_empty(child)
            if any(directory.iterdir()):
                return False
            directory.rmdir()
        except OSError as exc:
            logger.warning("installer.prune_failed", path=str(directory), error=str(exc))
            return False
        debug(f"Removed empty directory: {self._relative(directory)}")
        return True

    # ------------------------------------------------------------------
    # Commit mode and status
    # ------------------------------------------------------------------

    async def switch_commit_mode(
        self, bundle_id: str, new_mode: CommitMode | str
    ) -> list[str]:
        """Align ``.git/info/exclude`` with a bundle's new commit mode.

        Moving the lockfile entry is done separately with
        ``LockfileStore.update_commit_mode``.

        Returns:
            The paths added to or removed from the exclusion section
        """
        mode = parse_commit_mode(new_mode)
        log = logger.bind(bundle_id=bundle_id, mode=mode.value)

        bundle = await self.store.find_bundle(bundle_id)
        if bundle is None:
            log.warning("installer.bundle_not_recorded")
            return []
        if bundle.commit_mode is mode:
            log.debug("installer.mode_unchanged")
            return []

        installed = await anyio.to_thread.run_sync(self._scan_managed_paths)
        recorded = set(
            consolidate_skill_paths((file.path for file in bundle.files), self.managed_dir)
        )
        managed_prefix = f"{self.managed_dir}/"
        if any(path.startswith(managed_prefix) for path in recorded):
            paths = [path for path in installed if path in recorded]
        else:
            paths = installed

        if mode is CommitMode.LOCAL_ONLY:
            await self.exclusions.add(paths)
        else:
            await self.exclusions.remove(paths)

        log.info("installer.mode_switched", paths=len(paths))
        return paths

    def _scan_managed_paths(self) -> list[str]:
        """Relative paths of installed items: files, and whole skill directories."""
        paths: list[str] = []
        for subdir in MANAGED_SUBDIRS:
            directory = self.managed_root / subdir
            if not directory.is_dir():
                continue
            try:
                children = sorted(directory.iterdir())
            except OSError as exc:
                logger.warning("installer.scan_failed", path=str(directory), error=str(exc))
                continue
            for child in children:
                if subdir == SKILLS_SUBDIR and child.is_dir():
                    paths.append(self._relative(child))
                elif child.is_file():
                    paths.append(self._relative(child))
        return paths

    async def get_status(self) -> ScopeStatus:
        """Report which files are present under each managed subdirectory."""
        status = ScopeStatus(
            base_directory=str(self.managed_root),
            dir_exists=self.managed_root.is_dir(),
        )
        if not status.dir_exists:
            return status

        for subdir in MANAGED_SUBDIRS:
            directory = self.managed_root / subdir
            if not directory.is_dir():
                continue
            try:
                files = sorted(
                    path.relative_to(directory).as_posix()
                    for path in directory.rglob("*")
                    if path.is_file()
                )
            except OSError as exc:
                debug(f"Could not read directory {directory}: {exc}")
                continue
            status.files[subdir] = files
            status.synced_files += len(files)

        return status
