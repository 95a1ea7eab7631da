"""Lockfile store: the persistent registry of repository-scoped bundles.

Bundles live in one of two documents at the repository root:

- ``prompt-registry.lock.json`` for bundles in ``commit`` mode (tracked)
- ``prompt-registry.local.lock.json`` for ``local-only`` bundles, whose
  filename is registered in ``.git/info/exclude`` while the file exists

A bundle id is expected in at most one document. Mutations are serialized
per store instance and every write goes through the ``AtomicWriter``. Reads
are not locked; a read racing a mutation sees either state.

Running two processes against the same repository is not coordinated: each
process serializes only its own writes, so concurrent processes can lose
updates.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import anyio
import pydantic
import structlog

from bundle_registry.core.constants import LOCAL_LOCKFILE_NAME, LOCKFILE_NAME
from bundle_registry.core.errors import (
    ConflictError,
    CorruptionError,
    NotFoundError,
    ValidationError,
)
from bundle_registry.core.settings import RegistrySettings
from bundle_registry.fs.atomic import AtomicWriter
from bundle_registry.fs.checksum import compute_file_checksum
from bundle_registry.fs.paths import resolve_relative
from bundle_registry.lockfile.events import LockfileChange, LockfileEvents, Subscriber, Unsubscribe
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
from bundle_registry.lockfile.schema import load_schema, validate_document
from bundle_registry.vcs.exclude import ExclusionManager

__all__ = ["LockfileStore", "parse_commit_mode"]

logger = structlog.get_logger(__name__)

Signature = tuple[int, int] | None


def parse_commit_mode(value: CommitMode | str | None) -> CommitMode:
    """Coerce ``value`` to a ``CommitMode``.

    Raises:
        ValidationError: If ``value`` is not ``commit`` or ``local-only``
    """
    if isinstance(value, CommitMode):
        return value
    try:
        return CommitMode(value)
    except ValueError:
        raise ValidationError(
            "commitMode", 'must be either "commit" or "local-only"'
        ) from None


def _require_text(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "is required and must be a non-empty string")
    return value


def _coerce(model: type[pydantic.BaseModel], field: str, value: Any) -> Any:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except pydantic.ValidationError as exc:
        raise ValidationError(field, f"is invalid: {exc.errors()[0]['msg']}") from exc


class LockfileStore:
    """Reads and mutates the tracked and local lockfiles of one repository."""

    def __init__(
        self,
        settings: RegistrySettings,
        *,
        exclusions: ExclusionManager | None = None,
        writer: AtomicWriter | None = None,
    ) -> None:
        self.settings = settings
        self.repository_root = settings.repository_root
        self.exclusions = exclusions or ExclusionManager(self.repository_root)
        self.events = LockfileEvents()
        self._writer = writer or AtomicWriter()
        self._mutation_lock = anyio.Lock()
        self._signatures: dict[CommitMode, Signature] = {
            mode: self._stat_signature(self.get_lockfile_path_for_mode(mode))
            for mode in CommitMode
        }

    @classmethod
    def for_path(cls, repository_root: str | Path) -> LockfileStore:
        return cls(RegistrySettings(repository_root=Path(repository_root)))

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def get_lockfile_path(self) -> Path:
        return self.repository_root / LOCKFILE_NAME

    def get_local_lockfile_path(self) -> Path:
        return self.repository_root / LOCAL_LOCKFILE_NAME

    def get_lockfile_path_for_mode(self, mode: CommitMode) -> Path:
        if mode is CommitMode.LOCAL_ONLY:
            return self.get_local_lockfile_path()
        return self.get_lockfile_path()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read(self, mode: CommitMode = CommitMode.COMMIT) -> LockfileDocument | None:
        """Read one document.

        Returns None when the file is absent, unreadable or corrupt; corrupt
        documents are logged.
        """
        path = self.get_lockfile_path_for_mode(mode)
        try:
            content = await anyio.Path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.error("lockfile.read_failed", path=str(path), error=str(exc))
            return None

        try:
            return LockfileDocument.model_validate(json.loads(content))
        except (ValueError, pydantic.ValidationError) as exc:
            error = CorruptionError(path, str(exc).splitlines()[0])
            logger.error("lockfile.corrupt", **error.to_dict())
            return None

    async def read_both(self) -> tuple[LockfileDocument | None, LockfileDocument | None]:
        """Read the tracked and local documents, in that order."""
        return await self.read(CommitMode.COMMIT), await self.read(CommitMode.LOCAL_ONLY)

    async def read_entry(self, bundle_id: str) -> tuple[CommitMode, BundleEntry] | None:
        """Find a bundle entry, searching the tracked document first."""
        for mode in (CommitMode.COMMIT, CommitMode.LOCAL_ONLY):
            document = await self.read(mode)
            if document is not None and bundle_id in document.bundles:
                return mode, document.bundles[bundle_id]
        return None

    async def get_bundle_files(self, bundle_id: str) -> list[FileEntry]:
        found = await self.read_entry(bundle_id)
        if found is None:
            return []
        return list(found[1].files)

    async def collect_paths_used_by_others(self, bundle_id: str) -> set[str]:
        """Paths recorded by every bundle except ``bundle_id``, across both documents."""
        used: set[str] = set()
        for document in await self.read_both():
            if document is None:
                continue
            for other_id, entry in document.bundles.items():
                if other_id != bundle_id:
                    used.update(file.path for file in entry.files)
        return used

    async def get_installed_bundles(self) -> InstalledBundlesReport:
        """List bundles from both documents, each annotated with its commit mode.

        A bundle id present in both documents is listed once (from the
        tracked document) and reported in ``conflicts``.
        """
        report = InstalledBundlesReport()
        seen: set[str] = set()
        install_path = str(self.settings.managed_root)

        for mode in (CommitMode.COMMIT, CommitMode.LOCAL_ONLY):
            document = await self.read(mode)
            if document is None:
                continue
            for bundle_id, entry in document.bundles.items():
                if bundle_id in seen:
                    conflict = ConflictError(bundle_id)
                    logger.error("lockfile.conflict", bundle_id=bundle_id, message=str(conflict))
                    report.conflicts.append(bundle_id)
                    continue
                seen.add(bundle_id)
                report.bundles.append(
                    InstalledBundle.from_entry(
                        bundle_id,
                        entry,
                        commit_mode=mode,
                        install_path=install_path,
                        files_missing=await self._files_missing(entry),
                    )
                )

        return report

    async def find_bundle(self, bundle_id: str) -> InstalledBundle | None:
        report = await self.get_installed_bundles()
        return report.find(bundle_id)

    async def _files_missing(self, entry: BundleEntry) -> bool:
        for file in entry.files:
            path = resolve_relative(self.repository_root, file.path)
            try:
                await anyio.Path(path).stat()
            except FileNotFoundError:
                return True
            except OSError as exc:
                # Anything other than "not found" is assumed present.
                logger.warning("lockfile.stat_failed", path=file.path, error=str(exc))
        return False

    async def detect_modified_files(self, bundle_id: str) -> list[ModifiedFileInfo]:
        """Compare recorded checksums with the files on disk.

        Files that match are omitted. A file that cannot be read for any
        reason other than being absent is logged and treated as unchanged.
        """
        found = await self.read_entry(bundle_id)
        if found is None:
            return []

        modified: list[ModifiedFileInfo] = []
        for file in found[1].files:
            path = resolve_relative(self.repository_root, file.path)
            try:
                current = await compute_file_checksum(path)
            except FileNotFoundError:
                modified.append(
                    ModifiedFileInfo(
                        path=file.path,
                        original_checksum=file.checksum,
                        current_checksum="",
                        modification_type="missing",
                    )
                )
                continue
            except OSError as exc:
                logger.warning("lockfile.checksum_failed", path=file.path, error=str(exc))
                continue

            if current != file.checksum:
                modified.append(
                    ModifiedFileInfo(
                        path=file.path,
                        original_checksum=file.checksum,
                        current_checksum=current,
                        modification_type="modified",
                    )
                )

        return modified

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate(self) -> list[LockfileValidationResult]:
        """Validate each existing document against the lockfile JSON schema."""
        schema = load_schema(self.settings.schema_path)
        results: list[LockfileValidationResult] = []

        for mode in (CommitMode.COMMIT, CommitMode.LOCAL_ONLY):
            path = self.get_lockfile_path_for_mode(mode)
            try:
                content = await anyio.Path(path).read_text(encoding="utf-8")
            except FileNotFoundError:
                continue
            except OSError as exc:
                results.append(
                    LockfileValidationResult(path=str(path), valid=False, errors=[str(exc)])
                )
                continue

            try:
                raw = json.loads(content)
            except ValueError as exc:
                results.append(
                    LockfileValidationResult(
                        path=str(path), valid=False, errors=[f"Invalid JSON: {exc}"]
                    )
                )
                continue

            errors = validate_document(raw, schema)
            results.append(
                LockfileValidationResult(
                    path=str(path),
                    valid=not errors,
                    errors=errors,
                    warnings=self._reference_warnings(raw),
                    schema_version=raw.get("version") if isinstance(raw, dict) else None,
                )
            )

        if not results:
            results.append(
                LockfileValidationResult(
                    path=str(self.get_lockfile_path()),
                    valid=False,
                    errors=["Lockfile does not exist"],
                )
            )
        return results

    @staticmethod
    def _reference_warnings(raw: Any) -> list[str]:
        if not isinstance(raw, dict):
            return []
        bundles = raw.get("bundles")
        sources = raw.get("sources")
        if not isinstance(bundles, dict) or not isinstance(sources, dict):
            return []

        warnings = []
        referenced = set()
        for bundle_id, entry in bundles.items():
            source_id = entry.get("sourceId") if isinstance(entry, dict) else None
            if source_id is None:
                continue
            referenced.add(source_id)
            if source_id not in sources:
                warnings.append(f"Bundle {bundle_id} references unknown source {source_id}")
        for source_id in sources:
            if source_id not in referenced:
                warnings.append(f"Source {source_id} is not referenced by any bundle")
        return warnings

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_or_update(
        self,
        *,
        bundle_id: str,
        version: str,
        source_id: str,
        source_type: str,
        commit_mode: CommitMode | str,
        files: Sequence[FileEntry | Mapping[str, Any]],
        source: SourceEntry | Mapping[str, Any],
        hub: tuple[str, HubEntry | Mapping[str, Any]] | None = None,
        profile: tuple[str, ProfileEntry | Mapping[str, Any]] | None = None,
        checksum: str | None = None,
    ) -> None:
        """Record (or replace) a bundle in the document selected by ``commit_mode``.

        Raises:
            ValidationError: On missing or malformed input; nothing is written
        """
        _require_text("bundleId", bundle_id)
        _require_text("version", version)
        _require_text("sourceId", source_id)
        _require_text("sourceType", source_type)
        if not isinstance(files, Sequence) or isinstance(files, str):
            raise ValidationError("files", "must be an array")
        if not isinstance(source, SourceEntry | Mapping):
            raise ValidationError("source", "is required and must be an object")
        if isinstance(source, Mapping) and not (source.get("type") and source.get("url")):
            raise ValidationError("source", "must have type and url properties")
        mode = parse_commit_mode(commit_mode)

        file_entries = [_coerce(FileEntry, "files", file) for file in files]
        source_entry = _coerce(SourceEntry, "source", source)
        hub_entry = (hub[0], _coerce(HubEntry, "hub", hub[1])) if hub else None
        profile_entry = (
            (profile[0], _coerce(ProfileEntry, "profile", profile[1])) if profile else None
        )

        async with self._mutation_lock:
            target = self.get_lockfile_path_for_mode(mode)
            existed_before = await anyio.Path(target).exists()
            document = await self.read(mode) or LockfileDocument.empty(
                self.settings.generated_by
            )

            document.bundles[bundle_id] = BundleEntry(
                version=version,
                source_id=source_id,
                source_type=source_type,
                files=file_entries,
                checksum=checksum or None,
            )
            document.sources[source_id] = source_entry
            if hub_entry is not None:
                document.hubs = {**(document.hubs or {}), hub_entry[0]: hub_entry[1]}
            if profile_entry is not None:
                document.profiles = {
                    **(document.profiles or {}),
                    profile_entry[0]: profile_entry[1],
                }
            document.touch()

            await self._write(mode, document)
            if mode is CommitMode.LOCAL_ONLY and not existed_before:
                await self.exclusions.add([LOCAL_LOCKFILE_NAME])

        logger.info(
            "lockfile.bundle_recorded",
            bundle_id=bundle_id,
            version=version,
            mode=mode.value,
            files=len(file_entries),
        )
        await self.events.publish(LockfileChange(mode, document))

    async def remove(self, bundle_id: str) -> bool:
        """Remove a bundle from whichever document holds it.

        Returns:
            True if an entry was removed, False if the bundle was not recorded
        """
        async with self._mutation_lock:
            for mode in (CommitMode.COMMIT, CommitMode.LOCAL_ONLY):
                document = await self.read(mode)
                if document is not None and bundle_id in document.bundles:
                    change = await self._remove_from(document, bundle_id, mode)
                    break
            else:
                logger.debug("lockfile.remove_missing", bundle_id=bundle_id)
                return False

        logger.info("lockfile.bundle_removed", bundle_id=bundle_id, mode=mode.value)
        await self.events.publish(change)
        return True

    async def update_commit_mode(self, bundle_id: str, new_mode: CommitMode | str) -> None:
        """Move a bundle to the document for ``new_mode``, preserving its metadata.

        Raises:
            ValidationError: If ``new_mode`` is not a recognised commit mode
            NotFoundError: If the bundle is not in the opposite document
        """
        target_mode = parse_commit_mode(new_mode)
        current_mode = target_mode.opposite

        async with self._mutation_lock:
            source_document = await self.read(current_mode)
            if source_document is None or bundle_id not in source_document.bundles:
                raise NotFoundError(bundle_id, current_mode.value)

            entry = source_document.bundles[bundle_id]
            source_entry = source_document.sources.get(entry.source_id)
            removal = await self._remove_from(source_document, bundle_id, current_mode)

            target_path = self.get_lockfile_path_for_mode(target_mode)
            existed_before = await anyio.Path(target_path).exists()
            target = await self.read(target_mode) or LockfileDocument.empty(
                self.settings.generated_by
            )
            target.bundles[bundle_id] = entry.model_copy(deep=True)
            if source_entry is not None and entry.source_id not in target.sources:
                target.sources[entry.source_id] = source_entry
            target.touch()

            await self._write(target_mode, target)
            if target_mode is CommitMode.LOCAL_ONLY and not existed_before:
                await self.exclusions.add([LOCAL_LOCKFILE_NAME])

        logger.info(
            "lockfile.commit_mode_updated",
            bundle_id=bundle_id,
            from_mode=current_mode.value,
            to_mode=target_mode.value,
        )
        await self.events.publish(removal)
        await self.events.publish(LockfileChange(target_mode, target))

    async def _remove_from(
        self, document: LockfileDocument, bundle_id: str, mode: CommitMode
    ) -> LockfileChange:
        """Drop one entry, collect its orphaned source, and persist or delete the document."""
        source_id = document.bundles.pop(bundle_id).source_id
        document.drop_orphaned_source(source_id)
        path = self.get_lockfile_path_for_mode(mode)

        if not document.bundles:
            try:
                await self._writer.delete(path)
            except OSError as exc:
                logger.error("lockfile.delete_failed", path=str(path), error=str(exc))
            self._signatures[mode] = self._stat_signature(path)
            if mode is CommitMode.LOCAL_ONLY:
                await self.exclusions.remove([LOCAL_LOCKFILE_NAME])
            return LockfileChange(mode, None)

        document.touch()
        await self._write(mode, document)
        return LockfileChange(mode, document)

    async def _write(self, mode: CommitMode, document: LockfileDocument) -> None:
        path = self.get_lockfile_path_for_mode(mode)
        await self._writer.write(document.to_json_dict(), path)
        self._signatures[mode] = self._stat_signature(path)

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        """Be notified of every change to either document."""
        return self.events.subscribe(callback)

    async def check_external_changes(self) -> list[CommitMode]:
        """Publish changes made to the documents outside this store.

        Returns:
            Modes whose document changed since the store last wrote or checked it
        """
        changed = []
        for mode in CommitMode:
            current = self._stat_signature(self.get_lockfile_path_for_mode(mode))
            if current == self._signatures[mode]:
                continue
            self._signatures[mode] = current
            changed.append(mode)
            document = await self.read(mode) if current is not None else None
            logger.debug("lockfile.external_change", mode=mode.value, deleted=current is None)
            await self.events.publish(LockfileChange(mode, document, external=True))
        return changed

    async def watch(self, interval: float = 1.0) -> None:
        """Poll for external changes forever; run it in a task group and cancel to stop."""
        while True:
            await self.check_external_changes()
            await anyio.sleep(interval)

    @staticmethod
    def _stat_signature(path: Path) -> Signature:
        try:
            stat = path.stat()
        except OSError:
            return None
        return (stat.st_mtime_ns, stat.st_size)
