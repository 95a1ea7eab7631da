"""Pydantic models for lockfile documents and the views derived from them.

On disk the documents use camelCase keys (``sourceId``, ``installedAt``);
the models expose snake_case attributes and serialize by alias. Bundle
entries never carry a commit mode: it is implied by which document holds
them.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bundle_registry.core.constants import (
    COMMIT_MODE_COMMIT,
    COMMIT_MODE_LOCAL_ONLY,
    LOCKFILE_SCHEMA_URL,
    LOCKFILE_SCHEMA_VERSION,
)


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string with a ``Z`` suffix."""
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class CommitMode(str, Enum):
    """Which lockfile a bundle is recorded in.

    Attributes:
        COMMIT: Tracked lockfile, meant to be committed
        LOCAL_ONLY: Local lockfile, excluded from version control
    """

    COMMIT = COMMIT_MODE_COMMIT
    LOCAL_ONLY = COMMIT_MODE_LOCAL_ONLY

    @property
    def opposite(self) -> "CommitMode":
        if self is CommitMode.COMMIT:
            return CommitMode.LOCAL_ONLY
        return CommitMode.COMMIT


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        """Dump with on-disk key names, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class FileEntry(_CamelModel):
    """A file installed by a bundle.

    Attributes:
        path: Workspace-relative POSIX path of the installed file
        checksum: SHA-256 hex digest recorded at install time
    """

    path: str
    checksum: str


class SourceEntry(_CamelModel):
    """Provenance of one or more bundles (``type``, ``url`` and free-form extras)."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    type: str
    url: str


class HubEntry(_CamelModel):
    """Hub a bundle was discovered through."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    name: str | None = None
    url: str | None = None


class ProfileEntry(_CamelModel):
    """Profile a bundle was installed as part of."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    name: str | None = None
    bundles: list[str] = Field(default_factory=list)


class BundleEntry(_CamelModel):
    """A bundle recorded in a lockfile.

    Unknown keys (including a stray ``commitMode`` written by older tools)
    are dropped on load, so re-serializing an entry always yields a clean
    copy.
    """

    version: str
    source_id: str
    source_type: str
    installed_at: str = Field(default_factory=utc_timestamp)
    files: list[FileEntry] = Field(default_factory=list)
    checksum: str | None = None


class LockfileDocument(_CamelModel):
    """One lockfile (tracked or local)."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    schema_url: str = Field(default=LOCKFILE_SCHEMA_URL, alias="$schema")
    version: str = LOCKFILE_SCHEMA_VERSION
    generated_at: str = Field(default_factory=utc_timestamp)
    generated_by: str
    bundles: dict[str, BundleEntry] = Field(default_factory=dict)
    sources: dict[str, SourceEntry] = Field(default_factory=dict)
    hubs: dict[str, HubEntry] | None = None
    profiles: dict[str, ProfileEntry] | None = None

    @classmethod
    def empty(cls, generated_by: str) -> "LockfileDocument":
        return cls(generated_by=generated_by)

    def touch(self) -> None:
        """Bump ``generatedAt``."""
        self.generated_at = utc_timestamp()

    def is_source_referenced(self, source_id: str) -> bool:
        return any(entry.source_id == source_id for entry in self.bundles.values())

    def drop_orphaned_source(self, source_id: str) -> bool:
        """Delete ``source_id`` if no bundle references it any more."""
        if source_id in self.sources and not self.is_source_referenced(source_id):
            del self.sources[source_id]
            return True
        return False


class InstalledBundle(_CamelModel):
    """A bundle as seen by callers: a lockfile entry annotated with its mode."""

    bundle_id: str
    version: str
    source_id: str
    source_type: str
    installed_at: str
    commit_mode: CommitMode
    install_path: str
    files_missing: bool = False
    files: list[FileEntry] = Field(default_factory=list)
    checksum: str | None = None

    @classmethod
    def from_entry(
        cls,
        bundle_id: str,
        entry: BundleEntry,
        *,
        commit_mode: CommitMode,
        install_path: str,
        files_missing: bool,
    ) -> "InstalledBundle":
        return cls(
            bundle_id=bundle_id,
            version=entry.version,
            source_id=entry.source_id,
            source_type=entry.source_type,
            installed_at=entry.installed_at,
            commit_mode=commit_mode,
            install_path=install_path,
            files_missing=files_missing,
            files=list(entry.files),
            checksum=entry.checksum,
        )


class InstalledBundlesReport(_CamelModel):
    """Union of both lockfiles plus any ids found in both."""

    bundles: list[InstalledBundle] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)

    def find(self, bundle_id: str) -> InstalledBundle | None:
        return next((b for b in self.bundles if b.bundle_id == bundle_id), None)


class ModifiedFileInfo(_CamelModel):
    """A tracked file whose on-disk state differs from the lockfile."""

    path: str
    original_checksum: str
    current_checksum: str
    modification_type: Literal["modified", "missing"]


class LockfileValidationResult(_CamelModel):
    """Schema validation outcome for one lockfile."""

    path: str
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    schema_version: str | None = None
