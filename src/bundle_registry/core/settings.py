"""Runtime settings for Bundle Registry."""

from __future__ import annotations

import os
from dataclasses import dataclass
from importlib import metadata
from pathlib import Path

from bundle_registry.core.constants import MANAGED_ROOT_DIR

__all__ = ["RegistrySettings", "default_generated_by"]

PACKAGE_NAME = "bundle-registry"


def default_generated_by() -> str:
    """Return the ``generatedBy`` value stamped into new lockfiles."""

    try:
        version = metadata.version(PACKAGE_NAME)
    except metadata.PackageNotFoundError:
        version = "0.0.0"
    return f"{PACKAGE_NAME}@{version}"


@dataclass(frozen=True)
class RegistrySettings:
    """Settings shared by the lockfile store and the scoped installer.

    Attributes:
        repository_root: Workspace root holding the lockfiles and ``.git``
        managed_dir: Directory (relative to the root) bundle files go into
        schema_path: Optional override for the lockfile JSON schema
        generated_by: Value written to ``generatedBy`` in new lockfiles
    """

    repository_root: Path
    managed_dir: str = MANAGED_ROOT_DIR
    schema_path: Path | None = None
    generated_by: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "repository_root", Path(self.repository_root).expanduser()
        )
        if not self.generated_by:
            object.__setattr__(self, "generated_by", default_generated_by())

    @property
    def managed_root(self) -> Path:
        return self.repository_root / self.managed_dir

    @classmethod
    def from_env(cls, repository_root: str | Path | None = None) -> RegistrySettings:
        """Build settings from explicit arguments and environment variables.

        Environment:
            BUNDLE_REGISTRY_ROOT: Repository root when none is passed
            BUNDLE_REGISTRY_MANAGED_DIR: Managed directory name
            BUNDLE_REGISTRY_SCHEMA: Path to a lockfile JSON schema
            BUNDLE_REGISTRY_GENERATED_BY: ``generatedBy`` override
        """

        chosen: str | Path | None = repository_root
        if chosen is None:
            chosen = os.getenv("BUNDLE_REGISTRY_ROOT") or Path.cwd()

        schema_env = os.getenv("BUNDLE_REGISTRY_SCHEMA")
        return cls(
            repository_root=Path(chosen),
            managed_dir=os.getenv("BUNDLE_REGISTRY_MANAGED_DIR") or MANAGED_ROOT_DIR,
            schema_path=Path(schema_env) if schema_env else None,
            generated_by=os.getenv("BUNDLE_REGISTRY_GENERATED_BY") or "",
        )
