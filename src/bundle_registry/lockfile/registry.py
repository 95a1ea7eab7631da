"""Explicit registry of lockfile stores, one per repository."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from bundle_registry.core.settings import RegistrySettings
from bundle_registry.fs.paths import normalize_path
from bundle_registry.lockfile.store import LockfileStore

__all__ = ["LockfileStoreRegistry"]

SettingsFactory = Callable[[Path], RegistrySettings]


class LockfileStoreRegistry:
    """Hands out one ``LockfileStore`` per normalized repository path.

    The host application owns the registry and passes stores to the code
    that needs them. Sharing one store per repository is what makes its
    write serialization effective.
    """

    def __init__(self, settings_factory: SettingsFactory | None = None) -> None:
        self._settings_factory = settings_factory or (
            lambda root: RegistrySettings(repository_root=root)
        )
        self._stores: dict[Path, LockfileStore] = {}

    def get(self, repository_root: str | Path) -> LockfileStore:
        key = normalize_path(repository_root)
        store = self._stores.get(key)
        if store is None:
            store = LockfileStore(self._settings_factory(key))
            self._stores[key] = store
        return store

    def reset(self, repository_root: str | Path | None = None) -> None:
        """Forget one store, or all of them when no path is given."""
        if repository_root is None:
            self._stores.clear()
            return
        self._stores.pop(normalize_path(repository_root), None)

    def __contains__(self, repository_root: object) -> bool:
        if not isinstance(repository_root, str | Path):
            return False
        return normalize_path(repository_root) in self._stores

    def __len__(self) -> int:
        return len(self._stores)
