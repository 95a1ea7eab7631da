"""Pytest configuration and fixtures for Bundle Registry tests."""

import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest

from bundle_registry.core.settings import RegistrySettings
from bundle_registry.install.installer import BundleOrigin, ScopedInstaller
from bundle_registry.lockfile.store import LockfileStore


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    """A workspace with an empty ``.git`` directory."""
    root = tmp_path / "workspace"
    (root / ".git" / "info").mkdir(parents=True)
    return root


@pytest.fixture
def store(repo_root: Path) -> LockfileStore:
    return LockfileStore(
        RegistrySettings(repository_root=repo_root, generated_by="bundle-registry@test")
    )


@pytest.fixture
def installer(store: LockfileStore) -> ScopedInstaller:
    return ScopedInstaller(store)


@pytest.fixture
def origin() -> BundleOrigin:
    return BundleOrigin(
        source_id="gh-acme",
        source_type="github",
        source={"type": "github", "url": "https://github.com/acme/prompts"},
        version="1.0.0",
    )


@pytest.fixture
def source() -> dict[str, str]:
    return {"type": "github", "url": "https://github.com/acme/prompts"}


@pytest.fixture
def make_bundle(tmp_path: Path) -> Callable[..., Path]:
    """Create a bundle directory with one prompt file per id and a YAML manifest."""

    def _make(name: str, prompts: dict[str, str], *, version: str = "1.0.0") -> Path:
        bundle = tmp_path / "bundles" / name
        (bundle / "prompts").mkdir(parents=True, exist_ok=True)
        items = []
        for item_id, content in prompts.items():
            (bundle / "prompts" / f"{item_id}.prompt.md").write_text(content, encoding="utf-8")
            items.append(
                f"  - id: {item_id}\n"
                f"    file: prompts/{item_id}.prompt.md\n"
                f"    type: prompt\n"
            )
        manifest = textwrap.dedent(
            f"""\
            id: {name}
            version: {version}
            items:
            """
        ) + "".join(items)
        (bundle / "deployment-manifest.yml").write_text(manifest, encoding="utf-8")
        return bundle

    return _make


@pytest.fixture
def read_exclude(repo_root: Path) -> Callable[[], str]:
    """Return the current content of ``.git/info/exclude`` (empty if absent)."""

    def _read() -> str:
        path = repo_root / ".git" / "info" / "exclude"
        return path.read_text(encoding="utf-8") if path.exists() else ""

    return _read
