"""Tests for path helpers."""

from pathlib import Path

import pytest

from bundle_registry.fs.paths import (
    is_within,
    normalize_path,
    resolve_relative,
    to_posix,
    to_relative_posix,
)


def test_to_relative_posix(tmp_path: Path) -> None:
    path = tmp_path / ".github" / "prompts" / "a.prompt.md"

    assert to_relative_posix(path, tmp_path) == ".github/prompts/a.prompt.md"


def test_to_relative_posix_rejects_outside_paths(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        to_relative_posix(tmp_path.parent / "other", tmp_path)


def test_resolve_relative_accepts_backslashes(tmp_path: Path) -> None:
    resolved = resolve_relative(tmp_path, ".github\\prompts\\a.prompt.md")

    assert resolved == tmp_path / ".github" / "prompts" / "a.prompt.md"


def test_to_posix() -> None:
    assert to_posix("a\\b\\c.md") == "a/b/c.md"


def test_is_within(tmp_path: Path) -> None:
    assert is_within(tmp_path / "a" / "b", tmp_path)
    assert is_within(tmp_path, tmp_path)
    assert not is_within(tmp_path.parent, tmp_path)


def test_normalize_path_resolves_relative_to_root(tmp_path: Path) -> None:
    assert normalize_path("sub/../repo", tmp_path) == (tmp_path / "repo").resolve()
