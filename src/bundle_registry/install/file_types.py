"""Mapping from manifest item types to locations in the managed tree."""

import re
from collections.abc import Iterable, Sequence

from bundle_registry.core.constants import (
    DEFAULT_ITEM_TYPE,
    ITEM_TYPE_DIRS,
    ITEM_TYPE_SUFFIXES,
    SKILL_ITEM_TYPE,
    SKILLS_SUBDIR,
)

_INVALID_ID_CHARS = re.compile(r"[^a-z0-9._-]+")

#: Tag names that select an item type when ``type`` is omitted
_TAG_TYPES: dict[str, str] = {
    "instructions": "instructions",
    "instruction": "instructions",
    "agent": "agent",
    "chatmode": "chatmode",
    "skill": "skill",
    "prompt": "prompt",
}


def normalize_item_id(item_id: str) -> str:
    """Turn a manifest id into a safe file or directory name.

    Known type suffixes (``.prompt.md`` ...) are stripped, the id is
    lower-cased, and runs of unsupported characters become ``-``.
    """
    normalized = item_id.strip().lower()
    for suffix in ITEM_TYPE_SUFFIXES.values():
        if normalized.endswith(suffix):
            normalized = normalized[: -len(suffix)]
            break
    normalized = _INVALID_ID_CHARS.sub("-", normalized).strip("-.")
    if not normalized:
        raise ValueError(f"Item id {item_id!r} has no usable characters")
    return normalized


def determine_item_type(
    file: str, tags: Sequence[str] = (), declared: str | None = None
) -> str:
    """Resolve an item's type from its declaration, file name, then tags."""
    if declared:
        declared = declared.strip().lower()
        if declared in ITEM_TYPE_DIRS:
            return declared
        if declared in _TAG_TYPES:
            return _TAG_TYPES[declared]

    name = file.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1].lower()
    for item_type, suffix in ITEM_TYPE_SUFFIXES.items():
        if name.endswith(suffix):
            return item_type
    if name == "skill.md":
        return SKILL_ITEM_TYPE

    for tag in tags:
        item_type = _TAG_TYPES.get(tag.strip().lower())
        if item_type is not None:
            return item_type

    return DEFAULT_ITEM_TYPE


def target_relative_path(item_type: str, item_id: str, managed_dir: str) -> str:
    """Workspace-relative POSIX target for an item.

    Skills map to a directory, all other types to a single file.
    """
    subdir = ITEM_TYPE_DIRS.get(item_type, ITEM_TYPE_DIRS[DEFAULT_ITEM_TYPE])
    if item_type == SKILL_ITEM_TYPE:
        return f"{managed_dir}/{subdir}/{item_id}"
    suffix = ITEM_TYPE_SUFFIXES.get(item_type, ITEM_TYPE_SUFFIXES[DEFAULT_ITEM_TYPE])
    return f"{managed_dir}/{subdir}/{item_id}{suffix}"


def skill_dir_of(path: str, managed_dir: str) -> str | None:
    """Return ``<managed>/skills/<name>`` if ``path`` lies inside a skill directory."""
    prefix = f"{managed_dir}/{SKILLS_SUBDIR}/"
    if not path.startswith(prefix):
        return None
    name = path[len(prefix) :].split("/", 1)[0]
    if not name:
        return None
    return prefix + name


def consolidate_skill_paths(paths: Iterable[str], managed_dir: str) -> list[str]:
    """Collapse skill file paths to their skill directory, keeping order and dropping duplicates."""
    result: list[str] = []
    seen: set[str] = set()
    for path in paths:
        consolidated = skill_dir_of(path, managed_dir) or path
        if consolidated not in seen:
            seen.add(consolidated)
            result.append(consolidated)
    return result
