"""Tests for the lockfile store (tracked and local documents)."""

import json
from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import anyio
import pytest

from bundle_registry.core.constants import (
    EXCLUDE_SECTION_HEADER,
    LOCAL_LOCKFILE_NAME,
    LOCKFILE_NAME,
)
from bundle_registry.core.errors import NotFoundError, ValidationError
from bundle_registry.lockfile.events import LockfileChange
from bundle_registry.lockfile.models import CommitMode, FileEntry
from bundle_registry.lockfile.store import LockfileStore, parse_commit_mode


def _files(*paths: str) -> list[FileEntry]:
    return [FileEntry(path=path, checksum="0" * 64) for path in paths]


async def _record(
    store: LockfileStore,
    bundle_id: str,
    mode: CommitMode | str = CommitMode.COMMIT,
    *,
    source_id: str = "gh-acme",
    files: list[FileEntry] | None = None,
    **extra,
) -> None:
    await store.create_or_update(
        bundle_id=bundle_id,
        version="1.0.0",
        source_id=source_id,
        source_type="github",
        commit_mode=mode,
        files=files if files is not None else _files(f".github/prompts/{bundle_id}.prompt.md"),
        source={"type": "github", "url": f"https://github.com/acme/{source_id}"},
        **extra,
    )


def _load(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


class TestCreateOrUpdate:
    """Test recording bundles in the document selected by commit mode."""

    @pytest.mark.asyncio
    async def test_commit_mode_writes_tracked_lockfile(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        await _record(store, "bundle-a")

        assert store.get_lockfile_path() == repo_root / LOCKFILE_NAME
        data = _load(repo_root / LOCKFILE_NAME)
        assert data["generatedBy"] == "bundle-registry@test"
        assert data["bundles"]["bundle-a"]["sourceId"] == "gh-acme"
        assert "commitMode" not in data["bundles"]["bundle-a"]
        assert data["sources"]["gh-acme"]["type"] == "github"
        assert not (repo_root / LOCAL_LOCKFILE_NAME).exists()

    @pytest.mark.asyncio
    async def test_local_only_writes_local_lockfile_and_excludes_it(
        self, store: LockfileStore, repo_root: Path, read_exclude: Callable[[], str]
    ) -> None:
        await _record(store, "bundle-a", "local-only")

        assert not (repo_root / LOCKFILE_NAME).exists()
        assert "bundle-a" in _load(repo_root / LOCAL_LOCKFILE_NAME)["bundles"]
        assert f"{EXCLUDE_SECTION_HEADER}\n{LOCAL_LOCKFILE_NAME}\n" in read_exclude()

    @pytest.mark.asyncio
    async def test_update_replaces_entry(self, store: LockfileStore, repo_root: Path) -> None:
        await _record(store, "bundle-a")
        await store.create_or_update(
            bundle_id="bundle-a",
            version="2.0.0",
            source_id="gh-acme",
            source_type="github",
            commit_mode="commit",
            files=[{"path": ".github/prompts/new.prompt.md", "checksum": "f" * 64}],
            source={"type": "github", "url": "https://github.com/acme/gh-acme"},
            checksum="c" * 64,
        )

        entry = _load(repo_root / LOCKFILE_NAME)["bundles"]["bundle-a"]
        assert entry["version"] == "2.0.0"
        assert entry["files"] == [{"path": ".github/prompts/new.prompt.md", "checksum": "f" * 64}]
        assert entry["checksum"] == "c" * 64

    @pytest.mark.asyncio
    async def test_hub_and_profile_are_recorded(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        await _record(
            store,
            "bundle-a",
            hub=("acme-hub", {"name": "Acme Hub", "url": "https://hub.acme.dev"}),
            profile=("backend", {"name": "Backend", "bundles": ["bundle-a"]}),
        )

        data = _load(repo_root / LOCKFILE_NAME)
        assert data["hubs"]["acme-hub"]["name"] == "Acme Hub"
        assert data["profiles"]["backend"]["bundles"] == ["bundle-a"]

    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"bundle_id": ""}, "bundleId"),
            ({"version": "  "}, "version"),
            ({"source_id": ""}, "sourceId"),
            ({"source_type": ""}, "sourceType"),
            ({"commit_mode": "shared"}, "commitMode"),
            ({"files": "a.md"}, "files"),
            ({"source": {"type": "github"}}, "source"),
            ({"source": None}, "source"),
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_input_writes_nothing(
        self, store: LockfileStore, repo_root: Path, overrides: dict, field: str
    ) -> None:
        kwargs = {
            "bundle_id": "bundle-a",
            "version": "1.0.0",
            "source_id": "gh-acme",
            "source_type": "github",
            "commit_mode": "commit",
            "files": [],
            "source": {"type": "github", "url": "https://github.com/acme/p"},
            **overrides,
        }

        with pytest.raises(ValidationError) as exc_info:
            await store.create_or_update(**kwargs)

        assert exc_info.value.field == field
        assert not (repo_root / LOCKFILE_NAME).exists()
        assert not (repo_root / LOCAL_LOCKFILE_NAME).exists()

    @pytest.mark.asyncio
    async def test_failed_write_leaves_previous_document(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        await _record(store, "bundle-a")
        before = (repo_root / LOCKFILE_NAME).read_text(encoding="utf-8")

        with patch("bundle_registry.fs.atomic.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                await _record(store, "bundle-b")

        assert (repo_root / LOCKFILE_NAME).read_text(encoding="utf-8") == before
        assert not (repo_root / f"{LOCKFILE_NAME}.tmp").exists()

    @pytest.mark.asyncio
    async def test_concurrent_updates_are_all_kept(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        """Read-modify-write cycles are serialized, so no update is lost."""
        async with anyio.create_task_group() as tg:
            for index in range(8):
                tg.start_soon(_record, store, f"bundle-{index}")

        bundles = _load(repo_root / LOCKFILE_NAME)["bundles"]
        assert sorted(bundles) == [f"bundle-{index}" for index in range(8)]


class TestReads:
    """Test reading, listing and validating documents."""

    @pytest.mark.asyncio
    async def test_missing_documents_read_as_none(self, store: LockfileStore) -> None:
        assert await store.read() is None
        assert await store.read_both() == (None, None)
        assert await store.get_bundle_files("bundle-a") == []

    @pytest.mark.asyncio
    async def test_corrupt_document_reads_as_none(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        (repo_root / LOCKFILE_NAME).write_text("{not json", encoding="utf-8")

        assert await store.read(CommitMode.COMMIT) is None
        report = await store.get_installed_bundles()
        assert report.bundles == []

    @pytest.mark.asyncio
    async def test_installed_bundles_are_annotated_with_mode(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        await _record(store, "tracked")
        await _record(store, "personal", "local-only", source_id="gh-me")

        report = await store.get_installed_bundles()

        modes = {bundle.bundle_id: bundle.commit_mode for bundle in report.bundles}
        assert modes == {"tracked": CommitMode.COMMIT, "personal": CommitMode.LOCAL_ONLY}
        assert report.conflicts == []
        tracked = report.find("tracked")
        assert tracked is not None
        assert tracked.install_path == str(repo_root / ".github")
        assert tracked.files_missing is True

    @pytest.mark.asyncio
    async def test_files_missing_is_false_when_all_present(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        target = repo_root / ".github" / "prompts" / "bundle-a.prompt.md"
        target.parent.mkdir(parents=True)
        target.write_text("hi", encoding="utf-8")
        await _record(store, "bundle-a")

        bundle = await store.find_bundle("bundle-a")

        assert bundle is not None
        assert bundle.files_missing is False

    @pytest.mark.asyncio
    async def test_duplicate_bundle_is_reported_as_conflict(
        self, store: LockfileStore
    ) -> None:
        await _record(store, "bundle-a")
        await _record(store, "bundle-a", "local-only")

        report = await store.get_installed_bundles()

        assert report.conflicts == ["bundle-a"]
        assert [bundle.bundle_id for bundle in report.bundles] == ["bundle-a"]
        assert report.bundles[0].commit_mode is CommitMode.COMMIT

    @pytest.mark.asyncio
    async def test_collect_paths_used_by_others(self, store: LockfileStore) -> None:
        await _record(store, "a", files=_files("shared.md", "a.md"))
        await _record(store, "b", "local-only", files=_files("shared.md", "b.md"))

        assert await store.collect_paths_used_by_others("a") == {"shared.md", "b.md"}

    @pytest.mark.asyncio
    async def test_detect_modified_files(self, store: LockfileStore, repo_root: Path) -> None:
        from bundle_registry.fs.checksum import compute_file_checksum

        prompts = repo_root / ".github" / "prompts"
        prompts.mkdir(parents=True)
        (prompts / "same.md").write_text("same", encoding="utf-8")
        (prompts / "changed.md").write_text("original", encoding="utf-8")
        files = [
            FileEntry(
                path=f".github/prompts/{name}",
                checksum=await compute_file_checksum(prompts / name),
            )
            for name in ("same.md", "changed.md")
        ]
        files.append(FileEntry(path=".github/prompts/gone.md", checksum="1" * 64))
        await _record(store, "bundle-a", files=files)
        (prompts / "changed.md").write_text("edited", encoding="utf-8")

        modified = await store.detect_modified_files("bundle-a")

        by_path = {info.path: info for info in modified}
        assert set(by_path) == {".github/prompts/changed.md", ".github/prompts/gone.md"}
        assert by_path[".github/prompts/changed.md"].modification_type == "modified"
        assert by_path[".github/prompts/gone.md"].modification_type == "missing"
        assert by_path[".github/prompts/gone.md"].current_checksum == ""
        assert await store.detect_modified_files("unknown") == []

    @pytest.mark.asyncio
    async def test_detect_modified_treats_unreadable_file_as_unchanged(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        prompts = repo_root / ".github" / "prompts"
        prompts.mkdir(parents=True)
        (prompts / "locked.md").write_text("locked", encoding="utf-8")
        await _record(store, "bundle-a", files=_files(".github/prompts/locked.md"))

        with patch(
            "bundle_registry.lockfile.store.compute_file_checksum",
            side_effect=PermissionError("denied"),
        ):
            modified = await store.detect_modified_files("bundle-a")

        assert modified == []

    @pytest.mark.asyncio
    async def test_validate_without_lockfiles(self, store: LockfileStore) -> None:
        results = await store.validate()

        assert len(results) == 1
        assert not results[0].valid
        assert results[0].errors == ["Lockfile does not exist"]

    @pytest.mark.asyncio
    async def test_validate_each_existing_document(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        await _record(store, "bundle-a")
        (repo_root / LOCAL_LOCKFILE_NAME).write_text("[", encoding="utf-8")

        tracked, local = await store.validate()

        assert tracked.valid
        assert tracked.schema_version == "1.0.0"
        assert not local.valid
        assert local.errors[0].startswith("Invalid JSON")

    @pytest.mark.asyncio
    async def test_validate_warns_about_dangling_references(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        await _record(store, "bundle-a")
        data = _load(repo_root / LOCKFILE_NAME)
        data["sources"]["unused"] = {"type": "local", "url": "file:///tmp"}
        data["bundles"]["bundle-a"]["sourceId"] = "ghost"
        (repo_root / LOCKFILE_NAME).write_text(json.dumps(data), encoding="utf-8")

        (result,) = await store.validate()

        assert result.valid
        assert "Bundle bundle-a references unknown source ghost" in result.warnings
        assert "Source unused is not referenced by any bundle" in result.warnings


class TestRemove:
    """Test removing entries and cleaning up documents."""

    @pytest.mark.asyncio
    async def test_remove_keeps_shared_source(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        await _record(store, "a")
        await _record(store, "b")

        assert await store.remove("a") is True

        data = _load(repo_root / LOCKFILE_NAME)
        assert list(data["bundles"]) == ["b"]
        assert "gh-acme" in data["sources"]

    @pytest.mark.asyncio
    async def test_remove_drops_orphaned_source(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        await _record(store, "a", source_id="gh-one")
        await _record(store, "b", source_id="gh-two")

        await store.remove("a")

        assert list(_load(repo_root / LOCKFILE_NAME)["sources"]) == ["gh-two"]

    @pytest.mark.asyncio
    async def test_removing_last_bundle_deletes_document(
        self, store: LockfileStore, repo_root: Path, read_exclude: Callable[[], str]
    ) -> None:
        await _record(store, "a", "local-only")
        assert LOCAL_LOCKFILE_NAME in read_exclude()

        await store.remove("a")

        assert not (repo_root / LOCAL_LOCKFILE_NAME).exists()
        assert LOCAL_LOCKFILE_NAME not in read_exclude()

    @pytest.mark.asyncio
    async def test_remove_unknown_bundle(self, store: LockfileStore) -> None:
        assert await store.remove("missing") is False


class TestUpdateCommitMode:
    """Test moving bundles between documents."""

    @pytest.mark.asyncio
    async def test_move_to_local_preserves_metadata(
        self, store: LockfileStore, repo_root: Path, read_exclude: Callable[[], str]
    ) -> None:
        await _record(store, "bundle-a", checksum="c" * 64)
        original = _load(repo_root / LOCKFILE_NAME)["bundles"]["bundle-a"]

        await store.update_commit_mode("bundle-a", "local-only")

        assert not (repo_root / LOCKFILE_NAME).exists()
        local = _load(repo_root / LOCAL_LOCKFILE_NAME)
        assert local["bundles"]["bundle-a"] == original
        assert local["sources"]["gh-acme"]["url"] == "https://github.com/acme/gh-acme"
        assert LOCAL_LOCKFILE_NAME in read_exclude()

    @pytest.mark.asyncio
    async def test_move_back_to_commit(
        self, store: LockfileStore, repo_root: Path, read_exclude: Callable[[], str]
    ) -> None:
        await _record(store, "bundle-a", "local-only")

        await store.update_commit_mode("bundle-a", CommitMode.COMMIT)

        assert "bundle-a" in _load(repo_root / LOCKFILE_NAME)["bundles"]
        assert not (repo_root / LOCAL_LOCKFILE_NAME).exists()
        assert LOCAL_LOCKFILE_NAME not in read_exclude()
        bundle = await store.find_bundle("bundle-a")
        assert bundle is not None
        assert bundle.commit_mode is CommitMode.COMMIT

    @pytest.mark.asyncio
    async def test_bundle_not_in_opposite_document(self, store: LockfileStore) -> None:
        await _record(store, "bundle-a")

        with pytest.raises(NotFoundError) as exc_info:
            await store.update_commit_mode("bundle-a", "commit")

        assert exc_info.value.mode == "local-only"

    @pytest.mark.asyncio
    async def test_invalid_mode(self, store: LockfileStore) -> None:
        with pytest.raises(ValidationError):
            await store.update_commit_mode("bundle-a", "shared")


class TestChangeNotifications:
    """Test subscriptions and external change detection."""

    @pytest.mark.asyncio
    async def test_subscriber_sees_store_writes(self, store: LockfileStore) -> None:
        received: list[LockfileChange] = []
        store.subscribe(received.append)

        await _record(store, "bundle-a")
        await store.remove("bundle-a")

        assert [change.mode for change in received] == [CommitMode.COMMIT, CommitMode.COMMIT]
        assert received[0].document is not None
        assert received[1].document is None
        assert not any(change.external for change in received)

    @pytest.mark.asyncio
    async def test_external_edit_is_detected(
        self, store: LockfileStore, repo_root: Path
    ) -> None:
        await _record(store, "bundle-a")
        received: list[LockfileChange] = []
        store.subscribe(received.append)

        assert await store.check_external_changes() == []

        data = _load(repo_root / LOCKFILE_NAME)
        data["bundles"]["bundle-b"] = dict(data["bundles"]["bundle-a"])
        (repo_root / LOCKFILE_NAME).write_text(json.dumps(data, indent=4), encoding="utf-8")

        assert await store.check_external_changes() == [CommitMode.COMMIT]
        assert received[-1].external
        assert received[-1].document is not None
        assert "bundle-b" in received[-1].document.bundles


@pytest.mark.asyncio
async def test_local_only_record_end_to_end(
    store: LockfileStore, repo_root: Path, read_exclude: Callable[[], str]
) -> None:
    await store.create_or_update(
        bundle_id="b1",
        version="1.0.0",
        source_id="s1",
        source_type="git",
        commit_mode="local-only",
        files=[{"path": ".managed/prompts/x.md", "checksum": "abc"}],
        source={"type": "git", "url": "https://x"},
    )

    local = await store.read(CommitMode.LOCAL_ONLY)
    assert local is not None
    assert local.bundles["b1"].version == "1.0.0"
    assert await store.read(CommitMode.COMMIT) is None
    assert LOCAL_LOCKFILE_NAME in read_exclude().splitlines()


def test_parse_commit_mode() -> None:
    assert parse_commit_mode("commit") is CommitMode.COMMIT
    assert parse_commit_mode(CommitMode.LOCAL_ONLY) is CommitMode.LOCAL_ONLY
    with pytest.raises(ValidationError, match="commitMode"):
        parse_commit_mode(None)


def test_for_path(tmp_path: Path) -> None:
    store = LockfileStore.for_path(tmp_path)

    assert store.get_lockfile_path_for_mode(CommitMode.LOCAL_ONLY) == tmp_path / LOCAL_LOCKFILE_NAME
