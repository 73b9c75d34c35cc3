"""Tests for importing tracked files from another repository."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from helpers import write_file

from dvs.core.hashing import hash_bytes
from dvs.core.metadata import load_for
from dvs.core.project import Repository
from dvs.core.state import ReflogOp
from dvs.errors import (
    ConfigError,
    HashMismatch,
    InvalidArg,
    MergeConflict,
    ObjectNotFound,
)
from dvs.services.init import init
from dvs.services.merge import ConflictMode, merge_repo
from dvs.services.tracking import add


@pytest.fixture
def source(tmp_path: Path) -> Repository:
    """Second repository with its own storage and two tracked files."""
    root = tmp_path / "source"
    src = init(storage_dir=tmp_path / "source-storage", root=root)
    a = write_file(root, "a.csv", "alpha")
    b = write_file(root, "nested/b.csv", "beta")
    summary = add(src, [a, b])
    assert summary.copied == 2
    return src


def test_merge_copies_objects_and_entries(repo: Repository, source: Repository):
    result = merge_repo(repo, source.root)

    assert (result.files_merged, result.files_skipped) == (2, 0)
    assert (result.objects_copied, result.objects_existed) == (2, 0)
    assert result.merged_paths == ["a.csv", "nested/b.csv"]
    assert repo.storage().exists(hash_bytes(b"alpha"))
    assert repo.load_manifest().paths() == ["a.csv", "nested/b.csv"]
    assert load_for(repo.root / "nested/b.csv").oid == hash_bytes(b"beta")
    assert repo.reflog().read_recent(1)[0].entry.op is ReflogOp.MERGE


def test_merge_with_prefix(repo: Repository, source: Repository):
    result = merge_repo(repo, source.root, prefix="imported/")

    assert result.merged_paths == ["imported/a.csv", "imported/nested/b.csv"]
    assert repo.load_manifest().get("imported/a.csv").oid == hash_bytes(b"alpha")

    with pytest.raises(InvalidArg):
        merge_repo(repo, source.root, prefix="../outside")


def test_merge_fail_mode_changes_nothing(repo: Repository, source: Repository):
    """A conflict in fail mode aborts before any object or record is written."""
    write_file(repo.root, "a.csv", "local alpha")
    add(repo, ["a.csv"])
    manifest_before = repo.manifest_path.read_text(encoding="utf-8")
    entries_before = len(repo.reflog())

    with pytest.raises(MergeConflict) as excinfo:
        merge_repo(repo, source.root, conflict_mode="abort")

    assert excinfo.value.paths == ["a.csv"]
    assert repo.manifest_path.read_text(encoding="utf-8") == manifest_before
    assert len(repo.reflog()) == entries_before
    assert not repo.storage().exists(hash_bytes(b"beta"))


def test_merge_skip_mode(repo: Repository, source: Repository):
    write_file(repo.root, "a.csv", "local alpha")
    add(repo, ["a.csv"])

    result = merge_repo(repo, source.root, conflict_mode=ConflictMode.SKIP)

    assert (result.files_merged, result.files_skipped) == (1, 1)
    assert result.conflicts == ["a.csv"]
    assert repo.load_manifest().get("a.csv").oid == hash_bytes(b"local alpha")


def test_merge_overwrite_mode(repo: Repository, source: Repository):
    write_file(repo.root, "a.csv", "local alpha")
    add(repo, ["a.csv"])

    result = merge_repo(repo, source.root, conflict_mode="overwrite")

    assert result.files_merged == 2
    assert repo.load_manifest().get("a.csv").oid == hash_bytes(b"alpha")
    assert load_for(repo.root / "a.csv").oid == hash_bytes(b"alpha")


def test_merge_dry_run_writes_nothing(repo: Repository, source: Repository):
    manifest_before = repo.manifest_path.read_text(encoding="utf-8")

    result = merge_repo(repo, source.root, dry_run=True)

    assert result.dry_run
    assert (result.files_merged, result.objects_copied) == (2, 2)
    assert repo.manifest_path.read_text(encoding="utf-8") == manifest_before
    assert not repo.storage().exists(hash_bytes(b"alpha"))
    assert not (repo.root / "a.csv.dvs").exists()


def test_merge_counts_existing_objects(repo: Repository, source: Repository):
    write_file(repo.root, "mine.csv", "alpha")
    add(repo, ["mine.csv"])

    result = merge_repo(repo, source.root)

    assert (result.objects_copied, result.objects_existed) == (1, 1)


def test_merge_into_itself_is_rejected(repo: Repository):
    with pytest.raises(ConfigError):
        merge_repo(repo, repo.root)


def test_conflict_mode_parse():
    assert ConflictMode.parse("SKIP") is ConflictMode.SKIP
    assert ConflictMode.parse("abort") is ConflictMode.FAIL
    with pytest.raises(InvalidArg):
        ConflictMode.parse("merge")


def _snapshot(repo: Repository) -> tuple[str, int]:
    return repo.manifest_path.read_text(encoding="utf-8"), len(repo.reflog())


def test_merge_verify_rejects_corrupt_source_object(
    repo: Repository, source: Repository
):
    """A source object that no longer hashes to its oid is not imported."""
    oid = hash_bytes(b"alpha")
    corrupt = source.storage().object_path(oid)
    corrupt.chmod(0o644)
    corrupt.write_bytes(b"bit rot")
    before = _snapshot(repo)

    with pytest.raises(HashMismatch):
        merge_repo(repo, source.root, verify=True)

    assert _snapshot(repo) == before
    assert not repo.storage().exists(oid)
    assert not (repo.root / "a.csv.dvs").exists()


def test_merge_missing_source_object(repo: Repository, source: Repository):
    assert source.storage().delete(hash_bytes(b"beta"))
    before = _snapshot(repo)

    with pytest.raises(ObjectNotFound):
        merge_repo(repo, source.root)

    assert _snapshot(repo) == before
    assert not (repo.root / "nested").exists()


def test_merge_rejects_paths_escaping_the_repository(
    repo: Repository, source: Repository, tmp_path: Path
):
    manifest = json.loads(source.manifest_path.read_text(encoding="utf-8"))
    manifest["entries"].append(
        {"path": "../outside.bin", "oid": str(hash_bytes(b"alpha")), "bytes": 5}
    )
    source.manifest_path.write_text(json.dumps(manifest), encoding="utf-8")
    before = _snapshot(repo)

    with pytest.raises(ConfigError):
        merge_repo(repo, source.root, conflict_mode="skip")

    assert _snapshot(repo) == before
    assert not (tmp_path / "outside.bin.dvs").exists()
    assert not repo.storage().exists(hash_bytes(b"alpha"))
