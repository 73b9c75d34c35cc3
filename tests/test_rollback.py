"""Tests for log and rollback over the reflog."""

from __future__ import annotations

import pytest
from helpers import write_file

from dvs.core.metadata import load_for
from dvs.core.project import Repository
from dvs.core.state import ReflogOp
from dvs.errors import InvalidArg, StateNotFound
from dvs.services import versioning as versioning_module
from dvs.services.tracking import add, remove
from dvs.services.versioning import (
    RollbackTarget,
    current_state_id,
    log,
    rollback,
)


def test_log_lists_transitions_newest_first(repo: Repository):
    write_file(repo.root, "a.txt", "a")
    add(repo, ["a.txt"], message="add a")
    remove(repo, ["a.txt"])

    entries = log(repo)

    assert [e.entry.op for e in entries] == [ReflogOp.REMOVE, ReflogOp.ADD, ReflogOp.INIT]
    assert entries[0].entry.old == entries[1].entry.new
    assert entries[1].entry.message == "add a"
    assert len(log(repo, limit=1)) == 1


def test_rollback_restores_previous_content(repo: Repository):
    """Rolling back to the state after v1 brings back v1 bytes and records."""
    path = write_file(repo.root, "data.csv", "v1")
    add(repo, ["data.csv"])
    v1_state = repo.layout.read_head()
    path.write_text("version two", encoding="utf-8")
    add(repo, ["data.csv"])

    result = rollback(repo, 1)

    assert result.success, result.error
    assert result.to_state == v1_state
    assert result.restored_files == ["data.csv"]
    assert path.read_text(encoding="utf-8") == "v1"
    assert load_for(path).size == 2
    assert current_state_id(repo) == v1_state

    latest = log(repo, limit=1)[0].entry
    assert latest.op is ReflogOp.ROLLBACK
    assert latest.new == v1_state
    assert latest.message == f"Rolled back to {v1_state[:8]}"


def test_rollback_is_reversible(repo: Repository):
    path = write_file(repo.root, "data.csv", "v1")
    add(repo, ["data.csv"])
    path.write_text("version two", encoding="utf-8")
    add(repo, ["data.csv"])
    v2_state = repo.layout.read_head()

    rollback(repo, 1)
    result = rollback(repo, f"state:{v2_state[:12]}")

    assert result.success
    assert path.read_text(encoding="utf-8") == "version two"
    assert current_state_id(repo) == v2_state


def test_rollback_removes_files_added_later(repo: Repository):
    write_file(repo.root, "keep.txt", "keep")
    add(repo, ["keep.txt"])
    later = write_file(repo.root, "sub/later.txt", "later")
    add(repo, ["sub/later.txt"])

    result = rollback(repo, "@{1}")

    assert result.success
    assert result.removed_files == ["sub/later.txt"]
    assert not later.exists()
    assert not (repo.root / "sub").exists()
    assert repo.load_manifest().paths() == ["keep.txt"]


def test_rollback_refuses_dirty_workspace(repo: Repository):
    """Local edits that would be overwritten stop the rollback unless forced."""
    path = write_file(repo.root, "data.csv", "v1")
    add(repo, ["data.csv"])
    path.write_text("v2!", encoding="utf-8")
    add(repo, ["data.csv"])
    path.write_text("unsaved edit", encoding="utf-8")
    head = repo.layout.read_head()
    entries = len(repo.reflog())

    refused = rollback(repo, 1)

    assert not refused.success
    assert "data.csv" in refused.error
    assert path.read_text(encoding="utf-8") == "unsaved edit"
    assert repo.layout.read_head() == head
    assert len(repo.reflog()) == entries

    forced = rollback(repo, 1, force=True)
    assert forced.success
    assert path.read_text(encoding="utf-8") == "v1"


def test_rollback_aborts_when_object_missing(repo: Repository):
    path = write_file(repo.root, "data.csv", "v1")
    add(repo, ["data.csv"])
    v1_oid = load_for(path).oid
    path.write_text("version two", encoding="utf-8")
    add(repo, ["data.csv"])
    repo.storage().delete(v1_oid)
    manifest_before = repo.manifest_path.read_text(encoding="utf-8")

    result = rollback(repo, 1)

    assert not result.success
    assert path.read_text(encoding="utf-8") == "version two"
    assert repo.manifest_path.read_text(encoding="utf-8") == manifest_before
    assert not any(repo.layout.tmp_dir.iterdir())


def test_rollback_interrupted_while_applying_restores_records(
    repo: Repository, monkeypatch
):
    """An I/O error midway puts sidecars and the manifest back and records nothing."""
    path = write_file(repo.root, "data.csv", "v1")
    add(repo, ["data.csv"])
    path.write_text("version two", encoding="utf-8")
    add(repo, ["data.csv"])
    later = write_file(repo.root, "sub/later.txt", "later")
    add(repo, ["sub/later.txt"])
    before = current_state_id(repo)
    manifest_before = repo.manifest_path.read_text(encoding="utf-8")
    entries = len(repo.reflog())

    def failing_prune(*args, **kwargs):
        raise OSError(5, "Input/output error")

    monkeypatch.setattr(versioning_module, "prune_empty_dirs", failing_prune)

    result = rollback(repo, 2)

    assert not result.success
    assert "Input/output error" in result.error
    assert repo.manifest_path.read_text(encoding="utf-8") == manifest_before
    assert load_for(path).size == len("version two")
    assert load_for(later).size == len("later")
    assert current_state_id(repo) == before
    assert repo.layout.read_head() == before
    assert len(repo.reflog()) == entries


def test_rollback_to_current_state_is_a_no_op(repo: Repository):
    entries = len(repo.reflog())

    result = rollback(repo, 0)

    assert result.success
    assert result.from_state == result.to_state
    assert len(repo.reflog()) == entries


def test_rollback_without_materialize_only_changes_records(repo: Repository):
    path = write_file(repo.root, "data.csv", "v1")
    add(repo, ["data.csv"])
    path.write_text("version two", encoding="utf-8")
    add(repo, ["data.csv"])

    result = rollback(repo, 1, materialize=False)

    assert result.success
    assert path.read_text(encoding="utf-8") == "version two"
    assert load_for(path).size == 2


def test_rollback_target_parsing():
    assert RollbackTarget.parse(2) == RollbackTarget(index=2)
    assert RollbackTarget.parse("3") == RollbackTarget(index=3)
    assert RollbackTarget.parse("@{4}") == RollbackTarget(index=4)
    assert RollbackTarget.parse("abcd1234") == RollbackTarget(state_id="abcd1234")
    with pytest.raises(InvalidArg):
        RollbackTarget.parse(-1)
    with pytest.raises(InvalidArg):
        RollbackTarget.parse("@{x}")
    with pytest.raises(InvalidArg):
        RollbackTarget.parse("  ")


def test_rollback_unknown_targets(repo: Repository):
    with pytest.raises(StateNotFound):
        rollback(repo, 99)
    with pytest.raises(StateNotFound):
        rollback(repo, "deadbeef")
