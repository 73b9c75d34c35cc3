"""Tests for workspace state ids, the snapshot store and the reflog."""

from __future__ import annotations

from pathlib import Path

import pytest

from dvs.core.hashing import hash_bytes
from dvs.core.layout import Layout
from dvs.core.manifest import Manifest, ManifestEntry
from dvs.core.metadata import Metadata
from dvs.core.state import Reflog, ReflogOp, SnapshotStore, WorkspaceState
from dvs.errors import InvalidArg, StateNotFound


def _meta(data: bytes) -> Metadata:
    return Metadata(
        checksum=hash_bytes(data).hex,
        size=len(data),
        add_time="2024-01-01T00:00:00Z",
        saved_by="alice",
    )


def test_state_id_ignores_metadata_order():
    """Equal content gives an equal id regardless of collection order."""
    a, b = _meta(b"a"), _meta(b"b")
    manifest = Manifest([ManifestEntry("x", a.oid, 1)])

    first = WorkspaceState.from_parts(manifest, [("x", a), ("y", b)])
    second = WorkspaceState.from_parts(manifest, [("y", b), ("x", a)])

    assert first.compute_id() == second.compute_id()
    assert len(first.compute_id()) == 64


def test_state_id_changes_with_content():
    base = WorkspaceState.from_parts(None, [("x", _meta(b"a"))])
    changed = WorkspaceState.from_parts(None, [("x", _meta(b"b"))])

    assert base.compute_id() != changed.compute_id()


def test_state_round_trip_preserves_id():
    manifest = Manifest([ManifestEntry("x", _meta(b"a").oid, 1)], base_url="http://r")
    state = WorkspaceState.from_parts(manifest, [("x", _meta(b"a"))])

    restored = WorkspaceState.from_dict(state.to_dict())

    assert restored.compute_id() == state.compute_id()


def test_snapshot_store_resolve_prefix(tmp_path: Path):
    store = SnapshotStore(tmp_path / "snapshots")
    state_id = store.save(WorkspaceState.from_parts(None, [("x", _meta(b"a"))]))

    assert store.save(WorkspaceState.from_parts(None, [("x", _meta(b"a"))])) == state_id
    assert store.list_ids() == [state_id]
    assert store.resolve(state_id[:10]) == state_id
    assert store.resolve(f"state:{state_id[:6].upper()}") == state_id
    with pytest.raises(InvalidArg):
        store.resolve(state_id[:2])
    with pytest.raises(StateNotFound):
        store.resolve("ffff" if not state_id.startswith("ffff") else "0000")
    with pytest.raises(StateNotFound):
        store.load("0" * 64)


def test_snapshot_store_ambiguous_prefix(tmp_path: Path):
    store = SnapshotStore(tmp_path / "snapshots")
    store.directory.mkdir(parents=True)
    for state_id in ("abcd" + "0" * 60, "abcd" + "1" * 60):
        (store.directory / f"{state_id}.json").write_text("{}", encoding="utf-8")

    with pytest.raises(InvalidArg):
        store.resolve("abcd")


def test_reflog_newest_first_with_limit(tmp_path: Path):
    layout = Layout(tmp_path)
    reflog = Reflog(layout)
    reflog.record("alice", ReflogOp.INIT, new="s1")
    reflog.record("alice", ReflogOp.ADD, new="s2", old="s1", paths=["b", "a", "a"])
    reflog.record("bob", ReflogOp.REMOVE, new="s3", old="s2", message="cleanup")

    recent = reflog.read_recent()

    assert [e.entry.new for e in recent] == ["s3", "s2", "s1"]
    assert [e.index for e in recent] == [0, 1, 2]
    assert recent[1].entry.paths == ["a", "b"]
    assert recent[0].entry.message == "cleanup"
    assert [e.entry.new for e in reflog.read_recent(limit=2)] == ["s3", "s2"]
    assert reflog.read_recent(limit=0) == []
    assert reflog.get_by_index(2).entry.op is ReflogOp.INIT
    assert reflog.get_by_index(3) is None
    assert layout.read_head() == "s3"


def test_reflog_skips_corrupt_lines(tmp_path: Path):
    """A torn trailing write does not hide earlier entries."""
    reflog = Reflog(Layout(tmp_path))
    reflog.record("alice", ReflogOp.INIT, new="s1")
    reflog.record("alice", ReflogOp.ADD, new="s2", old="s1")
    with open(reflog.path, "a", encoding="utf-8") as fh:
        fh.write('{"ts": "2024-01-01T00:00:00Z", "op": "ad')

    assert len(reflog) == 2
    assert reflog.read_recent(1)[0].entry.new == "s2"


def test_reflog_survives_torn_multibyte_tail(tmp_path: Path):
    """A write cut inside a UTF-8 character only loses that line."""
    reflog = Reflog(Layout(tmp_path))
    reflog.record("alice", ReflogOp.INIT, new="s1", message="données")
    reflog.record("alice", ReflogOp.ADD, new="s2", old="s1", message="café")
    with open(reflog.path, "ab") as fh:
        fh.write('{"ts":"x","op":"add","message":"caf'.encode() + "é".encode()[:1])

    recent = reflog.read_recent()

    assert [e.entry.new for e in recent] == ["s2", "s1"]
    assert recent[0].entry.message == "café"


def test_reflog_empty(tmp_path: Path):
    reflog = Reflog(Layout(tmp_path))
    assert len(reflog) == 0
    assert reflog.read_recent() == []
