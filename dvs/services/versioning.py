from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from dvs.core.hashing import file_matches, hash_file
from dvs.core.layout import MaterializedState
from dvs.core.manifest import Manifest
from dvs.core.metadata import (
    Metadata,
    data_path_for,
    find_sidecar,
    iter_sidecars,
    remove_sidecars,
)
from dvs.core.oid import Oid
from dvs.core.outcomes import RollbackResult
from dvs.core.project import Repository
from dvs.core.state import LogEntry, ReflogEntry, ReflogOp, WorkspaceState
from dvs.errors import (
    DvsError,
    HashMismatch,
    InvalidArg,
    StateNotFound,
    StorageError,
    UncommittedChanges,
)
from dvs.platforms import current_user
from dvs.storage.local import temp_path_for
from dvs.utils.files import prune_empty_dirs
from dvs.utils.logger import get_logger

"""
Workspace states and rollback
=============================

1. Capture:
   - The manifest file (if any) and every sidecar under the root are read
     from disk (never from in-memory copies) into a WorkspaceState; its id
     is the blake3 of the canonical JSON.
   - Every captured state is written to the snapshot store, so any id that
     appears in the reflog can be loaded again.

2. Transitions:
   - Mutating operations capture the state before and after, and append
     one reflog entry (old -> new) only when the id changed.

3. Rollback:
   - Resolve the target: reflog index (0 = most recent) or state id/prefix.
   - Diff current vs target by path:
     * restore = paths in target whose record is missing or different now
     * remove  = paths tracked now but not in target
   - Without force, any working file that would be overwritten or deleted
     and no longer matches its recorded hash aborts the rollback.
   - With materialize, every object needed for restored paths is staged in
     .dvs/tmp first; a missing or corrupt object aborts before anything in
     the working tree, sidecars or manifest is touched.
   - Apply: sidecars, staged bytes, removals, then the manifest, then the
     reflog entry (op=rollback, old=current, new=target).
"""

logger = get_logger("dvs.versioning")


def capture_workspace_state(repo: Repository) -> WorkspaceState:
    """Snapshot the manifest file and all sidecars as they are on disk."""
    manifest_path = repo.manifest_path
    manifest = Manifest.load(manifest_path) if manifest_path.is_file() else None
    metadata: dict[str, Metadata] = {}
    for sidecar in iter_sidecars(repo.root):
        data_path = data_path_for(sidecar)
        rel = data_path.relative_to(repo.root).as_posix()
        if rel in metadata:
            continue
        # When both formats exist the TOML sidecar wins
        preferred = find_sidecar(data_path) or sidecar
        metadata[rel] = Metadata.load(preferred)
    return WorkspaceState.from_parts(manifest, metadata.items())


def current_state_id(repo: Repository) -> str:
    """Capture, persist and return the id of the current workspace state."""
    return repo.snapshots().save(capture_workspace_state(repo))


def record_transition(
    repo: Repository,
    op: ReflogOp,
    old_id: str | None,
    message: str | None = None,
    paths: list[str] | None = None,
    force: bool = False,
) -> ReflogEntry | None:
    """Capture the new state and journal ``old_id -> new`` if it changed.

    Args:
        repo: Repository that was just mutated.
        op: Operation to record.
        old_id: State id captured before the mutation.
        message: Optional note stored with the entry.
        paths: Paths the operation touched.
        force: Record even when the state id did not change.

    Returns:
        The appended entry, or None when nothing changed.
    """
    new_id = current_state_id(repo)
    if new_id == old_id and not force:
        logger.debug("Workspace state unchanged", op=op.value, state_id=new_id[:8])
        return None
    return repo.reflog().record(
        actor=current_user(),
        op=op,
        new=new_id,
        old=old_id,
        message=message,
        paths=paths or [],
    )


def log(repo: Repository, limit: int | None = None) -> list[LogEntry]:
    """Reflog entries, newest first, each tagged with its index."""
    return repo.reflog().read_recent(limit)


@dataclass(frozen=True)
class RollbackTarget:
    """Either a state id (or unique prefix) or a reflog index."""

    state_id: str | None = None
    index: int | None = None

    @classmethod
    def parse(cls, value: str | int) -> RollbackTarget:
        """Parse ``3``, ``"3"`` or ``"@{3}"`` as an index, anything else as an id.

        Raises:
            InvalidArg: For an empty or negative target.
        """
        if isinstance(value, int):
            if value < 0:
                raise InvalidArg(f"Reflog index must be >= 0, got {value}")
            return cls(index=value)
        text = value.strip()
        if not text:
            raise InvalidArg("Rollback target cannot be empty")
        if text.startswith("@{") and text.endswith("}"):
            text = text[2:-1]
            if not text.isdigit():
                raise InvalidArg(f"Invalid reflog index '{value}'")
        if text.isdigit():
            return cls(index=int(text))
        return cls(state_id=text)

    def resolve(self, repo: Repository) -> str:
        """Return the full state id this target refers to.

        Raises:
            StateNotFound: If the index is past the end of the reflog or no
                stored state matches the id.
        """
        if self.index is not None:
            entry = repo.reflog().get_by_index(self.index)
            if entry is None:
                raise StateNotFound(f"No reflog entry at index {self.index}")
            return entry.entry.new
        assert self.state_id is not None
        return repo.snapshots().resolve(self.state_id)


@dataclass
class _RollbackPlan:
    restore: list[str] = field(default_factory=list)
    remove: list[str] = field(default_factory=list)
    # oid each restored path should end up with
    target_oids: dict[str, Oid] = field(default_factory=dict)
    # oid each path currently records, for dirtiness checks
    current_oids: dict[str, Oid] = field(default_factory=dict)


def _recorded_oids(state: WorkspaceState) -> dict[str, Oid]:
    oids: dict[str, Oid] = {}
    if state.manifest is not None:
        for entry in state.manifest.entries:
            oids[entry.path] = entry.oid
    # Sidecars are authoritative for the working copy
    for path, meta in state.metadata_by_path().items():
        oids[path] = meta.oid
    return oids


def _plan_rollback(current: WorkspaceState, target: WorkspaceState) -> _RollbackPlan:
    plan = _RollbackPlan()
    plan.current_oids = _recorded_oids(current)
    plan.target_oids = _recorded_oids(target)

    current_meta = current.metadata_by_path()
    target_meta = target.metadata_by_path()
    current_entries = current.manifest.by_path() if current.manifest else {}
    target_entries = target.manifest.by_path() if target.manifest else {}

    for path in sorted(target.tracked_paths()):
        meta_same = _same_meta(current_meta.get(path), target_meta.get(path))
        entry_same = current_entries.get(path) == target_entries.get(path)
        if not (meta_same and entry_same):
            plan.restore.append(path)
    plan.remove = sorted(current.tracked_paths() - target.tracked_paths())
    return plan


def _same_meta(a: Metadata | None, b: Metadata | None) -> bool:
    if a is None or b is None:
        return a is b
    return a.to_dict() == b.to_dict()


def _find_dirty(repo: Repository, plan: _RollbackPlan, materialize: bool) -> list[str]:
    """Working files that would be clobbered and differ from what is recorded."""
    dirty = []
    touched = plan.remove + (plan.restore if materialize else [])
    for path in touched:
        data_path = repo.root / path
        if not data_path.is_file():
            continue
        recorded = plan.current_oids.get(path)
        wanted = plan.target_oids.get(path)
        if recorded is not None and file_matches(data_path, recorded):
            continue
        if wanted is not None and file_matches(data_path, wanted):
            continue
        dirty.append(path)
    return dirty


def _stage_objects(repo: Repository, plan: _RollbackPlan) -> dict[str, Path]:
    """Fetch and verify bytes for every restored path into ``.dvs/tmp``.

    Raises:
        DvsError: If any object is missing or corrupt; already staged files
            are removed first.
    """
    stores = repo.local_stores()
    tmp_dir = repo.layout.tmp_dir
    tmp_dir.mkdir(parents=True, exist_ok=True)
    staged: dict[str, Path] = {}
    try:
        for path in plan.restore:
            oid = plan.target_oids.get(path)
            if oid is None or file_matches(repo.root / path, oid):
                continue
            tmp = temp_path_for(tmp_dir / "object")
            stores.fetch(oid, tmp)
            staged[path] = tmp
            actual = hash_file(tmp, oid.algo)
            if actual != oid:
                raise HashMismatch(path, str(oid), str(actual))
    except DvsError:
        for tmp in staged.values():
            tmp.unlink(missing_ok=True)
        raise
    return staged


def rollback(
    repo: Repository,
    target: str | int | RollbackTarget,
    force: bool = False,
    materialize: bool = True,
) -> RollbackResult:
    """Roll the workspace back to a recorded state.

    Args:
        repo: Repository to roll back.
        target: Reflog index (``0``, ``"@{2}"``) or state id / unique prefix.
        force: Overwrite or delete working files with local modifications.
        materialize: Also restore file bytes from the local stores; otherwise
            only sidecars and the manifest change.

    Returns:
        RollbackResult. On failure sidecars and the manifest are as they
        were before the call and ``error`` explains why. Only an I/O error
        while applying can leave restored working files behind.

    Raises:
        InvalidArg: For a malformed target.
        StateNotFound: If the target cannot be resolved.
    """
    if not isinstance(target, RollbackTarget):
        target = RollbackTarget.parse(target)
    target_id = target.resolve(repo)
    snapshots = repo.snapshots()
    target_state = snapshots.load(target_id)

    current_state = capture_workspace_state(repo)
    current_id = snapshots.save(current_state)
    if current_id == target_id:
        logger.info("Already at target state", state_id=target_id[:8])
        return RollbackResult(success=True, from_state=current_id, to_state=target_id)

    plan = _plan_rollback(current_state, target_state)

    if not force:
        dirty = _find_dirty(repo, plan, materialize)
        if dirty:
            err = UncommittedChanges(dirty)
            logger.warning("Rollback refused", reason=err.kind, paths=len(dirty))
            return RollbackResult(
                success=False, from_state=current_id, to_state=target_id, error=err.message
            )

    staged: dict[str, Path] = {}
    if materialize:
        try:
            staged = _stage_objects(repo, plan)
        except DvsError as e:
            logger.warning("Rollback aborted while staging objects", error=e.message)
            return RollbackResult(
                success=False, from_state=current_id, to_state=target_id, error=e.message
            )

    try:
        _apply_plan(repo, plan, target_state, staged)
    except OSError as e:
        err = StorageError(f"Rollback interrupted: {e}")
        logger.error("Rollback failed while applying, restoring records", error=str(e))
        _restore_records(repo, plan, current_state)
        return RollbackResult(
            success=False, from_state=current_id, to_state=target_id, error=err.message
        )

    repo.reflog().record(
        actor=current_user(),
        op=ReflogOp.ROLLBACK,
        new=target_id,
        old=current_id,
        message=f"Rolled back to {target_id[:8]}",
        paths=plan.restore + plan.remove,
    )

    logger.info(
        "Rollback completed",
        from_state=current_id[:8],
        to_state=target_id[:8],
        restored=len(plan.restore),
        removed=len(plan.remove),
    )
    return RollbackResult(
        success=True,
        from_state=current_id,
        to_state=target_id,
        restored_files=plan.restore,
        removed_files=plan.remove,
    )


def _apply_plan(
    repo: Repository,
    plan: _RollbackPlan,
    target: WorkspaceState,
    staged: dict[str, Path],
) -> None:
    fmt = repo.config.metadata_format
    target_meta = target.metadata_by_path()
    materialized = MaterializedState.load(repo.layout.materialized_path)

    for path in plan.restore:
        data_path = repo.root / path
        meta = target_meta.get(path)
        if meta is not None:
            meta.save(data_path, fmt)
        else:
            remove_sidecars(data_path)
        tmp = staged.get(path)
        if tmp is not None:
            data_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(tmp, data_path)
            materialized.mark(path, plan.target_oids[path])

    for path in plan.remove:
        data_path = repo.root / path
        data_path.unlink(missing_ok=True)
        remove_sidecars(data_path)
        materialized.forget(path)
        prune_empty_dirs(data_path.parent, repo.root)

    if target.manifest is not None:
        repo.save_manifest(target.manifest)
    else:
        repo.manifest_path.unlink(missing_ok=True)

    materialized.save(repo.layout.materialized_path)
    shutil.rmtree(repo.layout.tmp_dir, ignore_errors=True)


def _restore_records(
    repo: Repository, plan: _RollbackPlan, current: WorkspaceState
) -> None:
    """Put sidecars and the manifest back as captured before a failed apply.

    Working files already replaced keep their new bytes; their sidecars then
    report them as unsynced.
    """
    fmt = repo.config.metadata_format
    current_meta = current.metadata_by_path()
    for path in plan.restore + plan.remove:
        data_path = repo.root / path
        meta = current_meta.get(path)
        if meta is not None:
            meta.save(data_path, fmt)
        else:
            remove_sidecars(data_path)
    if current.manifest is not None:
        repo.save_manifest(current.manifest)
    else:
        repo.manifest_path.unlink(missing_ok=True)
    shutil.rmtree(repo.layout.tmp_dir, ignore_errors=True)
