"""Import tracked files and their objects from another repository."""

from __future__ import annotations

from enum import Enum
from pathlib import Path, PurePosixPath

from dvs.core.hashing import hash_file
from dvs.core.manifest import ManifestEntry, check_entry_path
from dvs.core.metadata import Metadata, load_for
from dvs.core.oid import Oid
from dvs.core.outcomes import MergeResult
from dvs.core.project import Repository
from dvs.core.state import ReflogOp
from dvs.errors import (
    ConfigError,
    HashMismatch,
    InvalidArg,
    MergeConflict,
    ObjectNotFound,
)
from dvs.platforms import current_user
from dvs.services.versioning import current_state_id, record_transition
from dvs.storage import LocalStore
from dvs.utils.logger import get_logger

logger = get_logger("dvs.merge")


class ConflictMode(str, Enum):
    """What to do when an imported path is already tracked locally."""

    SKIP = "skip"
    OVERWRITE = "overwrite"
    FAIL = "fail"

    @classmethod
    def parse(cls, value: str) -> ConflictMode:
        text = value.strip().lower()
        if text == "abort":
            return cls.FAIL
        try:
            return cls(text)
        except ValueError as e:
            raise InvalidArg(
                f"Unknown conflict mode '{value}' (expected skip, overwrite or fail)"
            ) from e


def _destination(prefix: str | None, path: str) -> str:
    """Destination path for an imported entry, checked to stay under the root."""
    clean = (prefix or "").strip().strip("/")
    if clean and ".." in PurePosixPath(clean).parts:
        raise InvalidArg(f"Merge prefix must stay inside the repository: {prefix}")
    return check_entry_path(f"{clean}/{path}" if clean else path)


def _source_stores(source: Repository) -> list[LocalStore]:
    # Plain stores: the source group may not exist on this machine
    return [LocalStore(source.storage_dir), LocalStore(source.layout.objects_dir)]


def _find_source_object(stores: list[LocalStore], oid: Oid) -> Path | None:
    for store in stores:
        if store.exists(oid):
            return store.object_path(oid)
    return None


def merge_repo(
    repo: Repository,
    source: str | Path,
    prefix: str | None = None,
    conflict_mode: ConflictMode | str = ConflictMode.FAIL,
    verify: bool = True,
    dry_run: bool = False,
) -> MergeResult:
    """Merge another repository's tracked files into ``repo``.

    Args:
        repo: Destination repository.
        source: Root of the repository to import from.
        prefix: Directory under which imported paths are placed.
        conflict_mode: Handling of paths already in the local manifest.
        verify: Re-hash copied objects and reject mismatches.
        dry_run: Report what would happen without writing anything.

    Returns:
        MergeResult with file and object counts.

    Raises:
        ConfigError: If ``source`` is ``repo`` itself.
        MergeConflict: In fail mode, when any destination path is tracked.
        StorageError: If an object cannot be copied. The manifest is only
            written after every object is in place.
    """
    if not isinstance(conflict_mode, ConflictMode):
        conflict_mode = ConflictMode.parse(conflict_mode)
    source_repo = Repository.open(Path(source))
    if source_repo.root == repo.root:
        raise ConfigError("Cannot merge a repository into itself")

    source_manifest = source_repo.load_manifest()
    local_manifest = repo.load_manifest()
    result = MergeResult(dry_run=dry_run)

    to_merge: list[tuple[str, ManifestEntry]] = []
    for entry in source_manifest.entries:
        dest = _destination(prefix, entry.path)
        if local_manifest.get(dest) is not None:
            result.conflicts.append(dest)
            if conflict_mode is ConflictMode.SKIP:
                result.files_skipped += 1
                continue
        to_merge.append((dest, entry))

    if result.conflicts and conflict_mode is ConflictMode.FAIL:
        logger.warning("Merge aborted on conflicts", conflicts=len(result.conflicts))
        raise MergeConflict(result.conflicts)

    source_stores = _source_stores(source_repo)
    dest_store = repo.storage()
    seen: set[Oid] = set()
    for _dest, entry in to_merge:
        if entry.oid in seen:
            continue
        seen.add(entry.oid)
        if dest_store.exists(entry.oid):
            result.objects_existed += 1
            continue
        src_path = _find_source_object(source_stores, entry.oid)
        if src_path is None:
            raise ObjectNotFound(
                f"Object {entry.oid} for {entry.path} not found in source repository"
            )
        result.objects_copied += 1
        if dry_run:
            continue
        dest_store.upload(entry.oid, src_path)
        if verify:
            copied = dest_store.object_path(entry.oid)
            actual = hash_file(copied, entry.oid.algo)
            if actual != entry.oid:
                dest_store.delete(entry.oid)
                raise HashMismatch(entry.path, str(entry.oid), str(actual))

    result.files_merged = len(to_merge)
    result.merged_paths = [dest for dest, _ in to_merge]

    if dry_run:
        logger.info(
            "Merge dry run",
            would_merge=result.files_merged,
            would_skip=result.files_skipped,
            would_copy=result.objects_copied,
        )
        return result

    old_id = current_state_id(repo)
    fmt = repo.config.metadata_format
    for dest, entry in to_merge:
        local_manifest.upsert(
            ManifestEntry(
                path=dest,
                oid=entry.oid,
                size=entry.size,
                compression=entry.compression,
                remote=entry.remote,
            )
        )
        meta = load_for(source_repo.root / entry.path)
        if meta is None or meta.oid != entry.oid:
            meta = Metadata.new(
                entry.oid,
                entry.size,
                saved_by=current_user(),
                message=f"merged from {source_repo.root.name}",
            )
        meta.save(repo.root / dest, fmt)
    repo.save_manifest(local_manifest)

    record_transition(
        repo,
        ReflogOp.MERGE,
        old_id,
        message=f"Merged {result.files_merged} file(s) from {source_repo.root}",
        paths=result.merged_paths,
    )
    logger.info(
        "Merge completed",
        merged=result.files_merged,
        skipped=result.files_skipped,
        objects_copied=result.objects_copied,
        objects_existed=result.objects_existed,
    )
    return result
