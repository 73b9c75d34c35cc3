"""Start and stop tracking files."""

from __future__ import annotations

import os
from collections.abc import Iterable

from dvs.core.hashing import hash_file
from dvs.core.manifest import Manifest, ManifestEntry
from dvs.core.metadata import Metadata, find_sidecar, load_for, remove_sidecars
from dvs.core.outcomes import BatchSummary, FileResult, Outcome, RemoveSummary
from dvs.core.project import Repository
from dvs.core.state import ReflogOp
from dvs.errors import (
    DvsError,
    FileNotFound,
    InvalidArg,
    MetadataNotFound,
    StorageError,
)
from dvs.platforms import current_user
from dvs.services.paths import expand_inputs, tracked_files, walk_files
from dvs.services.versioning import current_state_id, record_transition
from dvs.storage import LocalStore
from dvs.storage.audit import AuditEntry, AuditFile, new_operation_id
from dvs.utils.logger import get_logger

logger = get_logger("dvs.tracking")


def add(
    repo: Repository,
    paths: Iterable[str | os.PathLike[str]],
    message: str | None = None,
) -> BatchSummary:
    """Hash files, copy them into storage and record sidecars and manifest entries.

    Glob inputs match files that are not ignored (already tracked files
    always match). Each input that fails is reported in the summary; the
    rest of the batch still runs.

    Args:
        repo: Repository to add to.
        paths: Files or glob patterns.
        message: Note stored in each new sidecar and in the reflog entry.

    Returns:
        BatchSummary with one result per resolved file or failed input.
    """
    inputs = list(paths)
    storage = repo.storage()
    old_id = current_state_id(repo)

    candidates = sorted(set(walk_files(repo.backend)) | set(tracked_files(repo.backend)))
    expansion = expand_inputs(repo.backend, inputs, candidates)
    results = [FileResult.failed(text, err) for text, err in expansion.errors]

    manifest = repo.load_manifest()
    operation_id = new_operation_id()
    changed: list[str] = []
    for rel in expansion.paths:
        try:
            result = _add_one(repo, storage, manifest, rel, message, operation_id)
        except DvsError as e:
            logger.warning("Failed to add file", path=rel, error=e.message, kind=e.kind)
            result = FileResult.failed(rel, e)
        except OSError as e:
            logger.warning("Failed to add file", path=rel, error=str(e))
            result = FileResult.failed(rel, StorageError(f"{rel}: {e}"))
        results.append(result)
        if result.outcome is Outcome.COPIED:
            changed.append(rel)

    repo.save_manifest(manifest)
    record_transition(repo, ReflogOp.ADD, old_id, message=message, paths=changed)

    summary = BatchSummary.from_results(results)
    logger.info(
        "Add completed",
        copied=summary.copied,
        present=summary.present,
        failed=summary.failed,
    )
    return summary


def _add_one(
    repo: Repository,
    storage: LocalStore,
    manifest: Manifest,
    rel: str,
    message: str | None,
    operation_id: str,
) -> FileResult:
    if rel in ("", "."):
        raise InvalidArg("Cannot add the repository root")
    data_path = repo.root / rel
    if not data_path.exists():
        raise FileNotFound(rel)
    if data_path.is_dir():
        raise InvalidArg(f"Path is a directory: {rel}")

    oid = hash_file(data_path, repo.config.hash_algo)
    size = data_path.stat().st_size
    existing = load_for(data_path)
    entry = ManifestEntry(path=rel, oid=oid, size=size)

    if existing is not None and existing.oid == oid and storage.exists(oid):
        if manifest.get(rel) != entry:
            manifest.upsert(entry)
        return FileResult(path=rel, outcome=Outcome.PRESENT, oid=oid, size=size)

    storage.upload(oid, data_path)
    storage.log_audit(AuditEntry.new_add(operation_id, AuditFile.for_oid(rel, oid)))
    Metadata.new(oid, size, saved_by=current_user(), message=message).save(
        data_path, repo.config.metadata_format
    )
    manifest.upsert(entry)
    if repo.is_git():
        # Keep the bytes out of git; the sidecar is what gets committed
        repo.backend.add_ignore(f"/{rel}")
    logger.debug("Added file", path=rel, oid=str(oid), size=size)
    return FileResult(path=rel, outcome=Outcome.COPIED, oid=oid, size=size)


def remove(
    repo: Repository,
    paths: Iterable[str | os.PathLike[str]],
    message: str | None = None,
) -> RemoveSummary:
    """Stop tracking files.

    Deletes sidecars and manifest entries; the working files and stored
    objects are left alone.
    """
    old_id = current_state_id(repo)
    manifest = repo.load_manifest()
    candidates = sorted(set(tracked_files(repo.backend)) | set(manifest.paths()))
    expansion = expand_inputs(repo.backend, list(paths), candidates)

    summary = RemoveSummary(
        errors=[FileResult.failed(text, err) for text, err in expansion.errors]
    )
    for rel in expansion.paths:
        data_path = repo.root / rel
        had_sidecar = find_sidecar(data_path) is not None
        had_entry = manifest.remove(rel) is not None
        if not (had_sidecar or had_entry):
            summary.errors.append(FileResult.failed(rel, MetadataNotFound(rel)))
            continue
        remove_sidecars(data_path)
        summary.removed.append(rel)

    if summary.removed:
        repo.save_manifest(manifest)
        record_transition(
            repo, ReflogOp.REMOVE, old_id, message=message, paths=summary.removed
        )
    logger.info(
        "Remove completed", removed=len(summary.removed), failed=len(summary.errors)
    )
    return summary


def audit_history(
    repo: Repository, paths: Iterable[str | os.PathLike[str]] | None = None
) -> list[AuditEntry]:
    """Storage audit entries for this repository's storage, oldest first.

    Paths are normalized against the repository root before filtering.
    The log is shared by every repository using the same storage directory.

    Raises:
        FileOutsideRepo: If a filter path is outside the repository.
    """
    wanted = [repo.backend.normalize(p) for p in paths] if paths is not None else None
    return repo.storage().audit_log().read(wanted)
