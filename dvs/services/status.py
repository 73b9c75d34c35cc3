"""Report and verify the state of tracked files."""

from __future__ import annotations

import os
from collections.abc import Iterable

from dvs.core.hashing import hash_file
from dvs.core.manifest import Manifest
from dvs.core.metadata import Metadata, load_for
from dvs.core.oid import Oid
from dvs.core.outcomes import FileStatus, StatusResult, VerifyResult, VerifySummary
from dvs.core.project import Repository
from dvs.errors import DvsError, MetadataNotFound, StorageError
from dvs.services.paths import expand_inputs, tracked_files
from dvs.storage import LocalStore
from dvs.utils.logger import get_logger

logger = get_logger("dvs.status")


def _select(
    repo: Repository,
    paths: Iterable[str | os.PathLike[str]] | None,
    candidates: list[str],
) -> tuple[list[str], list[tuple[str, DvsError]]]:
    if paths is None:
        return candidates, []
    expansion = expand_inputs(repo.backend, list(paths), candidates)
    return expansion.paths, expansion.errors


def _manifest_warnings(manifest: Manifest, rel: str, meta: Metadata) -> list[str]:
    entry = manifest.get(rel)
    if entry is None:
        return ["not in manifest"]
    if entry.oid != meta.oid:
        return [f"manifest records {entry.oid}, sidecar records {meta.oid}"]
    return []


def status(
    repo: Repository, paths: Iterable[str | os.PathLike[str]] | None = None
) -> list[StatusResult]:
    """Compare each tracked file with its sidecar.

    - current: working file matches the recorded hash
    - absent: working file is missing
    - unsynced: working file differs from the recorded hash
    - error: sidecar missing/unreadable, or the object is missing from
      storage for a file that is not unsynced

    Disagreements between sidecar and manifest are reported as warnings.
    """
    selected, errors = _select(repo, paths, tracked_files(repo.backend))
    manifest = repo.load_manifest()
    stores = repo.local_stores()
    results = [
        StatusResult(path=text, status=FileStatus.ERROR, error_kind=e.kind, error=e.message)
        for text, e in errors
    ]

    for rel in selected:
        data_path = repo.root / rel
        try:
            meta = load_for(data_path)
            if meta is None:
                raise MetadataNotFound(rel)
        except DvsError as e:
            results.append(
                StatusResult(
                    path=rel, status=FileStatus.ERROR, error_kind=e.kind, error=e.message
                )
            )
            continue

        oid = meta.oid
        try:
            if not data_path.is_file():
                file_status = FileStatus.ABSENT
            elif hash_file(data_path, oid.algo) == oid:
                file_status = FileStatus.CURRENT
            else:
                file_status = FileStatus.UNSYNCED
        except OSError as e:
            logger.warning("Failed to read working file", path=rel, error=str(e))
            err = StorageError(f"{rel}: {e}")
            results.append(
                StatusResult(
                    path=rel,
                    status=FileStatus.ERROR,
                    oid=oid,
                    error_kind=err.kind,
                    error=err.message,
                )
            )
            continue

        result = StatusResult(
            path=rel,
            status=file_status,
            oid=oid,
            size=meta.size,
            add_time=meta.add_time,
            saved_by=meta.saved_by,
            message=meta.message,
            warnings=_manifest_warnings(manifest, rel, meta),
        )
        if file_status is not FileStatus.UNSYNCED and not stores.exists(oid):
            result.status = FileStatus.ERROR
            result.error_kind = "storage_missing"
            result.error = f"Object {oid} is missing from storage"
        if result.warnings:
            logger.warning("Sidecar and manifest disagree", path=rel, detail=result.warnings)
        results.append(result)

    return results


def verify(
    repo: Repository, paths: Iterable[str | os.PathLike[str]] | None = None
) -> VerifySummary:
    """Check working files, stored objects and records for every tracked path.

    - local_ok: the working file exists and matches its recorded hash
    - storage_ok: the object is stored and its bytes hash to the oid
    - metadata_ok: sidecar and manifest both exist and agree
    """
    manifest = repo.load_manifest()
    candidates = sorted(set(tracked_files(repo.backend)) | set(manifest.paths()))
    selected, errors = _select(repo, paths, candidates)
    stores = [repo.storage(), repo.cache()]
    results = [
        VerifyResult(
            path=text, local_ok=False, storage_ok=False, metadata_ok=False, details=e.message
        )
        for text, e in errors
    ]

    for rel in selected:
        data_path = repo.root / rel
        details: list[str] = []
        try:
            meta = load_for(data_path)
        except DvsError as e:
            meta = None
            details.append(e.message)
        entry = manifest.get(rel)

        metadata_ok = meta is not None and entry is not None and entry.oid == meta.oid
        if meta is None:
            details.append("sidecar missing")
        elif entry is None:
            details.append("manifest entry missing")
        elif not metadata_ok:
            details.append(f"manifest records {entry.oid}, sidecar records {meta.oid}")

        oid = meta.oid if meta is not None else (entry.oid if entry else None)
        local_ok = False
        storage_ok = False
        if oid is not None:
            try:
                if not data_path.is_file():
                    details.append("working file missing")
                elif hash_file(data_path, oid.algo) == oid:
                    local_ok = True
                else:
                    details.append("working file differs from recorded hash")
            except OSError as e:
                details.append(f"working file unreadable: {e}")
            storage_ok = _stored_intact(stores, oid)
            if not storage_ok:
                details.append(f"object {oid} missing or corrupt in storage")

        results.append(
            VerifyResult(
                path=rel,
                local_ok=local_ok,
                storage_ok=storage_ok,
                metadata_ok=metadata_ok,
                details="; ".join(details) or None,
            )
        )

    summary = VerifySummary.from_results(results)
    logger.info(
        "Verify completed",
        total=summary.total,
        passed=summary.passed,
        local_issues=summary.local_issues,
        storage_issues=summary.storage_issues,
        metadata_issues=summary.metadata_issues,
    )
    return summary


def _stored_intact(stores: list[LocalStore], oid: Oid) -> bool:
    for store in stores:
        if store.exists(oid):
            try:
                return hash_file(store.object_path(oid), oid.algo) == oid
            except OSError as e:
                logger.warning("Failed to read stored object", oid=str(oid), error=str(e))
                return False
    return False
