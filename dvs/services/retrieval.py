"""Bring tracked file content back into the working tree."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

from dvs.core.hashing import file_matches, hash_file
from dvs.core.layout import MaterializedState
from dvs.core.metadata import load_for
from dvs.core.oid import Oid
from dvs.core.outcomes import (
    BatchSummary,
    FileResult,
    MaterializeResult,
    MaterializeSummary,
    Outcome,
)
from dvs.core.project import Repository
from dvs.errors import DvsError, HashMismatch, MetadataNotFound, ObjectNotFound, StorageError
from dvs.services.paths import expand_inputs, tracked_files
from dvs.storage import ChainStore
from dvs.storage.local import temp_path_for
from dvs.utils.logger import get_logger

logger = get_logger("dvs.retrieval")


def fetch_verified(stores: ChainStore, oid: Oid, dest: Path) -> None:
    """Copy ``oid`` to ``dest`` via a sibling temp file, checking its hash.

    Raises:
        ObjectNotFound: If no store has the object.
        HashMismatch: If the fetched bytes do not hash to ``oid``.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = temp_path_for(dest)
    try:
        stores.fetch(oid, tmp)
        actual = hash_file(tmp, oid.algo)
        if actual != oid:
            raise HashMismatch(dest.name, str(oid), str(actual))
        os.replace(tmp, dest)
    finally:
        tmp.unlink(missing_ok=True)


def get(repo: Repository, paths: Iterable[str | os.PathLike[str]]) -> BatchSummary:
    """Restore tracked files from storage using their sidecars.

    Files whose content already matches are reported as present.
    """
    expansion = expand_inputs(repo.backend, list(paths), tracked_files(repo.backend))
    results = [FileResult.failed(text, err) for text, err in expansion.errors]
    stores = repo.local_stores()
    materialized = MaterializedState.load(repo.layout.materialized_path)

    for rel in expansion.paths:
        data_path = repo.root / rel
        try:
            meta = load_for(data_path)
            if meta is None:
                raise MetadataNotFound(rel)
            oid = meta.oid
            if file_matches(data_path, oid):
                results.append(
                    FileResult(path=rel, outcome=Outcome.PRESENT, oid=oid, size=meta.size)
                )
                continue
            try:
                fetch_verified(stores, oid, data_path)
            except ObjectNotFound as e:
                raise ObjectNotFound(
                    f"{e.message} (run pull to download it from the remote)"
                ) from e
            materialized.mark(rel, oid)
            results.append(
                FileResult(path=rel, outcome=Outcome.COPIED, oid=oid, size=meta.size)
            )
        except DvsError as e:
            logger.warning("Failed to get file", path=rel, error=e.message, kind=e.kind)
            results.append(FileResult.failed(rel, e))
        except OSError as e:
            results.append(FileResult.failed(rel, StorageError(f"{rel}: {e}")))

    materialized.save(repo.layout.materialized_path)
    summary = BatchSummary.from_results(results)
    logger.info(
        "Get completed",
        copied=summary.copied,
        present=summary.present,
        failed=summary.failed,
    )
    return summary


def materialize(
    repo: Repository, paths: Iterable[str | os.PathLike[str]] | None = None
) -> MaterializeSummary:
    """Write manifest entries' content into their working paths.

    Uses the cached objects (storage, then ``.dvs/cache``) and remembers
    what was written so unchanged files are skipped next time.

    Args:
        repo: Repository to materialize.
        paths: Restrict to these paths or patterns; all entries when None.
    """
    manifest = repo.load_manifest()
    by_path = manifest.by_path()
    results: list[MaterializeResult] = []

    if paths is None:
        selected = manifest.paths()
    else:
        expansion = expand_inputs(repo.backend, list(paths), manifest.paths())
        selected = expansion.paths
        for text, err in expansion.errors:
            results.append(
                MaterializeResult(path=text, oid=None, error_kind=err.kind, error=err.message)
            )

    stores = repo.local_stores()
    state = MaterializedState.load(repo.layout.materialized_path)

    for rel in selected:
        entry = by_path.get(rel)
        if entry is None:
            err = MetadataNotFound(rel)
            results.append(
                MaterializeResult(path=rel, oid=None, error_kind=err.kind, error=err.message)
            )
            continue
        data_path = repo.root / rel
        try:
            if _is_up_to_date(state, rel, entry.oid, entry.size, data_path):
                state.mark(rel, entry.oid)
                results.append(MaterializeResult(path=rel, oid=entry.oid, up_to_date=True))
                continue
            fetch_verified(stores, entry.oid, data_path)
            state.mark(rel, entry.oid)
            results.append(MaterializeResult(path=rel, oid=entry.oid, materialized=True))
        except DvsError as e:
            logger.warning("Failed to materialize", path=rel, error=e.message)
            results.append(
                MaterializeResult(path=rel, oid=entry.oid, error_kind=e.kind, error=e.message)
            )

    state.save(repo.layout.materialized_path)
    summary = MaterializeSummary.from_results(results)
    logger.info(
        "Materialize completed",
        materialized=summary.materialized,
        up_to_date=summary.up_to_date,
        failed=summary.failed,
    )
    return summary


def _is_up_to_date(
    state: MaterializedState, rel: str, oid: Oid, size: int, data_path: Path
) -> bool:
    if not data_path.is_file():
        return False
    # Same oid recorded and same size: trust the previous materialization
    if state.get(rel) == oid and data_path.stat().st_size == size:
        return True
    return file_matches(data_path, oid)
