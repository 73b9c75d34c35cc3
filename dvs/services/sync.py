"""Transfer objects between the local stores and a remote object server."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import httpx

from dvs.core.hashing import hash_file
from dvs.core.manifest import Manifest
from dvs.core.oid import Oid
from dvs.core.outcomes import ObjectResult, PullSummary, PushSummary, TransferOutcome
from dvs.core.project import Repository
from dvs.errors import ConfigError, DvsError, HashMismatch, MetadataNotFound, StorageError
from dvs.storage import LocalStore, RemoteStore
from dvs.storage.local import temp_path_for
from dvs.utils.logger import get_logger

logger = get_logger("dvs.sync")

# Number of failure entries to include in log output
MAX_FAILURE_SAMPLES = 5


def resolve_remote_url(
    repo: Repository, manifest: Manifest, remote_url: str | None = None
) -> str:
    """Pick the remote: explicit argument, then local config, then manifest.

    Raises:
        ConfigError: If none of them provides a URL.
    """
    if remote_url:
        return remote_url
    local = repo.local_config()
    if local.base_url:
        return local.base_url
    if manifest.base_url:
        return manifest.base_url
    raise ConfigError(
        "No remote URL specified. Pass one explicitly, set base_url in "
        ".dvs/config.toml, or set base_url in the manifest."
    )


@dataclass
class _Target:
    oid: Oid | None
    paths: list[str] = field(default_factory=list)
    error: DvsError | None = None


def _collect_targets(
    repo: Repository, manifest: Manifest, paths: Iterable[str | os.PathLike[str]] | None
) -> list[_Target]:
    """Unique oids to transfer, in manifest order, with the paths using them."""
    if paths is None:
        by_oid = manifest.by_oid()
        return [
            _Target(oid=oid, paths=[e.path for e in by_oid[oid]])
            for oid in manifest.unique_oids()
        ]

    targets: dict[Oid, _Target] = {}
    failures: list[_Target] = []
    for raw in paths:
        text = os.fspath(raw)
        try:
            rel = repo.backend.normalize(text)
            entry = manifest.get(rel)
            if entry is None:
                raise MetadataNotFound(rel)
        except DvsError as e:
            failures.append(_Target(oid=None, paths=[text], error=e))
            continue
        target = targets.setdefault(entry.oid, _Target(oid=entry.oid))
        target.paths.append(rel)
    return [*targets.values(), *failures]


def _run(
    targets: list[_Target], worker: Callable[[_Target], ObjectResult], jobs: int
) -> list[ObjectResult]:
    """Apply ``worker`` to each target; results keep the target order."""
    if jobs <= 1 or len(targets) <= 1:
        return [worker(t) for t in targets]
    with ThreadPoolExecutor(max_workers=min(jobs, len(targets))) as executor:
        futures = [executor.submit(worker, t) for t in targets]
        return [f.result() for f in futures]


def _failed(target: _Target, exc: DvsError) -> ObjectResult:
    return ObjectResult(
        oid=target.oid,
        outcome=TransferOutcome.FAILED,
        paths=target.paths,
        error_kind=exc.kind,
        error=exc.message,
    )


def _log_failures(op: str, results: list[ObjectResult]) -> None:
    failed = [r for r in results if r.outcome is TransferOutcome.FAILED]
    if not failed:
        return
    logger.warning(
        f"{op} had failures",
        failed=len(failed),
        samples=[
            f"{', '.join(r.paths)}: {r.error}" for r in failed[:MAX_FAILURE_SAMPLES]
        ],
    )


def _download_verified(
    remote: RemoteStore, cache: LocalStore, oid: Oid, paths: list[str]
) -> None:
    """Download into a temp file and only adopt it once it hashes to ``oid``."""
    dest = cache.object_path(oid)
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = temp_path_for(dest)
    try:
        remote.fetch(oid, tmp)
        actual = hash_file(tmp, oid.algo)
        if actual != oid:
            raise HashMismatch(", ".join(paths), str(oid), str(actual))
        cache.adopt(oid, tmp)
    finally:
        tmp.unlink(missing_ok=True)


def _remote_for(
    repo: Repository, url: str, client: httpx.Client | None
) -> RemoteStore:
    return RemoteStore(url, token=repo.local_config().auth_token, client=client)


def push(
    repo: Repository,
    paths: Iterable[str | os.PathLike[str]] | None = None,
    remote_url: str | None = None,
    client: httpx.Client | None = None,
    jobs: int = 1,
) -> PushSummary:
    """Upload objects referenced by the manifest that the remote lacks.

    Args:
        repo: Source repository.
        paths: Only push objects for these paths; all when None.
        remote_url: Overrides the configured remote.
        client: HTTP client to use (tests pass an in-process client).
        jobs: Maximum concurrent transfers.

    Returns:
        PushSummary with per-object results.

    Raises:
        ConfigError: If no remote URL can be resolved.
    """
    manifest = repo.load_manifest()
    url = resolve_remote_url(repo, manifest, remote_url)
    targets = _collect_targets(repo, manifest, paths)
    local_stores: list[LocalStore] = [repo.storage(), repo.cache()]

    with _remote_for(repo, url, client) as remote:

        def push_one(target: _Target) -> ObjectResult:
            if target.error is not None:
                return _failed(target, target.error)
            oid = target.oid
            assert oid is not None
            try:
                if remote.exists(oid):
                    return ObjectResult(oid, TransferOutcome.PRESENT, target.paths)
                source = next((s for s in local_stores if s.exists(oid)), None)
                if source is None:
                    raise StorageError(
                        f"Object {oid} is not in local storage or cache; cannot push"
                    )
                remote.upload(oid, source.object_path(oid))
                return ObjectResult(oid, TransferOutcome.UPLOADED, target.paths)
            except DvsError as e:
                return _failed(target, e)
            except OSError as e:
                return _failed(target, StorageError(f"{oid}: {e}"))

        results = _run(targets, push_one, jobs)

    summary = PushSummary.from_results(results)
    _log_failures("Push", results)
    logger.info(
        "Push completed",
        remote=url,
        uploaded=summary.uploaded,
        present=summary.present,
        failed=summary.failed,
    )
    return summary


def pull(
    repo: Repository,
    paths: Iterable[str | os.PathLike[str]] | None = None,
    remote_url: str | None = None,
    client: httpx.Client | None = None,
    jobs: int = 1,
) -> PullSummary:
    """Download objects referenced by the manifest into the local cache.

    Objects already in storage or the cache are reported as cached.
    Working files are not touched; use ``materialize`` or ``get`` for that.
    """
    manifest = repo.load_manifest()
    url = resolve_remote_url(repo, manifest, remote_url)
    targets = _collect_targets(repo, manifest, paths)
    local = repo.local_stores()
    cache = repo.cache()

    with _remote_for(repo, url, client) as remote:

        def pull_one(target: _Target) -> ObjectResult:
            if target.error is not None:
                return _failed(target, target.error)
            oid = target.oid
            assert oid is not None
            try:
                if local.exists(oid):
                    return ObjectResult(oid, TransferOutcome.CACHED, target.paths)
                _download_verified(remote, cache, oid, target.paths)
                return ObjectResult(oid, TransferOutcome.DOWNLOADED, target.paths)
            except DvsError as e:
                return _failed(target, e)
            except OSError as e:
                return _failed(target, StorageError(f"{oid}: {e}"))

        results = _run(targets, pull_one, jobs)

    summary = PullSummary.from_results(results)
    _log_failures("Pull", results)
    logger.info(
        "Pull completed",
        remote=url,
        downloaded=summary.downloaded,
        cached=summary.cached,
        failed=summary.failed,
    )
    return summary
