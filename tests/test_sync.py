"""Tests for push and pull against an in-process object server."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient
from helpers import write_file

from dvs.config.manager import save_local_config, set_local_value
from dvs.config.schema import LocalConfig
from dvs.core.hashing import hash_bytes
from dvs.core.manifest import Manifest, ManifestEntry
from dvs.core.outcomes import TransferOutcome
from dvs.core.project import Repository
from dvs.errors import ConfigError
from dvs.services import sync as sync_module
from dvs.services.init import init
from dvs.services.retrieval import materialize
from dvs.services.sync import pull, push, resolve_remote_url
from dvs.services.tracking import add
from dvs.storage import RemoteStore

SERVER = "http://testserver"


def _track(repo: Repository, rel: str, content: bytes) -> None:
    write_file(repo.root, rel, content)
    summary = add(repo, [repo.root / rel])
    assert summary.all_ok


def test_push_pull_round_trip(
    repo: Repository, object_server: TestClient, remote_dir: Path, tmp_path: Path
):
    """First push uploads, second finds it present, a fresh clone downloads it."""
    _track(repo, "data.csv", b"col\n1\n")
    oid = hash_bytes(b"col\n1\n")

    first = push(repo, remote_url=SERVER, client=object_server)
    assert (first.uploaded, first.present, first.failed) == (1, 0, 0)
    assert (remote_dir / oid.storage_subpath).read_bytes() == b"col\n1\n"

    second = push(repo, remote_url=SERVER, client=object_server)
    assert (second.uploaded, second.present, second.failed) == (0, 1, 0)

    clone_root = tmp_path / "clone"
    clone = init(storage_dir=tmp_path / "clone-storage", root=clone_root)
    clone.save_manifest(repo.load_manifest())

    pulled = pull(clone, remote_url=SERVER, client=object_server)
    assert (pulled.downloaded, pulled.cached, pulled.failed) == (1, 0, 0)
    assert clone.cache().exists(oid)

    again = pull(clone, remote_url=SERVER, client=object_server)
    assert (again.downloaded, again.cached) == (0, 1)

    summary = materialize(clone)
    assert summary.materialized == 1
    assert (clone_root / "data.csv").read_bytes() == b"col\n1\n"


def test_push_deduplicates_shared_objects(repo: Repository, object_server: TestClient):
    _track(repo, "a.bin", b"same")
    _track(repo, "b.bin", b"same")

    summary = push(repo, remote_url=SERVER, client=object_server)

    assert summary.uploaded == 1
    assert summary.results[0].paths == ["a.bin", "b.bin"]


def test_push_reports_objects_missing_locally(repo: Repository, object_server: TestClient):
    """An object that was never cached is a per-object failure, not an abort."""
    _track(repo, "ok.bin", b"ok")
    manifest = repo.load_manifest()
    ghost = hash_bytes(b"never stored")
    manifest.upsert(ManifestEntry(path="ghost.bin", oid=ghost, size=12))
    repo.save_manifest(manifest)

    summary = push(repo, remote_url=SERVER, client=object_server)

    assert (summary.uploaded, summary.failed) == (1, 1)
    failed = [r for r in summary.results if r.outcome is TransferOutcome.FAILED]
    assert failed[0].oid == ghost
    assert failed[0].error_kind == "storage_error"


def test_pull_reports_objects_missing_remotely(repo: Repository, object_server: TestClient):
    manifest = Manifest()
    manifest.upsert(ManifestEntry(path="x.bin", oid=hash_bytes(b"nowhere"), size=7))
    repo.save_manifest(manifest)

    summary = pull(repo, remote_url=SERVER, client=object_server)

    assert (summary.downloaded, summary.failed) == (0, 1)
    assert summary.results[0].error_kind == "not_found"


def test_path_scoped_push(repo: Repository, object_server: TestClient, remote_dir: Path):
    _track(repo, "a.bin", b"aaa")
    _track(repo, "b.bin", b"bbb")

    summary = push(
        repo, paths=["b.bin", "unknown.bin"], remote_url=SERVER, client=object_server
    )

    assert (summary.uploaded, summary.failed) == (1, 1)
    assert summary.results[0].oid == hash_bytes(b"bbb")
    assert summary.results[1].oid is None
    assert summary.results[1].error_kind == "metadata_not_found"
    assert not (remote_dir / hash_bytes(b"aaa").storage_subpath).exists()


def test_parallel_push_keeps_manifest_order(repo: Repository, object_server: TestClient):
    contents = [f"file {i}".encode() for i in range(6)]
    for i, data in enumerate(contents):
        _track(repo, f"f{i}.txt", data)

    summary = push(repo, remote_url=SERVER, client=object_server, jobs=4)

    assert summary.uploaded == 6
    assert [r.oid for r in summary.results] == [hash_bytes(d) for d in contents]


def test_remote_url_resolution(repo: Repository):
    """Explicit argument, then local config, then the manifest's base_url."""
    manifest = Manifest(base_url="http://from-manifest")

    assert resolve_remote_url(repo, manifest, "http://explicit") == "http://explicit"
    assert resolve_remote_url(repo, manifest) == "http://from-manifest"

    save_local_config(
        repo.root, set_local_value(LocalConfig(), "base_url", "http://from-local")
    )
    assert resolve_remote_url(repo, manifest) == "http://from-local"

    save_local_config(repo.root, LocalConfig())
    with pytest.raises(ConfigError):
        resolve_remote_url(repo, Manifest())


def test_push_without_remote_fails(repo: Repository):
    with pytest.raises(ConfigError):
        push(repo)


def test_remote_store_sends_bearer_token():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(404)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    oid = hash_bytes(b"x")
    with RemoteStore(SERVER + "/", token="t0k", client=client) as store:
        assert not store.exists(oid)

    assert seen[0].method == "HEAD"
    assert seen[0].headers["authorization"] == "Bearer t0k"
    assert str(seen[0].url) == f"{SERVER}/objects/{oid.algo.value}/{oid.hex}"


def test_pull_rejects_bytes_that_do_not_match_the_oid(
    repo: Repository, object_server: TestClient, remote_dir: Path
):
    """Served bytes are hashed before they reach the cache."""
    oid = hash_bytes(b"expected")
    manifest = Manifest()
    manifest.upsert(ManifestEntry(path="x.bin", oid=oid, size=8))
    repo.save_manifest(manifest)
    write_file(remote_dir, oid.storage_subpath, b"tampered")

    summary = pull(repo, remote_url=SERVER, client=object_server)

    assert (summary.downloaded, summary.failed) == (0, 1)
    assert summary.results[0].error_kind == "hash_mismatch"
    dest = repo.cache().object_path(oid)
    assert not dest.exists()
    assert list(dest.parent.iterdir()) == []


def test_pull_reports_unreadable_download_per_object(
    repo: Repository, object_server: TestClient, tmp_path: Path, monkeypatch
):
    """An OSError while hashing one download fails that object only."""
    _track(repo, "a.bin", b"aaa")
    _track(repo, "b.bin", b"bbb")
    push(repo, remote_url=SERVER, client=object_server)
    clone = init(storage_dir=tmp_path / "clone-storage", root=tmp_path / "clone")
    clone.save_manifest(repo.load_manifest())

    bad = hash_bytes(b"aaa")
    real_hash_file = sync_module.hash_file

    def flaky_hash_file(path, algo):
        if path.read_bytes() == b"aaa":
            raise PermissionError(13, "Permission denied", str(path))
        return real_hash_file(path, algo)

    monkeypatch.setattr(sync_module, "hash_file", flaky_hash_file)

    summary = pull(clone, remote_url=SERVER, client=object_server)

    assert (summary.downloaded, summary.failed) == (1, 1)
    failed = [r for r in summary.results if r.outcome is TransferOutcome.FAILED]
    assert failed[0].oid == bad
    assert failed[0].error_kind == "storage_error"
    assert not clone.cache().exists(bad)
    assert clone.cache().exists(hash_bytes(b"bbb"))
