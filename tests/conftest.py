"""Shared pytest fixtures for all tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from dulwich import porcelain
from fastapi.testclient import TestClient

from dvs.api.app import create_app
from dvs.core.project import Repository
from dvs.services.init import init


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    return tmp_path / "storage"


@pytest.fixture
def repo(tmp_path: Path, storage_dir: Path, monkeypatch) -> Repository:
    """Initialized standalone workspace; cwd is its root."""
    root = tmp_path / "repo"
    root.mkdir()
    monkeypatch.chdir(root)
    return init(storage_dir=storage_dir, root=root)


@pytest.fixture
def git_repo(tmp_path: Path, storage_dir: Path, monkeypatch) -> Repository:
    """Initialized repository inside a fresh git working tree."""
    root = tmp_path / "gitrepo"
    root.mkdir()
    porcelain.init(str(root))
    monkeypatch.chdir(root)
    return init(storage_dir=storage_dir, root=root)


@pytest.fixture
def remote_dir(tmp_path: Path) -> Path:
    return tmp_path / "remote-objects"


@pytest.fixture
def object_server(remote_dir: Path) -> TestClient:
    """In-process object server; also usable as the HTTP client for push/pull."""
    with TestClient(create_app(remote_dir)) as client:
        yield client
