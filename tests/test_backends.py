"""Tests for repository backend detection, path normalization and ignores."""

from __future__ import annotations

from pathlib import Path

import pytest
from dulwich import porcelain
from helpers import write_file

from dvs.backends import GitBackend, WorkspaceBackend, detect_backend
from dvs.backends.base import append_ignore_entry
from dvs.core.project import Repository
from dvs.errors import FileOutsideRepo, NotInitialized


def test_detect_prefers_git(tmp_path: Path):
    """A git work tree wins even when a dvs config is also present."""
    root = tmp_path / "proj"
    root.mkdir()
    porcelain.init(str(root))
    write_file(root, "dvs.yaml", "storage_dir: /tmp/x\n")
    nested = root / "a" / "b"
    nested.mkdir(parents=True)

    backend = detect_backend(nested)

    assert isinstance(backend, GitBackend)
    assert backend.root == root.resolve()


def test_detect_workspace_by_marker(tmp_path: Path):
    root = tmp_path / "ws"
    (root / ".dvs").mkdir(parents=True)
    (root / "sub").mkdir()

    backend = detect_backend(root / "sub")

    assert isinstance(backend, WorkspaceBackend)
    assert backend.root == root.resolve()


def test_detect_outside_any_repository(tmp_path: Path):
    with pytest.raises(NotInitialized):
        detect_backend(tmp_path)


def test_normalize_relative_and_absolute(repo: Repository):
    """Relative paths resolve from the cwd; results use forward slashes."""
    (repo.root / "data").mkdir()

    assert repo.backend.normalize("data/file.csv") == "data/file.csv"
    assert repo.backend.normalize(repo.root / "data" / "file.csv") == "data/file.csv"
    assert repo.backend.normalize("./data/../data/x.bin") == "data/x.bin"


def test_normalize_from_subdirectory(repo: Repository, monkeypatch):
    sub = repo.root / "nested"
    sub.mkdir()
    monkeypatch.chdir(sub)

    assert repo.backend.normalize("f.txt") == "nested/f.txt"


def test_normalize_rejects_outside_paths(repo: Repository, tmp_path: Path):
    with pytest.raises(FileOutsideRepo):
        repo.backend.normalize(tmp_path / "elsewhere.txt")
    with pytest.raises(FileOutsideRepo):
        repo.backend.normalize("../escape.txt")


def test_workspace_ignores(repo: Repository):
    write_file(repo.root, ".dvsignore", "*.tmp\nscratch/\n")
    backend = WorkspaceBackend(repo.root)

    assert backend.is_ignored("a.tmp")
    assert backend.is_ignored("scratch", is_dir=True)
    assert backend.is_ignored("scratch/x.csv")
    assert backend.is_ignored(".dvs", is_dir=True)
    assert not backend.is_ignored("a.csv")


def test_git_backend_uses_gitignore(git_repo: Repository):
    write_file(git_repo.root, ".gitignore", "*.bin\n!keep.bin\n")
    backend = GitBackend(git_repo.root)

    assert backend.is_ignored("x.bin")
    assert not backend.is_ignored("keep.bin")
    assert backend.is_ignored(".git", is_dir=True)
    assert not backend.is_ignored("readme.md")


def test_git_backend_add_ignore_refreshes(git_repo: Repository):
    backend = git_repo.backend
    assert not backend.is_ignored("big.csv")

    assert backend.add_ignore("/big.csv") is True
    assert backend.is_ignored("big.csv")
    assert not backend.is_ignored("sub/big.csv")


def test_append_ignore_entry_is_idempotent(tmp_path: Path):
    ignore = tmp_path / ".gitignore"
    ignore.write_text("node_modules/\n*.log", encoding="utf-8")

    assert append_ignore_entry(ignore, ".dvs/") is True
    assert append_ignore_entry(ignore, ".dvs/") is False
    assert append_ignore_entry(ignore, ".dvs") is False
    assert ignore.read_text(encoding="utf-8").splitlines() == [
        "node_modules/",
        "*.log",
        ".dvs/",
    ]


def test_git_init_adds_state_dir_to_gitignore(git_repo: Repository):
    lines = (git_repo.root / ".gitignore").read_text(encoding="utf-8").splitlines()
    assert ".dvs/" in lines


def test_workspace_init_leaves_gitignore_alone(repo: Repository):
    assert not (repo.root / ".gitignore").exists()


def test_current_branch(git_repo: Repository, repo: Repository):
    assert repo.backend.current_branch() is None
    branch = git_repo.backend.current_branch()
    assert branch is None or isinstance(branch, str)
