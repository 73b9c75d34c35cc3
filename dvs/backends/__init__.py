"""Repository backends.

The set of backends is closed: a repository is either git-backed or a
standalone workspace. ``detect_backend`` prefers git when both apply.
"""

from __future__ import annotations

from pathlib import Path

from dvs.backends.git import GitBackend
from dvs.backends.workspace import WorkspaceBackend
from dvs.errors import NotInGitRepo, NotInitialized

Backend = GitBackend | WorkspaceBackend


def detect_backend(start: Path | None = None) -> Backend:
    """Resolve the backend for ``start`` (default: current directory).

    Raises:
        NotInitialized: If neither a git repository nor a dvs workspace
            encloses ``start``.
    """
    start = Path(start) if start is not None else Path.cwd()
    try:
        return GitBackend.discover(start)
    except NotInGitRepo:
        pass
    try:
        return WorkspaceBackend.discover(start)
    except NotInitialized as e:
        raise NotInitialized(
            f"Not in a git repository or dvs workspace: {start}"
        ) from e


__all__ = ["Backend", "GitBackend", "WorkspaceBackend", "detect_backend"]
