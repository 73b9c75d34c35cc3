from __future__ import annotations

import getpass
import os
from pathlib import Path
from typing import Protocol


class OSAdapter(Protocol):
    def normalize_path(self, path: str) -> str:
        """Normalize path to use forward slashes (for manifests and sidecars)."""
        ...

    def current_user(self) -> str: ...
    def group_id(self, group: str) -> int | None: ...
    def apply_permissions(self, path: Path, mode: int) -> None: ...
    def apply_group(self, path: Path, gid: int) -> None: ...


class BaseOSAdapter:
    def normalize_path(self, path: str) -> str:
        """Normalize path to use forward slashes.

        Default implementation: no transformation (POSIX-like systems).
        Windows adapter overrides to replace backslashes.
        """
        return path

    def current_user(self) -> str:
        """Name recorded as the actor of reflog entries and sidecars."""
        try:
            return getpass.getuser() or "unknown"
        except (KeyError, OSError):
            return os.environ.get("USER") or os.environ.get("USERNAME") or "unknown"

    def group_id(self, group: str) -> int | None:
        """Resolve a group name to a numeric id; None if it does not exist."""
        raise NotImplementedError

    def apply_permissions(self, path: Path, mode: int) -> None:
        os.chmod(path, mode)

    def apply_group(self, path: Path, gid: int) -> None:
        raise NotImplementedError
