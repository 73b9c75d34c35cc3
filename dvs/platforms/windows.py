from __future__ import annotations

import os
from pathlib import Path

from .base import BaseOSAdapter


class WindowsAdapter(BaseOSAdapter):
    def normalize_path(self, path: str) -> str:
        """Normalize Windows path to use forward slashes.

        Replaces backslashes so manifests and sidecars stay identical
        regardless of the OS that wrote them.
        """
        return path.replace("\\", "/")

    def group_id(self, group: str) -> int | None:
        # No POSIX groups; any configured group is reported as missing
        return None

    def apply_permissions(self, path: Path, mode: int) -> None:
        # Only the read-only bit is meaningful on Windows
        os.chmod(path, mode)

    def apply_group(self, path: Path, gid: int) -> None:
        return None
