from __future__ import annotations

import grp
import os
from pathlib import Path

from .base import BaseOSAdapter


class PosixAdapter(BaseOSAdapter):
    def group_id(self, group: str) -> int | None:
        try:
            return grp.getgrnam(group).gr_gid
        except KeyError:
            return None

    def apply_group(self, path: Path, gid: int) -> None:
        # -1 keeps the owner unchanged
        os.chown(path, -1, gid)
