"""Standalone repositories outside any VCS."""

from __future__ import annotations

from pathlib import Path

from dvs.backends.base import ALWAYS_IGNORED, BaseBackend, find_upwards
from dvs.config.constants import CONFIG_FILENAMES, DVS_DIR, DVSIGNORE
from dvs.core.ignore import IgnoreRules
from dvs.errors import NotInitialized

WORKSPACE_MARKERS = (*CONFIG_FILENAMES, DVS_DIR)
IGNORE_SOURCES = (DVSIGNORE, ".ignore")


class WorkspaceBackend(BaseBackend):
    kind = "workspace"
    ignore_filename = DVSIGNORE

    def __init__(self, root: Path):
        super().__init__(root)
        self._rules: IgnoreRules | None = None

    @classmethod
    def discover(cls, start: Path) -> WorkspaceBackend:
        root = find_upwards(start, WORKSPACE_MARKERS)
        if root is None:
            raise NotInitialized()
        return cls(root)

    def _engine_rules(self) -> IgnoreRules:
        if self._rules is None:
            self._rules = IgnoreRules.from_files(
                [self.root / name for name in IGNORE_SOURCES]
            )
        return self._rules

    def add_ignore(self, pattern: str) -> bool:
        changed = super().add_ignore(pattern)
        if changed:
            self._rules = None
        return changed

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        if ALWAYS_IGNORED.is_ignored(rel_path, is_dir):
            return True
        return self._engine_rules().is_ignored(rel_path, is_dir)
