"""Git-backed repositories.

Uses dulwich (pure Python git) for branch lookup and for git's own ignore
evaluation (nested ``.gitignore`` files, ``.git/info/exclude``); the root
``.gitignore`` and ``.dvsignore`` are also run through the ignore engine.
"""

from __future__ import annotations

from pathlib import Path

from dulwich import porcelain
from dulwich.errors import NotGitRepository
from dulwich.ignore import IgnoreFilterManager
from dulwich.repo import Repo

from dvs.backends.base import ALWAYS_IGNORED, BaseBackend, find_upwards, logger
from dvs.config.constants import DVSIGNORE, GITIGNORE
from dvs.core.ignore import IgnoreRules
from dvs.errors import NotInGitRepo


class GitBackend(BaseBackend):
    kind = "git"
    ignore_filename = GITIGNORE

    def __init__(self, root: Path):
        super().__init__(root)
        self._repo: Repo | None = None
        self._ignore_manager: IgnoreFilterManager | None = None
        self._rules: IgnoreRules | None = None

    @classmethod
    def discover(cls, start: Path) -> GitBackend:
        """Find the nearest enclosing git repository.

        Raises:
            NotInGitRepo: If no ancestor contains ``.git``.
        """
        root = find_upwards(start, (".git",))
        if root is None:
            raise NotInGitRepo()
        return cls(root)

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            try:
                self._repo = Repo(str(self.root))
            except NotGitRepository as e:
                raise NotInGitRepo(f"Not a git repository: {self.root}") from e
        return self._repo

    def _engine_rules(self) -> IgnoreRules:
        if self._rules is None:
            self._rules = IgnoreRules.from_files(
                [self.root / GITIGNORE, self.root / DVSIGNORE]
            )
        return self._rules

    def _git_ignores(self) -> IgnoreFilterManager:
        if self._ignore_manager is None:
            self._ignore_manager = IgnoreFilterManager.from_repo(self.repo)
        return self._ignore_manager

    def add_ignore(self, pattern: str) -> bool:
        changed = super().add_ignore(pattern)
        if changed:
            # Re-read ignore sources on next check
            self._rules = None
            self._ignore_manager = None
        return changed

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        if ALWAYS_IGNORED.is_ignored(rel_path, is_dir):
            return True
        query = rel_path.rstrip("/") + ("/" if is_dir else "")
        git_decision = self._git_ignores().is_ignored(query)
        if git_decision is not None:
            return bool(git_decision)
        return self._engine_rules().is_ignored(rel_path, is_dir)

    def current_branch(self) -> str | None:
        try:
            branch = porcelain.active_branch(self.repo)
        except (KeyError, IndexError, ValueError) as e:
            # Detached HEAD
            logger.debug("No active branch", error=str(e))
            return None
        return branch.decode("utf-8") if isinstance(branch, bytes) else str(branch)
