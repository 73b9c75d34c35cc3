"""Shared backend behavior: root discovery, path normalization, ignore files."""

from __future__ import annotations

import os
from pathlib import Path

from dvs.config.constants import DVS_DIR
from dvs.core.ignore import IgnoreRules
from dvs.errors import FileOutsideRepo
from dvs.platforms import normalize_path
from dvs.utils.logger import get_logger

logger = get_logger("dvs.backend")

# Never tracked regardless of ignore files
ALWAYS_IGNORED = IgnoreRules.from_lines([".git/", f"{DVS_DIR}/"], source="builtin")


def find_upwards(start: Path, markers: tuple[str, ...]) -> Path | None:
    """Return the nearest ancestor of ``start`` (inclusive) holding a marker."""
    current = start.resolve()
    if current.is_file():
        current = current.parent
    for candidate in (current, *current.parents):
        if any((candidate / marker).exists() for marker in markers):
            return candidate
    return None


def append_ignore_entry(ignore_file: Path, entry: str) -> bool:
    """Ensure ``entry`` is a line of ``ignore_file``.

    Creates the file if it doesn't exist, or appends the entry if missing.

    Returns:
        True if the file was changed.
    """
    entry = entry.strip()
    if ignore_file.exists():
        content = ignore_file.read_text(encoding="utf-8")
        lines = content.splitlines()
        bare = entry.rstrip("/")
        if any(line.strip() in (entry, bare, f"{bare}/") for line in lines):
            return False
        if content and not content.endswith("\n"):
            ignore_file.write_text(f"{content}\n{entry}\n", encoding="utf-8")
        else:
            ignore_file.write_text(f"{content}{entry}\n", encoding="utf-8")
        logger.info("Added ignore entry", path=str(ignore_file), entry=entry)
    else:
        ignore_file.write_text(f"{entry}\n", encoding="utf-8")
        logger.info("Created ignore file", path=str(ignore_file), entry=entry)
    return True


class BaseBackend:
    kind: str = "base"
    ignore_filename: str = ""

    def __init__(self, root: Path):
        self.root = root.resolve()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.root)!r})"

    def normalize(self, path: str | os.PathLike[str]) -> str:
        """Return ``path`` relative to the root, with forward slashes.

        Relative inputs are interpreted from the current directory.

        Raises:
            FileOutsideRepo: If the path is not inside the repository.
        """
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        resolved = Path(os.path.normpath(candidate))
        # Resolve symlinks in the existing part so /tmp vs /private/tmp agree
        if resolved.exists():
            resolved = resolved.resolve()
        else:
            resolved = resolved.parent.resolve() / resolved.name
        try:
            rel = resolved.relative_to(self.root)
        except ValueError as e:
            raise FileOutsideRepo(str(path)) from e
        if rel.parts and rel.parts[0] == "..":
            raise FileOutsideRepo(str(path))
        return normalize_path(rel.as_posix())

    def ignore_file(self) -> Path:
        return self.root / self.ignore_filename

    def add_ignore(self, pattern: str) -> bool:
        return append_ignore_entry(self.ignore_file(), pattern)

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        raise NotImplementedError

    def current_branch(self) -> str | None:
        return None
