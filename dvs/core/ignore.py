"""Gitignore-style pattern matching.

Patterns are read from ``.gitignore``, ``.dvsignore`` and ``.ignore`` files.
Each line is parsed into an ``IgnorePattern`` and compiled with pathspec's
gitwildmatch engine. A collection is evaluated in declaration order and the
last matching pattern decides, so a later ``!pattern`` re-includes a path an
earlier pattern excluded.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import pathspec

from dvs.utils.logger import get_logger

logger = get_logger("dvs.ignore")

IGNORE_FILENAMES = (".gitignore", ".dvsignore", ".ignore")


@dataclass
class IgnorePattern:
    """A single parsed ignore rule.

    Attributes:
        pattern: Glob text with negation and directory markers stripped.
        negated: Line started with ``!``; a match re-includes the path.
        dir_only: Line ended with ``/``; only directories can match.
        match_anywhere: No ``/`` in the pattern, so it is matched against the
            basename at any depth instead of the full relative path.
        source: File the line came from, if any.
    """

    pattern: str
    negated: bool = False
    dir_only: bool = False
    match_anywhere: bool = True
    source: str | None = None
    _spec: pathspec.PathSpec = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Root-anchor path patterns; basename patterns are matched per name
        line = self.pattern if self.match_anywhere else "/" + self.pattern
        if line.startswith(("!", "#")):
            line = "\\" + line
        self._spec = pathspec.PathSpec.from_lines("gitwildmatch", [line])

    @classmethod
    def parse(cls, line: str, source: str | None = None) -> IgnorePattern | None:
        """Parse one ignore-file line; returns None for blanks and comments."""
        text = line.rstrip("\n").rstrip()
        if not text or text.startswith("#"):
            return None

        negated = False
        if text.startswith("!"):
            negated = True
            text = text[1:]
        elif text.startswith("\\!") or text.startswith("\\#"):
            text = text[1:]

        dir_only = False
        if text.endswith("/"):
            dir_only = True
            text = text.rstrip("/")

        if not text:
            return None

        match_anywhere = "/" not in text
        # A leading slash only anchors; matching is already against the full path
        text = text.lstrip("/")
        if not text:
            return None

        return cls(
            pattern=text,
            negated=negated,
            dir_only=dir_only,
            match_anywhere=match_anywhere,
            source=source,
        )

    def matches(self, rel_path: str, is_dir: bool = False) -> bool:
        """Return True if this pattern matches ``rel_path``.

        The negation flag does not affect the result; callers decide what a
        match means.
        """
        if self.dir_only and not is_dir:
            return False
        rel_path = rel_path.strip("/")
        if not rel_path:
            return False
        candidate = PurePosixPath(rel_path).name if self.match_anywhere else rel_path
        return self._spec.match_file(candidate)


class IgnoreRules:
    """Ordered collection of ignore patterns."""

    def __init__(self, patterns: Iterable[IgnorePattern] | None = None):
        self.patterns: list[IgnorePattern] = list(patterns or [])

    @classmethod
    def from_lines(cls, lines: Iterable[str], source: str | None = None) -> IgnoreRules:
        rules = cls()
        rules.extend_lines(lines, source)
        return rules

    @classmethod
    def from_files(cls, paths: Iterable[Path]) -> IgnoreRules:
        """Load rules from the given files in order, skipping missing ones."""
        rules = cls()
        for path in paths:
            rules.load_file(path)
        return rules

    def load_file(self, path: Path) -> None:
        if not path.is_file():
            return
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to read ignore file", path=str(path), error=str(e))
            return
        self.extend_lines(content.splitlines(), source=str(path))

    def extend_lines(self, lines: Iterable[str], source: str | None = None) -> None:
        for line in lines:
            parsed = IgnorePattern.parse(line, source)
            if parsed is not None:
                self.patterns.append(parsed)

    def add(self, line: str, source: str | None = None) -> None:
        self.extend_lines([line], source)

    def __len__(self) -> int:
        return len(self.patterns)

    def decide(self, rel_path: str, is_dir: bool = False) -> bool | None:
        """Evaluate patterns for a single path without looking at ancestors.

        Returns:
            True if ignored, False if explicitly re-included, None if no
            pattern matched.
        """
        decision: bool | None = None
        for pattern in self.patterns:
            if pattern.matches(rel_path, is_dir):
                decision = not pattern.negated
        return decision

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        """Return True if ``rel_path`` is ignored.

        A path inside an ignored directory is ignored too, matching git where
        a file cannot be re-included once a parent directory is excluded.
        """
        parts = PurePosixPath(rel_path.strip("/")).parts
        for i in range(1, len(parts)):
            if self.decide("/".join(parts[:i]), is_dir=True):
                return True
        return bool(self.decide(rel_path, is_dir))
