"""Resolve user-supplied path arguments into repo-relative paths.

Inputs containing ``*``, ``?`` or ``[`` are glob patterns; everything else
is a literal path. Patterns are resolved against the current directory and
then matched against repo-relative paths, where ``*`` also crosses ``/``.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path

from dvs.backends import Backend
from dvs.config.constants import CONFIG_FILENAMES, MANIFEST_JSON, MANIFEST_TOML
from dvs.core.metadata import data_path_for, is_sidecar, iter_sidecars
from dvs.errors import DvsError, FileOutsideRepo, InvalidGlob, NoFilesMatched

GLOB_CHARS = frozenset("*?[")

# Repository bookkeeping files at the root are never data
RESERVED_ROOT_FILES = frozenset({*CONFIG_FILENAMES, MANIFEST_JSON, MANIFEST_TOML})


def is_glob(text: str) -> bool:
    return any(c in GLOB_CHARS for c in text)


def validate_glob(pattern: str) -> None:
    depth = 0
    for c in pattern:
        if c == "[":
            depth += 1
        elif c == "]" and depth:
            depth -= 1
    if depth:
        raise InvalidGlob(pattern, "unclosed '['")


def pattern_relative_to_root(backend: Backend, pattern: str) -> str:
    """Express a cwd-relative glob as a root-relative posix glob.

    Raises:
        FileOutsideRepo: If the pattern's fixed prefix leaves the repository.
    """
    validate_glob(pattern)
    text = pattern.replace(os.sep, "/")
    first_wild = min(text.index(c) for c in GLOB_CHARS if c in text)
    cut = text.rfind("/", 0, first_wild)
    fixed, rest = (text[:cut] or "/", text[cut + 1 :]) if cut >= 0 else ("", text)
    base = Path(fixed) if fixed else Path.cwd()
    if not base.is_absolute():
        base = Path.cwd() / base
    base = base.resolve()
    try:
        rel = base.relative_to(backend.root).as_posix()
    except ValueError as e:
        raise FileOutsideRepo(pattern) from e
    return rest if rel == "." else f"{rel}/{rest}"


def walk_files(backend: Backend) -> Iterator[str]:
    """Yield repo-relative paths of files that are not ignored and are not
    sidecars, pruning ignored directories."""
    root = backend.root
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else rel_dir + "/"
        dirnames[:] = sorted(
            d for d in dirnames if not backend.is_ignored(prefix + d, is_dir=True)
        )
        for name in sorted(filenames):
            rel = prefix + name
            if is_sidecar(Path(name)) or backend.is_ignored(rel):
                continue
            if not prefix and name in RESERVED_ROOT_FILES:
                continue
            yield rel


def tracked_files(backend: Backend) -> list[str]:
    """Repo-relative data paths that have a sidecar."""
    seen: dict[str, None] = {}
    for sidecar in iter_sidecars(backend.root):
        rel = data_path_for(sidecar).relative_to(backend.root).as_posix()
        seen.setdefault(rel, None)
    return sorted(seen)


@dataclass
class Expansion:
    """Paths resolved from inputs plus per-input failures."""

    paths: list[str] = field(default_factory=list)
    errors: list[tuple[str, DvsError]] = field(default_factory=list)

    def add(self, path: str) -> None:
        if path not in self.paths:
            self.paths.append(path)


def expand_inputs(
    backend: Backend,
    inputs: Iterable[str | os.PathLike[str]],
    candidates: Iterable[str],
) -> Expansion:
    """Resolve literal paths and glob patterns.

    Args:
        backend: Repository backend.
        inputs: User-supplied paths or patterns.
        candidates: Repo-relative paths a pattern may match.

    Returns:
        Expansion with matched paths in input order; patterns matching
        nothing and paths outside the repository become per-input errors.
    """
    result = Expansion()
    pool = list(candidates)
    for raw in inputs:
        text = os.fspath(raw)
        try:
            if is_glob(text):
                rel_pattern = pattern_relative_to_root(backend, text)
                matched = [p for p in pool if fnmatchcase(p, rel_pattern)]
                if not matched:
                    raise NoFilesMatched(text)
                for path in matched:
                    result.add(path)
            else:
                result.add(backend.normalize(text))
        except DvsError as e:
            result.errors.append((text, e))
    return result
