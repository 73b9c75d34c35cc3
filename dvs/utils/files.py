"""Small filesystem helpers shared by manifest, sidecar and state writers."""

from __future__ import annotations

import os
from pathlib import Path


def write_text_atomic(path: Path, text: str) -> None:
    """Write text through a sibling temp file and replace the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    tmp_path.write_text(text, encoding="utf-8")
    tmp_path.replace(path)


def prune_empty_dirs(start: Path, stop: Path) -> int:
    """Remove empty directories from ``start`` upwards, never touching ``stop``.

    Returns:
        Number of directories removed.
    """
    removed = 0
    current = start
    stop = stop.resolve()
    while True:
        try:
            resolved = current.resolve()
        except OSError:
            break
        if resolved == stop or stop not in resolved.parents:
            break
        try:
            if any(current.iterdir()):
                break
            current.rmdir()
            removed += 1
        except OSError:
            break
        current = current.parent
    return removed
