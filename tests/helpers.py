"""Helpers shared by test modules."""

from __future__ import annotations

from pathlib import Path


def write_file(root: Path, rel: str, content: str | bytes) -> Path:
    """Create ``root/rel`` (and parents) with the given content."""
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        path.write_text(content, encoding="utf-8")
    else:
        path.write_bytes(content)
    return path
