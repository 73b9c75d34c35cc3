"""Content store capability set."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from dvs.core.oid import Oid


@runtime_checkable
class ContentStore(Protocol):
    """Storage keyed by object id.

    Entries are immutable: an oid always maps to the same bytes, so stores
    only ever create objects that are absent and never rewrite them.
    """

    def exists(self, oid: Oid) -> bool: ...

    def fetch(self, oid: Oid, dest: Path) -> None:
        """Copy the object's bytes to ``dest``, creating parent directories."""
        ...

    def upload(self, oid: Oid, src: Path) -> None:
        """Store the bytes of ``src`` under ``oid`` if not already present."""
        ...

    def describe(self) -> str: ...
