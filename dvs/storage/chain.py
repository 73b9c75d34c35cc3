"""Ordered fallback over several content stores."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from dvs.core.oid import Oid
from dvs.errors import ObjectNotFound
from dvs.storage.base import ContentStore
from dvs.utils.logger import get_logger

logger = get_logger("dvs.storage.chain")


class ChainStore:
    """Composite store.

    ``exists`` and ``fetch`` try the stores in declared order and the first
    hit wins; ``upload`` writes to every store, which is how mirrors are kept
    in step.
    """

    def __init__(self, stores: Sequence[ContentStore]):
        self.stores = list(stores)

    def describe(self) -> str:
        return "chain[" + ", ".join(s.describe() for s in self.stores) + "]"

    def find(self, oid: Oid) -> ContentStore | None:
        """Return the first store holding ``oid``."""
        for store in self.stores:
            if store.exists(oid):
                return store
        return None

    def exists(self, oid: Oid) -> bool:
        return self.find(oid) is not None

    def fetch(self, oid: Oid, dest: Path) -> None:
        store = self.find(oid)
        if store is None:
            raise ObjectNotFound(f"Object not found in any store: {oid}")
        logger.debug("Fetching object", oid=str(oid), store=store.describe())
        store.fetch(oid, dest)

    def upload(self, oid: Oid, src: Path) -> None:
        for store in self.stores:
            store.upload(oid, src)
