"""Repository handle.

A ``Repository`` ties together the resolved backend, the loaded config and
the ``.dvs`` layout, and hands out the stores, manifest and journal that
operations work on.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from dvs.backends import Backend, GitBackend, detect_backend
from dvs.config.constants import DVS_DIR, MANIFEST_JSON, MANIFEST_TOML
from dvs.config.manager import load_config, load_local_config
from dvs.config.schema import Config, LocalConfig
from dvs.core.layout import Layout
from dvs.core.manifest import Manifest
from dvs.core.metadata import MetadataFormat
from dvs.core.state import Reflog, SnapshotStore
from dvs.errors import GroupNotSet
from dvs.platforms import get_adapter
from dvs.storage import ChainStore, LocalStore
from dvs.utils.logger import get_logger

logger = get_logger("dvs.project")


@dataclass
class Repository:
    """An initialized dvs repository.

    Attributes:
        backend: Git-backed or standalone backend owning the root.
        config: Parsed ``dvs.yaml`` / ``dvs.toml``.
    """

    backend: Backend
    config: Config

    @classmethod
    def open(cls, start: Path | None = None) -> Repository:
        """Detect the backend for ``start`` and load its config.

        Raises:
            NotInitialized: If there is no repository or no config file.
        """
        backend = detect_backend(start)
        return cls(backend=backend, config=load_config(backend.root))

    @property
    def root(self) -> Path:
        return self.backend.root

    @property
    def layout(self) -> Layout:
        return Layout(self.root)

    @property
    def manifest_path(self) -> Path:
        for name in (MANIFEST_JSON, MANIFEST_TOML):
            if (self.root / name).is_file():
                return self.root / name
        if self.config.metadata_format is MetadataFormat.TOML:
            return self.root / MANIFEST_TOML
        return self.root / MANIFEST_JSON

    def load_manifest(self) -> Manifest:
        return Manifest.load_or_default(self.manifest_path)

    def save_manifest(self, manifest: Manifest) -> None:
        manifest.save(self.manifest_path)

    def local_config(self) -> LocalConfig:
        return load_local_config(self.root)

    @property
    def storage_dir(self) -> Path:
        return self.config.storage_path(self.root)

    def group_id(self) -> int | None:
        """Numeric id of the configured group.

        Raises:
            GroupNotSet: If a group is configured but missing on this system.
        """
        if not self.config.group:
            return None
        gid = get_adapter().group_id(self.config.group)
        if gid is None:
            raise GroupNotSet(self.config.group)
        return gid

    def storage(self) -> LocalStore:
        """Primary shared store at ``storage_dir``."""
        return LocalStore(
            self.storage_dir, permissions=self.config.permissions, gid=self.group_id()
        )

    def cache(self) -> LocalStore:
        """Per-user object cache under ``.dvs/cache/objects``."""
        return LocalStore(self.layout.objects_dir)

    def local_stores(self) -> ChainStore:
        """Storage first, then the cache."""
        return ChainStore([self.storage(), self.cache()])

    def snapshots(self) -> SnapshotStore:
        return SnapshotStore(self.layout.snapshots_dir)

    def reflog(self) -> Reflog:
        return Reflog(self.layout)

    def is_git(self) -> bool:
        return isinstance(self.backend, GitBackend)

    def ensure_gitignore_entry(self, entry: str = f"{DVS_DIR}/") -> bool:
        """Ensure ``entry`` is listed in .gitignore for git-backed repos.

        Standalone workspaces have nothing to hide from a VCS.
        """
        if not self.is_git():
            return False
        try:
            return self.backend.add_ignore(entry)
        except OSError as e:
            logger.warning(
                "Failed to update .gitignore", error=str(e), entry=entry, root=str(self.root)
            )
            return False
