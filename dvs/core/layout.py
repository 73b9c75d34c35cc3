"""Layout of the ``.dvs/`` workspace directory.

::

    .dvs/
      config.toml               per-user settings
      cache/objects/            local object cache
      state/snapshots/<id>.json workspace states by id
      state/materialized.json   path -> oid of materialized files
      refs/HEAD                 current state id
      logs/refs/HEAD            reflog (JSON lines)
      tmp/                      staging for multi-file operations
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from dvs.config.constants import DVS_DIR, LOCAL_CONFIG_FILENAME
from dvs.core.oid import Oid
from dvs.errors import InvalidArg
from dvs.utils.files import write_text_atomic
from dvs.utils.logger import get_logger

logger = get_logger("dvs.layout")


class Layout:
    """Paths under a repository's ``.dvs`` directory."""

    def __init__(self, root: Path):
        self.root = root
        self.dvs_dir = root / DVS_DIR

    @property
    def config_path(self) -> Path:
        return self.dvs_dir / LOCAL_CONFIG_FILENAME

    @property
    def cache_dir(self) -> Path:
        return self.dvs_dir / "cache"

    @property
    def objects_dir(self) -> Path:
        return self.cache_dir / "objects"

    @property
    def state_dir(self) -> Path:
        return self.dvs_dir / "state"

    @property
    def snapshots_dir(self) -> Path:
        return self.state_dir / "snapshots"

    @property
    def materialized_path(self) -> Path:
        return self.state_dir / "materialized.json"

    @property
    def refs_dir(self) -> Path:
        return self.dvs_dir / "refs"

    @property
    def head_path(self) -> Path:
        return self.refs_dir / "HEAD"

    @property
    def reflog_path(self) -> Path:
        return self.dvs_dir / "logs" / "refs" / "HEAD"

    @property
    def tmp_dir(self) -> Path:
        return self.dvs_dir / "tmp"

    def exists(self) -> bool:
        return self.dvs_dir.is_dir()

    def ensure(self) -> None:
        """Create the directory skeleton; existing directories are kept."""
        for directory in (
            self.objects_dir,
            self.snapshots_dir,
            self.refs_dir,
            self.reflog_path.parent,
            self.tmp_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)

    def read_head(self) -> str | None:
        if not self.head_path.is_file():
            return None
        value = self.head_path.read_text(encoding="utf-8").strip()
        return value or None

    def write_head(self, state_id: str) -> None:
        write_text_atomic(self.head_path, state_id + "\n")


@dataclass
class MaterializedState:
    """Which oid was last materialized at each working path."""

    files: dict[str, str] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> MaterializedState:
        if not path.is_file():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return cls(files={str(k): str(v) for k, v in data.get("files", {}).items()})
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning("Ignoring unreadable materialized state", error=str(e))
            return cls()

    def save(self, path: Path) -> None:
        data = {"files": dict(sorted(self.files.items()))}
        write_text_atomic(path, json.dumps(data, indent=2) + "\n")

    def get(self, path: str) -> Oid | None:
        value = self.files.get(path)
        if value is None:
            return None
        try:
            return Oid.parse(value)
        except InvalidArg:
            return None

    def mark(self, path: str, oid: Oid) -> None:
        self.files[path] = str(oid)

    def forget(self, path: str) -> None:
        self.files.pop(path, None)
