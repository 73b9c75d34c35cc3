"""The manifest binds repo-relative paths to content objects.

Stored at the repository root as ``dvs.lock`` (JSON) or ``dvs.lock.toml``.
Serialization uses a fixed key order so that loading and saving an
unchanged manifest reproduces the file byte for byte.
"""

from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any

import tomli_w

from dvs.config.constants import DEFAULT_REMOTE_NAME, MANIFEST_VERSION
from dvs.core.oid import Oid
from dvs.errors import ConfigError, InvalidArg, StorageError
from dvs.utils.files import write_text_atomic


class Compression(str, Enum):
    NONE = "none"
    ZSTD = "zstd"
    GZIP = "gzip"
    LZ4 = "lz4"


def check_entry_path(path: str) -> str:
    """Return ``path`` if it names a location inside the repository root.

    Raises:
        InvalidArg: For empty, absolute or drive-anchored paths and any path
            with a ``..`` component.
    """
    pure = PurePosixPath(path)
    if (
        not path
        or pure.is_absolute()
        or PureWindowsPath(path).anchor
        or ".." in pure.parts
        or ".." in PureWindowsPath(path).parts
    ):
        raise InvalidArg(f"Manifest path must stay inside the repository: {path!r}")
    return path


@dataclass
class ManifestEntry:
    path: str
    oid: Oid
    size: int
    compression: Compression = Compression.NONE
    remote: str = DEFAULT_REMOTE_NAME

    def __post_init__(self) -> None:
        check_entry_path(self.path)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "path": self.path,
            "oid": str(self.oid),
            "bytes": self.size,
        }
        if self.compression is not Compression.NONE:
            data["compression"] = self.compression.value
        if self.remote != DEFAULT_REMOTE_NAME:
            data["remote"] = self.remote
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManifestEntry:
        try:
            return cls(
                path=str(data["path"]),
                oid=Oid.parse(str(data["oid"])),
                size=int(data.get("bytes", data.get("size", 0))),
                compression=Compression(data.get("compression", "none")),
                remote=str(data.get("remote", DEFAULT_REMOTE_NAME)),
            )
        except (KeyError, TypeError, ValueError, InvalidArg) as e:
            raise ConfigError(f"Malformed manifest entry {data!r}: {e}") from e


@dataclass
class Manifest:
    """Ordered path → object index with an optional default remote."""

    entries: list[ManifestEntry] = field(default_factory=list)
    base_url: str | None = None
    version: int = MANIFEST_VERSION

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def get(self, path: str) -> ManifestEntry | None:
        for entry in self.entries:
            if entry.path == path:
                return entry
        return None

    def upsert(self, entry: ManifestEntry) -> None:
        """Insert or replace the entry for ``entry.path`` keeping its position."""
        for i, existing in enumerate(self.entries):
            if existing.path == entry.path:
                self.entries[i] = entry
                return
        self.entries.append(entry)

    def remove(self, path: str) -> ManifestEntry | None:
        for i, existing in enumerate(self.entries):
            if existing.path == path:
                return self.entries.pop(i)
        return None

    def paths(self) -> list[str]:
        return [e.path for e in self.entries]

    def by_path(self) -> dict[str, ManifestEntry]:
        return {e.path: e for e in self.entries}

    def by_oid(self) -> dict[Oid, list[ManifestEntry]]:
        result: dict[Oid, list[ManifestEntry]] = {}
        for entry in self.entries:
            result.setdefault(entry.oid, []).append(entry)
        return result

    def unique_oids(self) -> list[Oid]:
        """Distinct oids in first-reference order."""
        seen: dict[Oid, None] = {}
        for entry in self.entries:
            seen.setdefault(entry.oid, None)
        return list(seen)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"version": self.version}
        if self.base_url:
            data["base_url"] = self.base_url
        data["entries"] = [e.to_dict() for e in self.entries]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Manifest:
        version = int(data.get("version", MANIFEST_VERSION))
        if version > MANIFEST_VERSION:
            raise ConfigError(f"Unsupported manifest version {version}")
        entries = [ManifestEntry.from_dict(e) for e in data.get("entries", [])]
        manifest = cls(base_url=data.get("base_url") or None, version=version)
        for entry in entries:
            manifest.upsert(entry)
        return manifest

    def dumps(self, toml: bool = False) -> str:
        if toml:
            return tomli_w.dumps(self.to_dict())
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False) + "\n"

    @classmethod
    def loads(cls, text: str, toml: bool = False) -> Manifest:
        try:
            data = tomllib.loads(text) if toml else json.loads(text)
        except (json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to parse manifest: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError("Manifest must be a mapping")
        return cls.from_dict(data)

    @classmethod
    def load(cls, path: Path) -> Manifest:
        try:
            return cls.loads(path.read_text(encoding="utf-8"), toml=_is_toml(path))
        except (ConfigError, InvalidArg) as e:
            raise ConfigError(f"{path}: {e.message}") from e

    @classmethod
    def load_or_default(cls, path: Path) -> Manifest:
        if not path.is_file():
            return cls()
        return cls.load(path)

    def save(self, path: Path) -> None:
        try:
            write_text_atomic(path, self.dumps(toml=_is_toml(path)))
        except OSError as e:
            raise StorageError(f"Failed to write manifest {path}: {e}") from e


def _is_toml(path: Path) -> bool:
    return path.suffix == ".toml"
