"""Per-file metadata sidecars.

A tracked file ``data.csv`` gets a sidecar next to it, ``data.csv.dvs``
(JSON) or ``data.csv.dvs.toml`` (TOML), recording the content hash, size
and provenance of the version that was added.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import tomli_w

from dvs.config.constants import DVS_DIR, SIDECAR_SUFFIX, SIDECAR_TOML_SUFFIX
from dvs.core.oid import HashAlgo, Oid
from dvs.errors import ConfigError, InvalidArg
from dvs.utils.files import write_text_atomic

# Directories never scanned for sidecars
SKIP_DIRS = frozenset({".git", DVS_DIR, "node_modules", "__pycache__"})


class MetadataFormat(str, Enum):
    JSON = "json"
    TOML = "toml"

    @classmethod
    def parse(cls, value: str) -> MetadataFormat:
        try:
            return cls(value.strip().lower())
        except ValueError as e:
            raise InvalidArg(
                f"Unknown metadata format '{value}' (expected json or toml)"
            ) from e

    @property
    def suffix(self) -> str:
        return SIDECAR_TOML_SUFFIX if self is MetadataFormat.TOML else SIDECAR_SUFFIX

    def __str__(self) -> str:
        return self.value


def now_iso() -> str:
    # Z suffix for UTC keeps the text stable across platforms
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class Metadata:
    """Sidecar record for one tracked file."""

    checksum: str
    size: int
    add_time: str
    saved_by: str
    message: str | None = None
    hash_algo: HashAlgo = HashAlgo.BLAKE3

    @classmethod
    def new(
        cls, oid: Oid, size: int, saved_by: str, message: str | None = None
    ) -> Metadata:
        return cls(
            checksum=oid.hex,
            size=size,
            add_time=now_iso(),
            saved_by=saved_by,
            message=message or None,
            hash_algo=oid.algo,
        )

    @property
    def oid(self) -> Oid:
        return Oid(self.hash_algo, self.checksum)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "checksum": self.checksum,
            "size": self.size,
            "add_time": self.add_time,
            "saved_by": self.saved_by,
        }
        if self.message:
            data["message"] = self.message
        if self.hash_algo is not HashAlgo.BLAKE3:
            data["hash_algo"] = self.hash_algo.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Metadata:
        try:
            checksum = data.get("checksum") or data["blake3_checksum"]
            algo = HashAlgo.parse(data.get("hash_algo") or "blake3")
            meta = cls(
                checksum=str(checksum).lower(),
                size=int(data["size"]),
                add_time=str(data.get("add_time", "")),
                saved_by=str(data.get("saved_by", "unknown")),
                message=data.get("message") or None,
                hash_algo=algo,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Malformed metadata record: {e}") from e
        # Validates digest length and charset
        _ = meta.oid
        return meta

    def dumps(self, fmt: MetadataFormat) -> str:
        if fmt is MetadataFormat.TOML:
            return tomli_w.dumps(self.to_dict())
        return json.dumps(self.to_dict(), indent=2) + "\n"

    @classmethod
    def load(cls, sidecar: Path) -> Metadata:
        """Read a sidecar file; format is taken from the file suffix."""
        text = sidecar.read_text(encoding="utf-8")
        try:
            if sidecar.name.endswith(SIDECAR_TOML_SUFFIX):
                data = tomllib.loads(text)
            else:
                data = json.loads(text)
        except (json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to parse metadata {sidecar}: {e}") from e
        return cls.from_dict(data)

    def save(self, data_path: Path, fmt: MetadataFormat) -> Path:
        """Write the sidecar for ``data_path`` and drop the other format's file."""
        target = sidecar_path(data_path, fmt)
        write_text_atomic(target, self.dumps(fmt))
        for other in MetadataFormat:
            if other is not fmt:
                sidecar_path(data_path, other).unlink(missing_ok=True)
        return target


def sidecar_path(data_path: Path, fmt: MetadataFormat = MetadataFormat.JSON) -> Path:
    return data_path.with_name(data_path.name + fmt.suffix)


def is_sidecar(path: Path) -> bool:
    return path.name.endswith(SIDECAR_SUFFIX) or path.name.endswith(
        SIDECAR_TOML_SUFFIX
    )


def data_path_for(sidecar: Path) -> Path:
    """Inverse of ``sidecar_path``."""
    name = sidecar.name
    for suffix in (SIDECAR_TOML_SUFFIX, SIDECAR_SUFFIX):
        if name.endswith(suffix):
            return sidecar.with_name(name[: -len(suffix)])
    raise InvalidArg(f"Not a metadata sidecar: {sidecar}")


def find_sidecar(data_path: Path) -> Path | None:
    """Locate the existing sidecar for a data file; TOML wins if both exist."""
    for fmt in (MetadataFormat.TOML, MetadataFormat.JSON):
        candidate = sidecar_path(data_path, fmt)
        if candidate.is_file():
            return candidate
    return None


def load_for(data_path: Path) -> Metadata | None:
    sidecar = find_sidecar(data_path)
    if sidecar is None:
        return None
    return Metadata.load(sidecar)


def remove_sidecars(data_path: Path) -> bool:
    removed = False
    for fmt in MetadataFormat:
        path = sidecar_path(data_path, fmt)
        if path.is_file():
            path.unlink()
            removed = True
    return removed


def iter_sidecars(root: Path) -> Iterator[Path]:
    """Walk ``root`` yielding every sidecar file, sorted for stable output."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for name in sorted(filenames):
            if name.endswith(SIDECAR_SUFFIX) or name.endswith(SIDECAR_TOML_SUFFIX):
                yield Path(dirpath) / name
