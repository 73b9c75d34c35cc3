"""Workspace states and the reflog.

A ``WorkspaceState`` is a canonical snapshot of the manifest plus every
sidecar record. Its id is the blake3 hash of its canonical JSON, so equal
content always yields an equal id. States are stored once under
``.dvs/state/snapshots/<id>.json``.

The reflog is an append-only JSON-lines journal of transitions between
state ids. It is written oldest-first and read newest-first; index 0 is
the most recent entry.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import blake3

from dvs.config.constants import STATE_VERSION
from dvs.core.layout import Layout
from dvs.core.manifest import Manifest
from dvs.core.metadata import Metadata, now_iso
from dvs.errors import ConfigError, InvalidArg, StateNotFound
from dvs.utils.files import write_text_atomic
from dvs.utils.logger import get_logger

logger = get_logger("dvs.state")

# Shortest prefix accepted when resolving a state id
MIN_PREFIX_LEN = 4


@dataclass(frozen=True)
class MetadataEntry:
    path: str
    meta: Metadata

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "meta": self.meta.to_dict()}


@dataclass
class WorkspaceState:
    """Immutable snapshot of manifest and sidecar metadata."""

    manifest: Manifest | None = None
    metadata: list[MetadataEntry] = field(default_factory=list)
    version: int = STATE_VERSION

    def __post_init__(self) -> None:
        # Sorting here makes the id independent of collection order
        self.metadata = sorted(self.metadata, key=lambda m: m.path)

    @classmethod
    def from_parts(
        cls, manifest: Manifest | None, metadata: Iterable[tuple[str, Metadata]]
    ) -> WorkspaceState:
        return cls(
            manifest=manifest,
            metadata=[MetadataEntry(path, meta) for path, meta in metadata],
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"version": self.version}
        if self.manifest is not None:
            data["manifest"] = self.manifest.to_dict()
        data["metadata"] = [m.to_dict() for m in self.metadata]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkspaceState:
        manifest_data = data.get("manifest")
        try:
            metadata = [
                MetadataEntry(str(item["path"]), Metadata.from_dict(item["meta"]))
                for item in data.get("metadata", [])
            ]
        except (KeyError, TypeError) as e:
            raise ConfigError(f"Malformed workspace state: {e}") from e
        return cls(
            manifest=Manifest.from_dict(manifest_data) if manifest_data else None,
            metadata=metadata,
            version=int(data.get("version", STATE_VERSION)),
        )

    def canonical_json(self) -> str:
        return json.dumps(
            self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )

    def compute_id(self) -> str:
        return blake3.blake3(self.canonical_json().encode("utf-8")).hexdigest()

    def metadata_by_path(self) -> dict[str, Metadata]:
        return {m.path: m.meta for m in self.metadata}

    def tracked_paths(self) -> set[str]:
        """Paths referenced by either the manifest or a sidecar."""
        paths = {m.path for m in self.metadata}
        if self.manifest is not None:
            paths.update(self.manifest.paths())
        return paths


class SnapshotStore:
    """Content-addressed store of workspace states."""

    def __init__(self, directory: Path):
        self.directory = directory

    def _path(self, state_id: str) -> Path:
        return self.directory / f"{state_id}.json"

    def save(self, state: WorkspaceState) -> str:
        state_id = state.compute_id()
        path = self._path(state_id)
        if not path.exists():
            write_text_atomic(path, json.dumps(state.to_dict(), indent=2) + "\n")
            logger.debug("Saved workspace state", state_id=state_id[:8])
        return state_id

    def exists(self, state_id: str) -> bool:
        return self._path(state_id).is_file()

    def load(self, state_id: str) -> WorkspaceState:
        path = self._path(state_id)
        if not path.is_file():
            raise StateNotFound(f"Workspace state not found: {state_id}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Corrupt workspace state {state_id}: {e}") from e
        return WorkspaceState.from_dict(data)

    def list_ids(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))

    def resolve(self, id_or_prefix: str) -> str:
        """Expand a full id or unique prefix to a stored state id.

        Raises:
            InvalidArg: If the prefix is too short or ambiguous.
            StateNotFound: If no stored state matches.
        """
        text = id_or_prefix.strip().lower()
        if text.startswith("state:"):
            text = text[len("state:") :]
        if self.exists(text):
            return text
        if len(text) < MIN_PREFIX_LEN:
            raise InvalidArg(
                f"State id prefix '{id_or_prefix}' is too short "
                f"(need at least {MIN_PREFIX_LEN} characters)"
            )
        matches = [sid for sid in self.list_ids() if sid.startswith(text)]
        if not matches:
            raise StateNotFound(f"No workspace state matches '{id_or_prefix}'")
        if len(matches) > 1:
            raise InvalidArg(
                f"State id prefix '{id_or_prefix}' is ambiguous ({len(matches)} matches)"
            )
        return matches[0]


class ReflogOp(str, Enum):
    INIT = "init"
    ADD = "add"
    REMOVE = "remove"
    ROLLBACK = "rollback"
    MERGE = "merge"


@dataclass
class ReflogEntry:
    """One state transition."""

    ts: str
    actor: str
    op: ReflogOp
    new: str
    old: str | None = None
    message: str | None = None
    paths: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ts": self.ts, "actor": self.actor, "op": self.op.value}
        if self.message:
            data["message"] = self.message
        if self.old:
            data["old"] = self.old
        data["new"] = self.new
        data["paths"] = list(self.paths)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReflogEntry:
        return cls(
            ts=str(data["ts"]),
            actor=str(data.get("actor", "unknown")),
            op=ReflogOp(data["op"]),
            new=str(data["new"]),
            old=data.get("old") or None,
            message=data.get("message") or None,
            paths=[str(p) for p in data.get("paths", [])],
        )


@dataclass
class LogEntry:
    """A reflog entry tagged with its newest-first index."""

    index: int
    entry: ReflogEntry

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, **self.entry.to_dict()}


class Reflog:
    """Append-only journal at ``.dvs/logs/refs/HEAD``."""

    def __init__(self, layout: Layout):
        self.layout = layout
        self.path = layout.reflog_path

    def record(
        self,
        actor: str,
        op: ReflogOp,
        new: str,
        old: str | None = None,
        message: str | None = None,
        paths: Iterable[str] = (),
    ) -> ReflogEntry:
        """Append one entry and move HEAD to ``new``."""
        entry = ReflogEntry(
            ts=now_iso(),
            actor=actor,
            op=op,
            new=new,
            old=old,
            message=message,
            paths=sorted(set(paths)),
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry.to_dict(), separators=(",", ":"), ensure_ascii=False)
        with open(self.path, "a", encoding="utf-8") as fh:
            fh.write(line + "\n")
        self.layout.write_head(new)
        logger.debug("Recorded reflog entry", op=op.value, new=new[:8], old=(old or "")[:8])
        return entry

    def iter_entries(self) -> Iterator[ReflogEntry]:
        """Yield entries oldest-first, skipping lines that do not parse."""
        if not self.path.is_file():
            return
        # Lines are decoded one at a time so a torn multi-byte tail only
        # loses itself
        with open(self.path, "rb") as fh:
            for lineno, raw in enumerate(fh, start=1):
                if not raw.strip():
                    continue
                try:
                    entry = ReflogEntry.from_dict(json.loads(raw.decode("utf-8")))
                except (UnicodeDecodeError, KeyError, TypeError, ValueError) as e:
                    logger.warning(
                        "Skipping unreadable reflog line", line=lineno, error=str(e)
                    )
                    continue
                yield entry

    def read_recent(self, limit: int | None = None) -> list[LogEntry]:
        entries = list(self.iter_entries())
        entries.reverse()
        if limit is not None:
            entries = entries[: max(limit, 0)]
        return [LogEntry(index=i, entry=e) for i, e in enumerate(entries)]

    def get_by_index(self, index: int) -> LogEntry | None:
        if index < 0:
            return None
        recent = self.read_recent(index + 1)
        if index >= len(recent):
            return None
        return recent[index]

    def __len__(self) -> int:
        return sum(1 for _ in self.iter_entries())
