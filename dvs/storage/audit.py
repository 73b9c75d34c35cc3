"""Append-only audit log kept next to the objects in a storage directory.

Every file recorded by ``add`` appends one JSON line to
``<storage>/audit.log.jsonl``. Entries from one ``add`` call share an
``operation_id``. The log is shared by every repository using the storage
directory, so it is never rewritten.
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from dvs.core.oid import Oid
from dvs.platforms import current_user
from dvs.utils.logger import get_logger

logger = get_logger("dvs.audit")

AUDIT_LOG_FILENAME = "audit.log.jsonl"


def new_operation_id() -> str:
    return str(uuid.uuid4())


class AuditAction(str, Enum):
    ADD = "add"


@dataclass(frozen=True)
class AuditFile:
    path: str
    # algorithm name -> hex digest
    hashes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def for_oid(cls, path: str, oid: Oid) -> AuditFile:
        return cls(path=path, hashes={oid.algo.value: oid.hex})

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "hashes": dict(self.hashes)}


@dataclass
class AuditEntry:
    """One recorded storage event."""

    operation_id: str
    timestamp: int
    user: str
    file: AuditFile
    action: AuditAction

    @classmethod
    def new_add(cls, operation_id: str, file: AuditFile) -> AuditEntry:
        return cls(
            operation_id=operation_id,
            timestamp=int(time.time()),
            user=current_user(),
            file=file,
            action=AuditAction.ADD,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "timestamp": self.timestamp,
            "user": self.user,
            "file": self.file.to_dict(),
            "action": self.action.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditEntry:
        file = data["file"]
        return cls(
            operation_id=str(data["operation_id"]),
            timestamp=int(data["timestamp"]),
            user=str(data.get("user", "unknown")),
            file=AuditFile(
                path=str(file["path"]),
                hashes={str(k): str(v) for k, v in file.get("hashes", {}).items()},
            ),
            action=AuditAction(data["action"]),
        )


class AuditLog:
    """Reader and appender for one storage directory's audit log."""

    def __init__(self, path: Path):
        self.path = path

    def append(self, entry: AuditEntry) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry.to_dict(), separators=(",", ":"), ensure_ascii=False)
        with open(self.path, "a", encoding="utf-8") as fh:
            fh.write(line + "\n")

    def iter_entries(self) -> Iterator[AuditEntry]:
        """Yield entries oldest-first, skipping lines that do not parse."""
        if not self.path.is_file():
            return
        with open(self.path, "rb") as fh:
            for lineno, raw in enumerate(fh, start=1):
                if not raw.strip():
                    continue
                try:
                    entry = AuditEntry.from_dict(json.loads(raw.decode("utf-8")))
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    logger.warning(
                        "Skipping unreadable audit line", line=lineno, error=str(e)
                    )
                    continue
                yield entry

    def read(self, paths: Iterable[str] | None = None) -> list[AuditEntry]:
        """Entries oldest-first, limited to ``paths`` when any are given."""
        wanted = set(paths or ())
        return [e for e in self.iter_entries() if not wanted or e.file.path in wanted]
