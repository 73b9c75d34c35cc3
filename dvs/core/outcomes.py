"""Per-item results and batch summaries.

Batch operations return one result per input item and never stop at the
first failure; summaries carry counts even when everything succeeded so
callers can assert on zero failures.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from dvs.core.oid import Oid
from dvs.errors import DvsError


class Outcome(str, Enum):
    """Result of add/get for one file."""

    COPIED = "copied"
    PRESENT = "present"
    ERROR = "error"


class FileStatus(str, Enum):
    CURRENT = "current"
    ABSENT = "absent"
    UNSYNCED = "unsynced"
    ERROR = "error"


class TransferOutcome(str, Enum):
    UPLOADED = "uploaded"
    PRESENT = "present"
    DOWNLOADED = "downloaded"
    CACHED = "cached"
    FAILED = "failed"


def _jsonable(data: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, Oid):
            value = str(value)
        out[key] = value
    return out


@dataclass
class FileResult:
    """Outcome of add/get for a single path."""

    path: str
    outcome: Outcome
    oid: Oid | None = None
    size: int | None = None
    error_kind: str | None = None
    error: str | None = None

    @classmethod
    def failed(cls, path: str, exc: DvsError) -> FileResult:
        return cls(path=path, outcome=Outcome.ERROR, error_kind=exc.kind, error=exc.message)

    @property
    def ok(self) -> bool:
        return self.outcome is not Outcome.ERROR

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self) | {"oid": self.oid})


@dataclass
class BatchSummary:
    copied: int = 0
    present: int = 0
    failed: int = 0
    results: list[FileResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: Sequence[FileResult]) -> BatchSummary:
        counts = Counter(r.outcome for r in results)
        return cls(
            copied=counts[Outcome.COPIED],
            present=counts[Outcome.PRESENT],
            failed=counts[Outcome.ERROR],
            results=list(results),
        )

    @property
    def all_ok(self) -> bool:
        return self.failed == 0


@dataclass
class RemoveSummary:
    removed: list[str] = field(default_factory=list)
    errors: list[FileResult] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        return not self.errors


@dataclass
class StatusResult:
    path: str
    status: FileStatus
    oid: Oid | None = None
    size: int | None = None
    add_time: str | None = None
    saved_by: str | None = None
    message: str | None = None
    error_kind: str | None = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = _jsonable(asdict(self) | {"oid": self.oid})
        if not self.warnings:
            data.pop("warnings", None)
        return data


@dataclass
class ObjectResult:
    """Outcome of transferring one object during push or pull."""

    oid: Oid | None
    outcome: TransferOutcome
    paths: list[str] = field(default_factory=list)
    error_kind: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self) | {"oid": self.oid})


@dataclass
class PushSummary:
    uploaded: int = 0
    present: int = 0
    failed: int = 0
    results: list[ObjectResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: Sequence[ObjectResult]) -> PushSummary:
        counts = Counter(r.outcome for r in results)
        return cls(
            uploaded=counts[TransferOutcome.UPLOADED],
            present=counts[TransferOutcome.PRESENT],
            failed=counts[TransferOutcome.FAILED],
            results=list(results),
        )

    @property
    def all_ok(self) -> bool:
        return self.failed == 0


@dataclass
class PullSummary:
    downloaded: int = 0
    cached: int = 0
    failed: int = 0
    results: list[ObjectResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: Sequence[ObjectResult]) -> PullSummary:
        counts = Counter(r.outcome for r in results)
        return cls(
            downloaded=counts[TransferOutcome.DOWNLOADED],
            cached=counts[TransferOutcome.CACHED],
            failed=counts[TransferOutcome.FAILED],
            results=list(results),
        )

    @property
    def all_ok(self) -> bool:
        return self.failed == 0


@dataclass
class MaterializeResult:
    path: str
    oid: Oid | None
    materialized: bool = False
    up_to_date: bool = False
    error_kind: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class MaterializeSummary:
    materialized: int = 0
    up_to_date: int = 0
    failed: int = 0
    results: list[MaterializeResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: Sequence[MaterializeResult]) -> MaterializeSummary:
        return cls(
            materialized=sum(1 for r in results if r.materialized),
            up_to_date=sum(1 for r in results if r.up_to_date),
            failed=sum(1 for r in results if not r.ok),
            results=list(results),
        )

    @property
    def all_ok(self) -> bool:
        return self.failed == 0


@dataclass
class VerifyResult:
    path: str
    local_ok: bool
    storage_ok: bool
    metadata_ok: bool
    details: str | None = None

    @property
    def ok(self) -> bool:
        return self.local_ok and self.storage_ok and self.metadata_ok


@dataclass
class VerifySummary:
    total: int = 0
    passed: int = 0
    local_issues: int = 0
    storage_issues: int = 0
    metadata_issues: int = 0
    results: list[VerifyResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: Sequence[VerifyResult]) -> VerifySummary:
        return cls(
            total=len(results),
            passed=sum(1 for r in results if r.ok),
            local_issues=sum(1 for r in results if not r.local_ok),
            storage_issues=sum(1 for r in results if not r.storage_ok),
            metadata_issues=sum(1 for r in results if not r.metadata_ok),
            results=list(results),
        )

    @property
    def all_ok(self) -> bool:
        return self.passed == self.total


@dataclass
class MergeResult:
    files_merged: int = 0
    files_skipped: int = 0
    objects_copied: int = 0
    objects_existed: int = 0
    conflicts: list[str] = field(default_factory=list)
    merged_paths: list[str] = field(default_factory=list)
    dry_run: bool = False


@dataclass
class RollbackResult:
    success: bool
    from_state: str | None
    to_state: str
    restored_files: list[str] = field(default_factory=list)
    removed_files: list[str] = field(default_factory=list)
    error: str | None = None
