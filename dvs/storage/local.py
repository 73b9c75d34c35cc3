"""Filesystem content store with atomic writes."""

from __future__ import annotations

import os
import secrets
import shutil
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import BinaryIO

from dvs.core.oid import HashAlgo, Oid
from dvs.errors import InvalidArg, ObjectNotFound, StorageError
from dvs.platforms import get_adapter
from dvs.storage.audit import AUDIT_LOG_FILENAME, AuditEntry, AuditLog
from dvs.utils.logger import get_logger

logger = get_logger("dvs.storage")

TMP_PREFIX = ".tmp."


def temp_path_for(dest: Path) -> Path:
    """Unique temporary path in the same directory as ``dest``.

    Same-directory placement keeps the final rename on one filesystem.
    """
    suffix = f"{os.getpid()}.{time.time_ns()}.{secrets.token_hex(4)}"
    return dest.parent / f"{TMP_PREFIX}{suffix}"


def atomic_write(dest: Path, writer: Callable[[BinaryIO], object]) -> bool:
    """Write ``dest`` through a temp file and an atomic rename.

    If another writer got there first the temp file is discarded and the
    call still succeeds; for content-addressed files both copies are
    identical.

    Args:
        dest: Final path.
        writer: Callback writing the content to an open binary file.

    Returns:
        True if this call created ``dest``, False if it already existed.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = temp_path_for(dest)
    try:
        with open(tmp, "wb") as fh:
            writer(fh)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise StorageError(f"Failed to write temporary file {tmp}: {e}") from e
    return commit_temp(tmp, dest)


def commit_temp(tmp: Path, dest: Path) -> bool:
    """Rename a fully written temp file onto ``dest`` unless it already exists.

    The temp file is gone afterwards in every case.
    """
    if dest.exists():
        tmp.unlink(missing_ok=True)
        return False
    try:
        os.rename(tmp, dest)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        if dest.exists():
            return False
        raise StorageError(f"Failed to move object into place at {dest}: {e}") from e
    return True


class LocalStore:
    """Content store rooted at a directory.

    Objects live at ``root / oid.storage_subpath``. Uploads copy into a
    uniquely named temp file next to the destination and then move it into
    place, so concurrent uploads of the same oid are safe without locking.
    """

    def __init__(
        self,
        root: Path,
        permissions: int | None = None,
        gid: int | None = None,
    ) -> None:
        self.root = Path(root)
        self.permissions = permissions
        self.gid = gid

    def describe(self) -> str:
        return f"local:{self.root}"

    def object_path(self, oid: Oid) -> Path:
        return self.root / oid.storage_subpath

    def exists(self, oid: Oid) -> bool:
        return self.object_path(oid).is_file()

    def fetch(self, oid: Oid, dest: Path) -> None:
        src = self.object_path(oid)
        if not src.is_file():
            raise ObjectNotFound(f"Object not found in local store: {oid}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copyfile(src, dest)
        except OSError as e:
            raise StorageError(f"Failed to copy {oid} to {dest}: {e}") from e

    def upload(self, oid: Oid, src: Path) -> None:
        def _copy(fh: BinaryIO) -> None:
            with open(src, "rb") as source:
                shutil.copyfileobj(source, fh)

        if not Path(src).is_file():
            raise StorageError(f"Upload source does not exist: {src}")
        self._store(oid, _copy)

    def upload_bytes(self, oid: Oid, data: bytes) -> bool:
        """Store raw bytes; returns True if the object was newly created."""
        return self._store(oid, lambda fh: fh.write(data))

    def adopt(self, oid: Oid, tmp: Path) -> bool:
        """Move a verified temp file from ``temp_path_for`` into place.

        Returns True if the object was newly created.
        """
        created = commit_temp(tmp, self.object_path(oid))
        if created:
            self._apply_access(self.object_path(oid))
        return created

    def _store(self, oid: Oid, writer: Callable[[BinaryIO], object]) -> bool:
        dest = self.object_path(oid)
        if dest.exists():
            logger.debug("Object already stored", oid=str(oid))
            return False
        created = atomic_write(dest, writer)
        if created:
            self._apply_access(dest)
            logger.debug("Stored object", oid=str(oid), path=str(dest))
        return created

    def audit_log(self) -> AuditLog:
        return AuditLog(self.root / AUDIT_LOG_FILENAME)

    def log_audit(self, entry: AuditEntry) -> None:
        """Append to the storage audit log and give it the storage access bits."""
        audit = self.audit_log()
        audit.append(entry)
        self._apply_access(audit.path)

    def _apply_access(self, path: Path) -> None:
        adapter = get_adapter()
        try:
            if self.permissions is not None:
                adapter.apply_permissions(path, self.permissions)
            if self.gid is not None:
                adapter.apply_group(path, self.gid)
        except OSError as e:
            logger.warning(
                "Failed to apply storage permissions", path=str(path), error=str(e)
            )

    def delete(self, oid: Oid) -> bool:
        path = self.object_path(oid)
        if not path.is_file():
            return False
        path.unlink()
        return True

    def size(self, oid: Oid) -> int:
        try:
            return self.object_path(oid).stat().st_size
        except FileNotFoundError as e:
            raise ObjectNotFound(f"Object not found in local store: {oid}") from e

    def iter_oids(self) -> Iterator[Oid]:
        """Yield every well-formed object in the store, skipping temp files."""
        for algo in HashAlgo:
            algo_dir = self.root / algo.value
            if not algo_dir.is_dir():
                continue
            for fan_dir in sorted(algo_dir.iterdir()):
                if not fan_dir.is_dir():
                    continue
                for obj in sorted(fan_dir.iterdir()):
                    if obj.name.startswith(TMP_PREFIX) or not obj.is_file():
                        continue
                    try:
                        yield Oid(algo, fan_dir.name + obj.name)
                    except InvalidArg:
                        continue
