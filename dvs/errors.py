"""Error taxonomy for dvs operations.

Every error carries a machine-distinguishable ``kind`` alongside the
human-readable message so that callers (CLI, server, bindings) can branch
on the failure without parsing text.
"""

from __future__ import annotations


class DvsError(Exception):
    """Base class for all dvs errors."""

    kind: str = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class NotInitialized(DvsError):
    kind = "not_initialized"

    def __init__(self, message: str = "dvs not initialized. Run init first."):
        super().__init__(message)


class NotInGitRepo(DvsError):
    kind = "not_in_git_repo"

    def __init__(self, message: str = "Not in a git repository"):
        super().__init__(message)


class ConfigMismatch(DvsError):
    kind = "config_mismatch"


class FileNotFound(DvsError):
    kind = "file_not_found"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File not found: {path}")


class MetadataNotFound(DvsError):
    kind = "metadata_not_found"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Metadata not found for: {path}")


class FileOutsideRepo(DvsError):
    kind = "file_outside_repo"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File is outside repository: {path}")


class StorageError(DvsError):
    kind = "storage_error"


class HashMismatch(StorageError):
    kind = "hash_mismatch"

    def __init__(self, path: str, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Hash mismatch for {path}: expected {expected}, got {actual}"
        )


class ObjectNotFound(StorageError):
    kind = "not_found"


class ConfigError(DvsError):
    kind = "config_error"


class PermissionDenied(DvsError):
    kind = "permission_denied"


class GroupNotSet(DvsError):
    kind = "group_not_set"

    def __init__(self, group: str):
        self.group = group
        super().__init__(f"Group '{group}' does not exist on this system")


class InvalidArg(DvsError):
    kind = "invalid_arg"


class InvalidGlob(DvsError):
    kind = "invalid_glob"

    def __init__(self, pattern: str, reason: str = ""):
        self.pattern = pattern
        detail = f": {reason}" if reason else ""
        super().__init__(f"Invalid glob pattern '{pattern}'{detail}")


class NoFilesMatched(DvsError):
    kind = "no_files_matched"

    def __init__(self, pattern: str):
        self.pattern = pattern
        super().__init__(f"No files matched: {pattern}")


class MergeConflict(DvsError):
    kind = "merge_conflict"

    def __init__(self, paths: list[str]):
        self.paths = paths
        sample = ", ".join(paths[:5])
        more = f" (+{len(paths) - 5} more)" if len(paths) > 5 else ""
        super().__init__(f"Merge conflicts on {len(paths)} path(s): {sample}{more}")


class UncommittedChanges(DvsError):
    kind = "uncommitted_changes"

    def __init__(self, paths: list[str]):
        self.paths = paths
        super().__init__(
            "Local modifications would be overwritten: "
            + ", ".join(paths[:5])
            + (" ..." if len(paths) > 5 else "")
            + ". Use force to discard them."
        )


class StateNotFound(DvsError):
    kind = "not_found"
