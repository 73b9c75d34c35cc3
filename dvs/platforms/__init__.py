from __future__ import annotations

from .base import OSAdapter


def get_os_adapter() -> OSAdapter:
    """Return an OS-specific adapter instance.

    - Windows: WindowsAdapter
    - Others (Linux/macOS/BSD): PosixAdapter
    """
    import os

    if os.name == "nt":
        from .windows import WindowsAdapter

        return WindowsAdapter()
    from .posix import PosixAdapter

    return PosixAdapter()


# Global adapter instance for convenience
_adapter = get_os_adapter()


def normalize_path(path: str) -> str:
    """Normalize path to use forward slashes.

    On Windows: converts backslashes to forward slashes
    On POSIX: returns path as-is
    """
    return _adapter.normalize_path(path)


def current_user() -> str:
    return _adapter.current_user()


def get_adapter() -> OSAdapter:
    return _adapter
