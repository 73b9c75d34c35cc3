"""Content-addressed object stores."""

from .base import ContentStore
from .chain import ChainStore
from .local import LocalStore, atomic_write
from .remote import RemoteStore

__all__ = ["ContentStore", "ChainStore", "LocalStore", "RemoteStore", "atomic_write"]
