"""Streaming content hashing."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any

import blake3
import xxhash

from dvs.core.oid import HashAlgo, Oid

# Read size for streaming large files through the hasher
CHUNK_SIZE = 1024 * 1024


def new_hasher(algo: HashAlgo) -> Any:
    """Return an incremental hasher exposing ``update`` and ``hexdigest``."""
    if algo is HashAlgo.BLAKE3:
        return blake3.blake3()
    if algo is HashAlgo.SHA256:
        return hashlib.sha256()
    return xxhash.xxh3_64()


def hash_bytes(data: bytes, algo: HashAlgo = HashAlgo.BLAKE3) -> Oid:
    hasher = new_hasher(algo)
    hasher.update(data)
    return Oid(algo, hasher.hexdigest())


def hash_file(path: Path, algo: HashAlgo = HashAlgo.BLAKE3) -> Oid:
    """Hash a file without loading it fully into memory.

    Args:
        path: File to hash.
        algo: Algorithm to use.

    Returns:
        Oid of the file content.
    """
    hasher = new_hasher(algo)
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return Oid(algo, hasher.hexdigest())


def file_matches(path: Path, oid: Oid) -> bool:
    """True if ``path`` exists and its content hashes to ``oid``."""
    if not path.is_file():
        return False
    return hash_file(path, oid.algo) == oid
