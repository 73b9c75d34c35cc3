"""Typed content addresses.

An ``Oid`` pairs a hash algorithm with its hex digest. The canonical text
form is ``"<algo>:<hex>"`` and objects are laid out on disk (and on remote
object servers) under ``<algo>/<hex[:2]>/<hex[2:]>``.
"""

from __future__ import annotations

import string
from dataclasses import dataclass
from enum import Enum

from dvs.errors import InvalidArg

_HEX_DIGITS = frozenset(string.hexdigits)


class HashAlgo(str, Enum):
    """Supported hash algorithms."""

    BLAKE3 = "blake3"
    SHA256 = "sha256"
    XXH3 = "xxh3"

    @property
    def hex_len(self) -> int:
        """Expected length of a hex digest for this algorithm."""
        return _HEX_LENGTHS[self]

    @property
    def is_cryptographic(self) -> bool:
        return self is not HashAlgo.XXH3

    @classmethod
    def parse(cls, value: str) -> HashAlgo:
        """Parse an algorithm name case-insensitively.

        Raises:
            InvalidArg: If the name is not a known algorithm.
        """
        try:
            return cls(value.strip().lower())
        except ValueError as e:
            known = ", ".join(a.value for a in cls)
            raise InvalidArg(
                f"Unknown hash algorithm '{value}' (expected one of: {known})"
            ) from e

    def __str__(self) -> str:
        return self.value


_HEX_LENGTHS = {
    HashAlgo.BLAKE3: 64,
    HashAlgo.SHA256: 64,
    HashAlgo.XXH3: 16,
}


@dataclass(frozen=True, order=True)
class Oid:
    """Content-derived object identifier."""

    algo: HashAlgo
    hex: str

    def __post_init__(self) -> None:
        validate_hex(self.algo, self.hex)
        # Digests compare and store lowercase
        object.__setattr__(self, "hex", self.hex.lower())

    @classmethod
    def parse(cls, text: str) -> Oid:
        """Parse ``"<algo>:<hex>"``.

        Raises:
            InvalidArg: On a missing separator, unknown algorithm, wrong digest
                length or non-hex characters. Inputs are never truncated or
                padded.
        """
        algo_str, sep, hex_str = text.partition(":")
        if not sep:
            raise InvalidArg(f"Invalid object id '{text}': expected '<algo>:<hex>'")
        return cls(HashAlgo.parse(algo_str), hex_str)

    @classmethod
    def from_parts(cls, algo: str | HashAlgo, hex_str: str) -> Oid:
        """Build from separate path segments, as used by object server routes."""
        if not isinstance(algo, HashAlgo):
            algo = HashAlgo.parse(algo)
        return cls(algo, hex_str)

    @property
    def storage_subpath(self) -> str:
        """Relative path of this object inside a content store."""
        return f"{self.algo.value}/{self.hex[:2]}/{self.hex[2:]}"

    def __str__(self) -> str:
        return f"{self.algo.value}:{self.hex}"


def validate_hex(algo: HashAlgo, hex_str: str) -> None:
    """Check that ``hex_str`` is a well-formed digest for ``algo``.

    Raises:
        InvalidArg: If the length or character set is wrong.
    """
    expected = algo.hex_len
    if len(hex_str) != expected:
        raise InvalidArg(
            f"Invalid {algo.value} digest length: expected {expected} hex chars, "
            f"got {len(hex_str)}"
        )
    if not all(c in _HEX_DIGITS for c in hex_str):
        raise InvalidArg(f"Invalid {algo.value} digest: non-hex characters in '{hex_str}'")
