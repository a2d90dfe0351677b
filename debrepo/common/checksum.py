"""Streaming checksum computation and verification.

All requested algorithms are fed from a single read pass so large package
files are never read twice nor held in memory.
"""

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, Optional, Tuple

from .errors import ChecksumMismatch

CHUNK_SIZE = 1024 * 1024

# hashlib constructor per algorithm name
HASH_MAPPING = {
    "md5": hashlib.md5,
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}

# Field names used by Packages stanzas and Release checksum tables
RELEASE_FIELDS = {
    "md5": "MD5Sum",
    "sha1": "SHA1",
    "sha256": "SHA256",
    "sha512": "SHA512",
}

PACKAGES_FIELDS = {
    "md5": "MD5sum",
    "sha1": "SHA1",
    "sha256": "SHA256",
    "sha512": "SHA512",
}

STRONG_ALGORITHMS = ("sha256", "sha512")

# Preferred order when choosing a single digest to verify against
PREFERRED_HASH_ORDER = ("sha512", "sha256", "sha1", "md5")

DEFAULT_ALGORITHMS: Tuple[str, ...] = ("md5", "sha1", "sha256", "sha512")


@dataclass(frozen=True)
class Checksum:
    """Size and hex digests of one byte stream."""

    size: int
    digests: Dict[str, str] = field(default_factory=dict)

    @property
    def sha256(self) -> str:
        return self.digests["sha256"]

    def get(self, algorithm: str) -> Optional[str]:
        return self.digests.get(algorithm)


class Hasher:
    """Incremental multi-algorithm hasher."""

    def __init__(self, algorithms: Iterable[str] = DEFAULT_ALGORITHMS):
        self._hashes = {}
        for name in algorithms:
            name = name.lower()
            if name not in HASH_MAPPING:
                raise ValueError(f"Unsupported algorithm: {name}")
            self._hashes[name] = HASH_MAPPING[name]()
        self._size = 0

    def update(self, chunk: bytes) -> None:
        self._size += len(chunk)
        for h in self._hashes.values():
            h.update(chunk)

    def result(self) -> Checksum:
        return Checksum(
            size=self._size,
            digests={name: h.hexdigest() for name, h in self._hashes.items()},
        )


def _with_sha256(algorithms: Iterable[str]) -> Tuple[str, ...]:
    # the pool always deduplicates on sha256
    names = tuple(a.lower() for a in algorithms)
    if "sha256" not in names:
        names += ("sha256",)
    return names


def digest(stream: BinaryIO, algorithms: Iterable[str] = DEFAULT_ALGORITHMS) -> Checksum:
    """Compute checksums of a byte stream in one pass.

    Args:
        stream: Readable binary stream, consumed to EOF
        algorithms: Algorithm names (md5, sha1, sha256, sha512)

    Returns:
        Checksum with the size and one hex digest per algorithm
    """
    hasher = Hasher(_with_sha256(algorithms))
    for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
        hasher.update(chunk)
    return hasher.result()


def digest_file(path: Path, algorithms: Iterable[str] = DEFAULT_ALGORITHMS) -> Checksum:
    """Compute checksums of a file."""
    with open(path, "rb") as f:
        return digest(f, algorithms)


def digest_bytes(data: bytes, algorithms: Iterable[str] = DEFAULT_ALGORITHMS) -> Checksum:
    """Compute checksums of an in-memory buffer."""
    hasher = Hasher(_with_sha256(algorithms))
    hasher.update(data)
    return hasher.result()


def compare(actual: Checksum, expected: Dict[str, str], item: Optional[str] = None) -> None:
    """Check every expected digest against an already computed Checksum.

    Raises:
        ChecksumMismatch: On the first algorithm whose digest differs
        ValueError: If no expected algorithm is supported
    """
    checked = False
    for algorithm in PREFERRED_HASH_ORDER:
        wanted = expected.get(algorithm)
        if not wanted:
            continue
        got = actual.get(algorithm)
        if got is None:
            continue
        checked = True
        if got.lower() != wanted.lower():
            raise ChecksumMismatch(algorithm, wanted, got, item=item)
    if not checked and any(expected.values()):
        raise ValueError(f"No supported algorithm in expected checksums: {sorted(expected)}")


def verify(
    stream: BinaryIO, expected: Dict[str, str], item: Optional[str] = None
) -> Checksum:
    """Digest a stream and verify it against expected digests.

    Args:
        stream: Readable binary stream
        expected: Mapping of algorithm name to expected hex digest
        item: Name used in error messages

    Returns:
        The computed Checksum

    Raises:
        ChecksumMismatch: If any expected digest differs
    """
    algorithms = [a for a in expected if a in HASH_MAPPING] or ["sha256"]
    actual = digest(stream, algorithms)
    compare(actual, expected, item=item)
    return actual


def verify_file(path: Path, expected: Dict[str, str]) -> Checksum:
    """Verify a file against expected digests."""
    with open(path, "rb") as f:
        return verify(f, expected, item=str(path))
