"""Checksum computation and formatting for blob contents."""

import hashlib
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Union

from .errors import UnsupportedChecksumAlgorithmError
from .hash_constants import BLOCK_SIZE, CHECKSUM_SEPARATOR, SUPPORTED_ALGORITHMS


ByteSource = Union[BinaryIO, Iterable[bytes]]


class Adler32:
    """hashlib-style wrapper around zlib.adler32."""

    name = "adler32"
    digest_size = 4

    def __init__(self, data: bytes = b""):
        self._value = zlib.adler32(b"")
        if data:
            self.update(data)

    def update(self, data: bytes) -> None:
        self._value = zlib.adler32(data, self._value)

    def digest(self) -> bytes:
        return self._value.to_bytes(self.digest_size, "big")

    def hexdigest(self) -> str:
        return f"{self._value:08x}"

    def copy(self) -> "Adler32":
        other = Adler32()
        other._value = self._value
        return other


@dataclass(frozen=True)
class ChecksumSpec:
    """A parsed "<algorithm>:<hexdigest>" string."""
    algorithm: str
    hexdigest: str

    def __str__(self) -> str:
        return format_digest(self.algorithm, self.hexdigest)


def normalize_algorithm(algorithm: str) -> str:
    return (algorithm or "").strip().lower()


def new_hasher(algorithm: str):
    """
    Returns a fresh hasher for algorithm.

    Raises:
        UnsupportedChecksumAlgorithmError: if the algorithm is not one of
            md5, sha1, sha256 or adler32
    """
    name = normalize_algorithm(algorithm)
    if name not in SUPPORTED_ALGORITHMS:
        raise UnsupportedChecksumAlgorithmError(algorithm)
    if name == "adler32":
        return Adler32()
    return hashlib.new(name)


def format_digest(algorithm: str, hexdigest: str) -> str:
    return f"{normalize_algorithm(algorithm)}{CHECKSUM_SEPARATOR}{hexdigest.lower()}"


def parse_checksum(value: str) -> ChecksumSpec:
    """
    Splits a client supplied checksum into algorithm and digest.
    A value without separator is treated as a bare digest with no algorithm.
    """
    algorithm, sep, hexdigest = (value or "").strip().partition(CHECKSUM_SEPARATOR)
    if not sep:
        return ChecksumSpec(algorithm="", hexdigest=algorithm)
    return ChecksumSpec(algorithm=normalize_algorithm(algorithm), hexdigest=hexdigest)


def iter_chunks(source: ByteSource, block_size: int = BLOCK_SIZE) -> Iterator[bytes]:
    """Yields byte chunks from a binary file-like object or an iterable of bytes."""
    read = getattr(source, "read", None)
    if read is None:
        for chunk in source:
            if chunk:
                yield bytes(chunk)
        return
    while True:
        chunk = read(block_size)
        if not chunk:
            break
        yield chunk


def compute(source: ByteSource, algorithm: str) -> str:
    """Digest of everything readable from source, formatted as <algorithm>:<hex>."""
    hasher = new_hasher(algorithm)
    for chunk in iter_chunks(source):
        hasher.update(chunk)
    return format_digest(algorithm, hasher.hexdigest())


def compute_file(file_path: Path, algorithm: str) -> str:
    """
    Calculates the digest of a file's content in blocks.
    """
    # Fail before opening the file
    new_hasher(algorithm)
    with open(file_path, "rb") as f:
        return compute(f, algorithm)


def digests_equal(a: str, b: str) -> bool:
    """Exact comparison of two formatted digests."""
    return a == b
