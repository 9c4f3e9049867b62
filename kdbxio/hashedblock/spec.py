"""
Hashed Block Stream Specification.

Layout:
    <seq:u32> <hash:32> <len:u32> <payload:len>   <- block 0
    <seq:u32> <hash:32> <len:u32> <payload:len>   <- block 1
    ...
    <seq:u32 == n> <32 zero bytes> <0:u32>        <- terminator

Integer fields:
    - 4 bytes, big-endian by default
    - little-endian when the stream is created for KeePass consumers
    - byte order is chosen once per stream and never changes

Hash field:
    - SHA-256 over the block payload only (never over earlier blocks)
    - opaque bytes, not subject to the byte order flag
    - the terminator carries 32 zero bytes, not the digest of b""
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Callable

from kdbxio import (
    HASHED_BLOCK_HASH,
    HASHED_BLOCK_HASH_SIZE,
    HASHED_BLOCK_MAX_LENGTH,
)

HASH_SIZE = HASHED_BLOCK_HASH_SIZE
ZERO_HASH = bytes(HASH_SIZE)
MAX_BLOCK_LENGTH = HASHED_BLOCK_MAX_LENGTH

# Fixed 40-byte block header: seq + hash + length
HEADER_SIZE = 4 + HASH_SIZE + 4
HEADER_STRUCT_BE = struct.Struct(f">I{HASH_SIZE}sI")
HEADER_STRUCT_LE = struct.Struct(f"<I{HASH_SIZE}sI")

Digest = Callable[[bytes], bytes]


class HashedBlockError(Exception):
    """Error in hashed block framing."""


class StreamClosedError(HashedBlockError, EOFError):
    """Write or flush attempted on a closed stream."""


class AlreadyClosedError(StreamClosedError):
    """close() called on a stream that is already closed."""


class DigestUnavailableError(HashedBlockError):
    """The block digest algorithm is not provided by this interpreter."""


class CorruptStreamError(HashedBlockError):
    """The block stream is truncated, reordered or fails verification."""


@dataclass(frozen=True)
class Block:
    """A single block as it appears on the wire."""

    sequence: int
    digest: bytes
    payload: bytes

    @property
    def length(self) -> int:
        return len(self.payload)

    @property
    def is_terminator(self) -> bool:
        return not self.payload and self.digest == ZERO_HASH

    @classmethod
    def terminator(cls, sequence: int) -> Block:
        return cls(sequence=sequence, digest=ZERO_HASH, payload=b"")


def header_struct(little_endian: bool) -> struct.Struct:
    """Return the header layout for the requested byte order."""
    return HEADER_STRUCT_LE if little_endian else HEADER_STRUCT_BE


def encode_header(sequence: int, digest: bytes, length: int, little_endian: bool = False) -> bytes:
    """Pack a block header. Digest bytes are copied verbatim."""
    if len(digest) != HASH_SIZE:
        raise HashedBlockError(f"Digest must be {HASH_SIZE} bytes, got {len(digest)}")
    return header_struct(little_endian).pack(sequence, digest, length)


def decode_header(data: bytes, little_endian: bool = False) -> tuple[int, bytes, int]:
    """Unpack a block header. Returns (sequence, digest, length)."""
    if len(data) < HEADER_SIZE:
        raise CorruptStreamError(f"Block header too short: {len(data)} bytes")
    return header_struct(little_endian).unpack(data[:HEADER_SIZE])


def resolve_digest(name: str = HASHED_BLOCK_HASH) -> Digest:
    """Return a one-shot digest function, failing now if the algorithm is missing.

    Each call hashes its argument from a fresh state, so no digest context is
    ever shared between blocks.
    """
    try:
        hashlib.new(name)
    except ValueError as e:
        raise DigestUnavailableError(f"Hash algorithm {name!r} is not available") from e

    def digest(data: bytes) -> bytes:
        return hashlib.new(name, data).digest()

    return digest
