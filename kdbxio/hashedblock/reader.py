"""
Reader — verifies and unwraps a hashed block stream.

Verification features:
  - Sequence numbers must be 0, 1, 2, ... with no gaps
  - Each payload is re-hashed and compared in constant time
  - The stream must end with a zero-length, zero-hash terminator
  - Truncated headers or payloads are reported, never silently padded
  - Declared lengths above max_block_length are refused before any payload read
"""

from __future__ import annotations

import hmac
import io
import logging
from typing import BinaryIO, Iterator

from kdbxio import HASHED_BLOCK_READ_LIMIT
from kdbxio.hashedblock.spec import (
    HEADER_SIZE,
    ZERO_HASH,
    Block,
    CorruptStreamError,
    Digest,
    decode_header,
    resolve_digest,
)

log = logging.getLogger(__name__)


class HashedBlockReader:
    """
    Hashed block input stream.

    Usage:
        # Whole payload
        with HashedBlockReader(open("payload.bin", "rb")) as reader:
            data = reader.read()

        # Block by block
        for block in HashedBlockReader(source, little_endian=True):
            print(block.sequence, block.length)
    """

    def __init__(
        self,
        source: BinaryIO,
        little_endian: bool = False,
        verify: bool = True,
        digest: Digest | None = None,
        max_block_length: int = HASHED_BLOCK_READ_LIMIT,
    ) -> None:
        self._source = source
        self.max_block_length = max_block_length
        self.little_endian = little_endian
        self.verify = verify
        self._digest = digest if digest is not None else resolve_digest()
        self._next_sequence = 0
        self._finished = False
        self._pending = b""

    @property
    def finished(self) -> bool:
        """True once the terminator has been consumed."""
        return self._finished

    def _read_exact(self, length: int, what: str) -> bytes:
        chunks = []
        remaining = length
        while remaining > 0:
            chunk = self._source.read(remaining)
            if not chunk:
                raise CorruptStreamError(
                    f"Truncated {what} in block {self._next_sequence}: "
                    f"expected {length} bytes, got {length - remaining}"
                )
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def read_block(self) -> Block | None:
        """Read and verify the next block. Returns None after the terminator."""
        if self._finished:
            return None

        header = self._source.read(HEADER_SIZE)
        if not header:
            raise CorruptStreamError(
                f"Missing terminator: stream ended after {self._next_sequence} blocks"
            )
        if len(header) < HEADER_SIZE:
            header += self._read_exact(HEADER_SIZE - len(header), "header")

        sequence, digest, length = decode_header(header, self.little_endian)
        if sequence != self._next_sequence:
            raise CorruptStreamError(
                f"Out of order block: expected sequence {self._next_sequence}, got {sequence}"
            )

        if length == 0:
            if digest != ZERO_HASH:
                raise CorruptStreamError(f"Terminator block {sequence} has a non-zero hash")
            self._finished = True
            log.debug("Reached terminator after %d blocks", sequence)
            return Block.terminator(sequence)

        if length > self.max_block_length:
            raise CorruptStreamError(
                f"Block {sequence} length {length} exceeds limit of {self.max_block_length} bytes"
            )
        payload = self._read_exact(length, "payload")
        if self.verify and not hmac.compare_digest(self._digest(payload), digest):
            raise CorruptStreamError(f"Hash mismatch in block {sequence}")

        self._next_sequence += 1
        return Block(sequence=sequence, digest=digest, payload=payload)

    def __iter__(self) -> Iterator[Block]:
        while True:
            block = self.read_block()
            if block is None or block.is_terminator:
                return
            yield block

    def read(self, size: int = -1) -> bytes:
        """Read up to size payload bytes (all remaining when size < 0)."""
        if size is None or size < 0:
            parts = [self._pending]
            self._pending = b""
            parts.extend(block.payload for block in self)
            return b"".join(parts)

        while len(self._pending) < size and not self._finished:
            block = self.read_block()
            if block is not None:
                self._pending += block.payload
        data, self._pending = self._pending[:size], self._pending[size:]
        return data

    def close(self) -> None:
        self._source.close()

    def __enter__(self) -> HashedBlockReader:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def unframe_bytes(
    data: bytes,
    little_endian: bool = False,
    verify: bool = True,
    max_block_length: int = HASHED_BLOCK_READ_LIMIT,
) -> bytes:
    """Verify an in-memory block stream and return its payload."""
    source = io.BytesIO(data)
    reader = HashedBlockReader(
        source, little_endian=little_endian, verify=verify, max_block_length=max_block_length
    )
    payload = reader.read()
    trailing = len(data) - source.tell()
    if trailing:
        log.warning("Ignoring %d bytes after hashed block terminator", trailing)
    return payload
