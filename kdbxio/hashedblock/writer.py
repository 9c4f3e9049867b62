"""
Writer — formats a byte stream as hashed blocks on an underlying sink.

Streaming strategy:
  1. Accumulate written bytes in a buffer bounded by the block size
  2. Each time the buffer fills, emit it as one block and flush the sink
  3. On close, emit any partial block, then the zero-length terminator

Every block is a flush boundary, so a sink that is cut off mid-stream still
holds whole, verifiable blocks up to the last flush. A stream that never
reaches close() has no terminator and reads back as truncated.
"""

from __future__ import annotations

import io
import logging
from typing import BinaryIO

from kdbxio import HASHED_BLOCK_SIZE
from kdbxio.hashedblock.spec import (
    HASH_SIZE,
    MAX_BLOCK_LENGTH,
    ZERO_HASH,
    AlreadyClosedError,
    Digest,
    HashedBlockError,
    StreamClosedError,
    encode_header,
    resolve_digest,
)

log = logging.getLogger(__name__)


class HashedBlockWriter:
    """
    Hashed block output stream.

    Usage:
        with open("payload.bin", "wb") as f:
            writer = HashedBlockWriter(f, little_endian=True)
            writer.write(data)
            writer.close()  # writes the terminator and closes f

        # Context manager: terminator only on a clean exit
        with HashedBlockWriter(sink) as writer:
            writer.write(data)
    """

    def __init__(
        self,
        sink: BinaryIO,
        little_endian: bool = False,
        block_size: int = HASHED_BLOCK_SIZE,
        digest: Digest | None = None,
        close_sink: bool = True,
    ) -> None:
        if not 0 < block_size <= MAX_BLOCK_LENGTH:
            raise ValueError(f"block_size must be between 1 and {MAX_BLOCK_LENGTH}, got {block_size}")
        self._sink = sink
        self.little_endian = little_endian
        self.block_size = block_size
        self._digest = digest if digest is not None else resolve_digest()
        self._close_sink = close_sink
        self._buffer = bytearray()
        self._next_sequence = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def blocks_written(self) -> int:
        """Number of non-terminal blocks emitted so far."""
        return self._next_sequence

    @property
    def pending(self) -> int:
        """Bytes buffered but not yet emitted as a block."""
        return len(self._buffer)

    def write(self, data: bytes) -> int:
        """Buffer data, emitting a block each time the buffer reaches block_size.

        Returns the number of bytes accepted.
        """
        if self._closed:
            raise StreamClosedError("write on closed hashed block stream")
        view = memoryview(data).cast("B")
        offset = 0
        remaining = len(view)
        while remaining > 0:
            count = min(self.block_size - len(self._buffer), remaining)
            self._buffer += view[offset:offset + count]
            if len(self._buffer) >= self.block_size:
                self._save()
            offset += count
            remaining -= count
        return len(view)

    def flush(self) -> None:
        """Emit the buffered bytes as a block. No-op when the buffer is empty."""
        if self._closed:
            raise StreamClosedError("flush on closed hashed block stream")
        self._save()

    def close(self) -> None:
        """Emit pending bytes, write the terminator and close the sink."""
        if self._closed:
            raise AlreadyClosedError("hashed block stream already closed")
        self._save()
        self._emit(encode_header(self._next_sequence, ZERO_HASH, 0, self.little_endian))
        self._closed = True
        log.debug("Terminated hashed block stream after %d blocks", self._next_sequence)
        if self._close_sink:
            self._sink.close()

    def abandon(self) -> None:
        """Stop without writing a terminator. The sink is left truncated."""
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()
        log.warning(
            "Abandoned hashed block stream after %d blocks; no terminator written",
            self._next_sequence,
        )
        if self._close_sink:
            self._sink.close()

    def _save(self) -> None:
        """Write the internal buffer to the sink as one hashed block."""
        # if there's nothing to save don't do anything
        if not self._buffer:
            return
        payload = bytes(self._buffer)
        digest = self._digest(payload)
        if len(digest) != HASH_SIZE:
            raise HashedBlockError(f"Digest must be {HASH_SIZE} bytes, got {len(digest)}")

        self._emit(encode_header(self._next_sequence, digest, len(payload), self.little_endian), payload)
        log.debug("Wrote block %d (%d bytes)", self._next_sequence, len(payload))

        self._next_sequence += 1
        self._buffer.clear()

    def _emit(self, *parts: bytes) -> None:
        # a partial block may already be on the sink; no retry can repair it
        try:
            for part in parts:
                self._sink.write(part)
            self._sink.flush()
        except Exception:
            self._closed = True
            self._buffer.clear()
            log.error("Sink failed in block %d; hashed block stream is unusable", self._next_sequence)
            raise

    def __enter__(self) -> HashedBlockWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            if not self._closed:
                self.close()
        else:
            self.abandon()


def frame_bytes(
    data: bytes,
    little_endian: bool = False,
    block_size: int = HASHED_BLOCK_SIZE,
) -> bytes:
    """Frame an in-memory payload. Returns the complete block stream."""
    buf = io.BytesIO()
    writer = HashedBlockWriter(buf, little_endian=little_endian, block_size=block_size, close_sink=False)
    writer.write(data)
    writer.close()
    return buf.getvalue()
