"""
Hashed block stream — self-verifying framing for container payloads.

Each block carries a sequence number, the SHA-256 of its payload and the
payload length; a zero-length, zero-hash block terminates the stream.
The framing knows nothing about what the payload contains.
"""

from kdbxio.hashedblock.spec import (
    Block,
    HashedBlockError,
    StreamClosedError,
    AlreadyClosedError,
    DigestUnavailableError,
    CorruptStreamError,
)
from kdbxio.hashedblock.writer import HashedBlockWriter, frame_bytes
from kdbxio.hashedblock.reader import HashedBlockReader, unframe_bytes

__all__ = [
    "Block",
    "HashedBlockError",
    "StreamClosedError",
    "AlreadyClosedError",
    "DigestUnavailableError",
    "CorruptStreamError",
    "HashedBlockWriter",
    "HashedBlockReader",
    "frame_bytes",
    "unframe_bytes",
]
