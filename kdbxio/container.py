"""
Payload pipeline — protect and frame an XML document, or the reverse.

Write path:
    XML bytes -> iter_events -> ProtectedFieldEncryptor -> XmlEventWriter
              -> HashedBlockWriter -> sink

Read path:
    sink bytes -> HashedBlockReader -> iter_events -> ProtectedFieldDecryptor
               -> XmlEventWriter -> plaintext XML bytes

The two halves share nothing but bytes; the cipher passed to each side must
start at the same keystream position.
"""

from __future__ import annotations

import io
import logging
from typing import BinaryIO

from kdbxio import DEFAULT_ENCODING, HASHED_BLOCK_SIZE
from kdbxio.crypto import StreamDecryptor, StreamEncryptor
from kdbxio.hashedblock.reader import HashedBlockReader
from kdbxio.hashedblock.writer import HashedBlockWriter
from kdbxio.xml.events import XmlEventWriter, iter_events, transform_events
from kdbxio.xml.transformer import ProtectedFieldDecryptor, ProtectedFieldEncryptor

log = logging.getLogger(__name__)


def write_protected(
    source: bytes | BinaryIO,
    sink: BinaryIO,
    cipher: StreamEncryptor,
    little_endian: bool = False,
    block_size: int = HASHED_BLOCK_SIZE,
    encoding: str = DEFAULT_ENCODING,
    close_sink: bool = True,
) -> int:
    """Encrypt protected fields of an XML document and frame it onto sink.

    Returns the number of protected fields encrypted. If anything fails the
    stream is abandoned without a terminator.
    """
    encryptor = ProtectedFieldEncryptor(cipher, encoding=encoding)
    with HashedBlockWriter(
        sink, little_endian=little_endian, block_size=block_size, close_sink=close_sink
    ) as framer:
        XmlEventWriter(framer, encoding=encoding).write_all(
            transform_events(iter_events(source), encryptor.transform)
        )
        framer.close()
        log.info(
            "Wrote protected payload: %d blocks, %d protected fields",
            framer.blocks_written,
            encryptor.fields_encrypted,
        )
    return encryptor.fields_encrypted


def read_protected(
    source: BinaryIO,
    cipher: StreamDecryptor,
    little_endian: bool = False,
    encoding: str = DEFAULT_ENCODING,
) -> bytes:
    """Verify a framed payload, decrypt its protected fields, return the XML."""
    reader = HashedBlockReader(source, little_endian=little_endian)
    decryptor = ProtectedFieldDecryptor(cipher, encoding=encoding)
    out = io.BytesIO()
    XmlEventWriter(out, encoding=encoding).write_all(
        transform_events(iter_events(reader), decryptor.transform)
    )
    log.info("Read protected payload: %d protected fields", decryptor.fields_decrypted)
    return out.getvalue()
