"""
Tests for the hashed block stream — writer.py, reader.py, spec.py.

TestWireFormat     — byte-exact layout, byte order, terminator
TestBlockBoundary  — splitting at capacity, flush behaviour
TestClosedStream   — write/flush/close after close
TestWriterCapabilities — injected digest, sink failures, context manager
TestReader         — verification failures, partial reads, round trips
"""

from __future__ import annotations

import hashlib
import io
import logging
import os
import struct

import pytest

from kdbxio import HASHED_BLOCK_SIZE
from kdbxio.hashedblock.spec import (
    HEADER_SIZE,
    ZERO_HASH,
    AlreadyClosedError,
    CorruptStreamError,
    DigestUnavailableError,
    HashedBlockError,
    StreamClosedError,
    resolve_digest,
)
from kdbxio.hashedblock.writer import HashedBlockWriter, frame_bytes
from kdbxio.hashedblock.reader import HashedBlockReader, unframe_bytes


def parse_stream(data: bytes, little_endian: bool = False) -> list[tuple[int, bytes, bytes]]:
    """Independent decoder: returns (seq, hash, payload) for every block incl. terminator."""
    fmt = "<I32sI" if little_endian else ">I32sI"
    blocks = []
    offset = 0
    while offset < len(data):
        seq, digest, length = struct.unpack_from(fmt, data, offset)
        offset += HEADER_SIZE
        blocks.append((seq, digest, data[offset:offset + length]))
        offset += length
    return blocks


# ---------------------------------------------------------------------------
# TestWireFormat
# ---------------------------------------------------------------------------

class TestWireFormat:

    def test_single_block_bytes(self):
        expected = (
            b"\x00\x00\x00\x00" + hashlib.sha256(b"abc").digest() + b"\x00\x00\x00\x03" + b"abc"
            + b"\x00\x00\x00\x01" + bytes(32) + b"\x00\x00\x00\x00"
        )
        assert frame_bytes(b"abc") == expected

    def test_little_endian_fields(self):
        data = frame_bytes(b"abc", little_endian=True)
        assert data[36:40] == b"\x03\x00\x00\x00"
        # terminator sequence number 1
        assert data[43:47] == b"\x01\x00\x00\x00"

    def test_digest_not_reordered_by_byte_order(self):
        big = frame_bytes(b"payload")
        little = frame_bytes(b"payload", little_endian=True)
        assert big[4:36] == little[4:36] == hashlib.sha256(b"payload").digest()

    def test_empty_stream_is_only_terminator(self, sink):
        writer = HashedBlockWriter(sink)
        writer.write(b"")
        writer.close()
        assert sink.getvalue() == struct.pack(">I32sI", 0, ZERO_HASH, 0)

    def test_terminator_hash_is_zero_not_empty_digest(self):
        blocks = parse_stream(frame_bytes(b"x"))
        seq, digest, payload = blocks[-1]
        assert digest == ZERO_HASH
        assert digest != hashlib.sha256(b"").digest()
        assert payload == b""

    def test_sequence_numbers_contiguous(self):
        data = os.urandom(5 * 100 + 17)
        blocks = parse_stream(frame_bytes(data, block_size=100))
        assert [b[0] for b in blocks] == list(range(len(blocks)))
        assert len(blocks) == 7  # 6 data blocks + terminator

    def test_block_lengths_bounded(self):
        data = os.urandom(1000)
        blocks = parse_stream(frame_bytes(data, block_size=64))
        for _, _, payload in blocks[:-1]:
            assert 0 < len(payload) <= 64
        assert blocks[-1][2] == b""
        assert blocks[-1][0] == len(blocks) - 1

    def test_each_block_hashes_own_payload(self):
        blocks = parse_stream(frame_bytes(b"0123456789", block_size=4))
        assert [p for _, _, p in blocks] == [b"0123", b"4567", b"89", b""]
        for _, digest, payload in blocks[:-1]:
            assert digest == hashlib.sha256(payload).digest()


# ---------------------------------------------------------------------------
# TestBlockBoundary
# ---------------------------------------------------------------------------

class TestBlockBoundary:

    def test_exact_capacity_is_one_block(self, sink):
        writer = HashedBlockWriter(sink)
        writer.write(b"a" * HASHED_BLOCK_SIZE)
        writer.close()
        blocks = parse_stream(sink.getvalue())
        assert len(blocks) == 2
        assert len(blocks[0][2]) == HASHED_BLOCK_SIZE
        assert blocks[1] == (1, ZERO_HASH, b"")

    def test_capacity_plus_one(self, sink):
        writer = HashedBlockWriter(sink)
        writer.write(b"a" * (HASHED_BLOCK_SIZE + 1))
        writer.close()
        blocks = parse_stream(sink.getvalue())
        assert [len(p) for _, _, p in blocks] == [HASHED_BLOCK_SIZE, 1, 0]
        assert [s for s, _, _ in blocks] == [0, 1, 2]

    def test_many_small_writes_fill_blocks(self, sink):
        writer = HashedBlockWriter(sink, block_size=8)
        for i in range(20):
            writer.write(bytes([i]))
        writer.close()
        blocks = parse_stream(sink.getvalue())
        assert [len(p) for _, _, p in blocks] == [8, 8, 4, 0]
        assert b"".join(p for _, _, p in blocks) == bytes(range(20))

    def test_flush_emits_partial_block(self, sink):
        writer = HashedBlockWriter(sink)
        writer.write(b"ab")
        writer.flush()
        writer.write(b"cd")
        writer.close()
        blocks = parse_stream(sink.getvalue())
        assert [p for _, _, p in blocks] == [b"ab", b"cd", b""]

    def test_flush_on_empty_buffer_is_noop(self, sink):
        writer = HashedBlockWriter(sink)
        writer.flush()
        writer.write(b"ab")
        writer.flush()
        writer.flush()
        assert writer.blocks_written == 1
        writer.close()
        assert len(parse_stream(sink.getvalue())) == 2

    def test_sink_flushed_after_every_block(self, sink):
        writer = HashedBlockWriter(sink, block_size=4)
        writer.write(b"12345678")
        assert sink.flushes == 2
        writer.close()
        assert sink.flushes == 3

    def test_pending_tracks_partial_buffer(self, sink):
        writer = HashedBlockWriter(sink, block_size=4)
        writer.write(b"123456")
        assert writer.pending == 2
        assert writer.blocks_written == 1

    def test_accepts_bytearray_and_memoryview(self, sink):
        writer = HashedBlockWriter(sink, block_size=3)
        assert writer.write(bytearray(b"abcd")) == 4
        assert writer.write(memoryview(b"ef")) == 2
        writer.close()
        assert unframe_bytes(sink.getvalue()) == b"abcdef"

    def test_invalid_block_size(self, sink):
        with pytest.raises(ValueError):
            HashedBlockWriter(sink, block_size=0)


# ---------------------------------------------------------------------------
# TestClosedStream
# ---------------------------------------------------------------------------

class TestClosedStream:

    def test_write_after_close(self, sink):
        writer = HashedBlockWriter(sink)
        writer.close()
        with pytest.raises(StreamClosedError):
            writer.write(b"late")

    def test_flush_after_close(self, sink):
        writer = HashedBlockWriter(sink)
        writer.close()
        with pytest.raises(StreamClosedError):
            writer.flush()

    def test_close_twice(self, sink):
        writer = HashedBlockWriter(sink)
        writer.close()
        with pytest.raises(AlreadyClosedError):
            writer.close()
        # only one terminator on the wire
        assert len(sink.getvalue()) == HEADER_SIZE

    def test_closed_errors_are_eof(self, sink):
        writer = HashedBlockWriter(sink)
        writer.close()
        with pytest.raises(EOFError):
            writer.write(b"x")
        with pytest.raises(EOFError):
            writer.close()

    def test_close_propagates_to_sink(self, sink):
        writer = HashedBlockWriter(sink)
        writer.close()
        assert writer.closed
        assert sink.close_calls == 1

    def test_close_sink_false_keeps_sink_open(self, sink):
        writer = HashedBlockWriter(sink, close_sink=False)
        writer.close()
        assert sink.close_calls == 0


# ---------------------------------------------------------------------------
# TestWriterCapabilities
# ---------------------------------------------------------------------------

class TestWriterCapabilities:

    def test_injected_digest_used_per_block(self, sink):
        seen = []

        def fake_digest(data: bytes) -> bytes:
            seen.append(data)
            return bytes([len(data)]) * 32

        writer = HashedBlockWriter(sink, block_size=3, digest=fake_digest)
        writer.write(b"abcde")
        writer.close()
        assert seen == [b"abc", b"de"]
        blocks = parse_stream(sink.getvalue())
        assert blocks[0][1] == b"\x03" * 32
        assert blocks[1][1] == b"\x02" * 32

    def test_wrong_digest_length_rejected(self, sink):
        writer = HashedBlockWriter(sink, digest=lambda data: b"short")
        writer.write(b"abc")
        with pytest.raises(HashedBlockError):
            writer.flush()

    def test_unavailable_digest_fails_at_construction(self, sink, monkeypatch):
        import kdbxio.hashedblock.writer as writer_mod

        monkeypatch.setattr(writer_mod, "resolve_digest", lambda: resolve_digest("no-such-hash"))
        with pytest.raises(DigestUnavailableError):
            HashedBlockWriter(sink)

    def test_resolve_digest_is_stateless(self):
        digest = resolve_digest()
        assert digest(b"a") == digest(b"a") == hashlib.sha256(b"a").digest()

    def test_sink_failure_propagates(self):
        class FailingSink(io.BytesIO):
            def write(self, data):
                raise OSError("disk full")

        writer = HashedBlockWriter(FailingSink(), block_size=4)
        with pytest.raises(OSError, match="disk full"):
            writer.write(b"12345")

    def test_sink_failure_mid_block_closes_stream(self, caplog):
        # header lands, payload write fails
        writes = []

        class HalfFailingSink(io.BytesIO):
            def write(self, data):
                writes.append(len(data))
                if len(writes) == 2:
                    raise OSError("disk full")
                return super().write(data)

        target = HalfFailingSink()
        writer = HashedBlockWriter(target, block_size=4)
        with caplog.at_level(logging.ERROR):
            with pytest.raises(OSError, match="disk full"):
                writer.write(b"abcd")
        assert writer.closed
        assert "unusable" in caplog.text
        with pytest.raises(StreamClosedError):
            writer.flush()
        with pytest.raises(StreamClosedError):
            writer.write(b"more")
        with pytest.raises(AlreadyClosedError):
            writer.close()
        assert target.getvalue() == struct.pack(">I32sI", 0, hashlib.sha256(b"abcd").digest(), 4)

    def test_sink_failure_on_terminator_closes_stream(self):
        class TerminatorFailingSink(io.BytesIO):
            def write(self, data):
                if len(data) == HEADER_SIZE and data[4:36] == ZERO_HASH:
                    raise OSError("disk full")
                return super().write(data)

        writer = HashedBlockWriter(TerminatorFailingSink(), block_size=4, close_sink=False)
        writer.write(b"ab")
        with pytest.raises(OSError, match="disk full"):
            writer.close()
        assert writer.closed
        with pytest.raises(AlreadyClosedError):
            writer.close()

    def test_context_manager_writes_terminator(self, sink):
        with HashedBlockWriter(sink) as writer:
            writer.write(b"hello")
        assert writer.closed
        assert unframe_bytes(sink.getvalue()) == b"hello"

    def test_context_manager_error_leaves_stream_truncated(self, sink, caplog):
        with caplog.at_level(logging.WARNING):
            with pytest.raises(RuntimeError):
                with HashedBlockWriter(sink, block_size=4) as writer:
                    writer.write(b"abcdef")
                    raise RuntimeError("boom")
        assert writer.closed
        assert sink.close_calls == 1
        assert "no terminator" in caplog.text
        with pytest.raises(CorruptStreamError, match="Missing terminator"):
            unframe_bytes(sink.getvalue())

    def test_context_manager_after_explicit_close(self, sink):
        with HashedBlockWriter(sink) as writer:
            writer.write(b"x")
            writer.close()
        assert sink.close_calls == 1


# ---------------------------------------------------------------------------
# TestReader
# ---------------------------------------------------------------------------

class TestReader:

    @pytest.mark.parametrize("size", [0, 1, 4095, 8192, 8193, 3 * 8192 + 5])
    def test_round_trip(self, size):
        data = os.urandom(size)
        assert unframe_bytes(frame_bytes(data)) == data

    def test_round_trip_little_endian(self):
        data = os.urandom(20000)
        framed = frame_bytes(data, little_endian=True, block_size=1000)
        assert unframe_bytes(framed, little_endian=True) == data

    def test_iterates_blocks(self):
        framed = frame_bytes(b"0123456789", block_size=4)
        blocks = list(HashedBlockReader(io.BytesIO(framed)))
        assert [b.sequence for b in blocks] == [0, 1, 2]
        assert [b.length for b in blocks] == [4, 4, 2]

    def test_read_block_returns_terminator_then_none(self):
        reader = HashedBlockReader(io.BytesIO(frame_bytes(b"ab")))
        assert reader.read_block().payload == b"ab"
        end = reader.read_block()
        assert end.is_terminator and end.sequence == 1
        assert reader.finished
        assert reader.read_block() is None

    def test_partial_reads(self):
        reader = HashedBlockReader(io.BytesIO(frame_bytes(b"0123456789", block_size=4)))
        assert reader.read(3) == b"012"
        assert reader.read(6) == b"345678"
        assert reader.read(100) == b"9"
        assert reader.read(1) == b""

    def test_tampered_payload(self):
        framed = bytearray(frame_bytes(b"secret data"))
        framed[HEADER_SIZE] ^= 0x01
        with pytest.raises(CorruptStreamError, match="Hash mismatch"):
            unframe_bytes(bytes(framed))

    def test_tampered_payload_without_verify(self):
        framed = bytearray(frame_bytes(b"secret data"))
        framed[HEADER_SIZE] ^= 0x01
        assert unframe_bytes(bytes(framed), verify=False) == b"recret data"

    def test_missing_terminator(self):
        framed = frame_bytes(b"abc")[:-HEADER_SIZE]
        with pytest.raises(CorruptStreamError, match="Missing terminator"):
            unframe_bytes(framed)

    def test_truncated_payload(self):
        framed = frame_bytes(b"abcdef")[:HEADER_SIZE + 3]
        with pytest.raises(CorruptStreamError, match="Truncated payload"):
            unframe_bytes(framed)

    def test_truncated_header(self):
        framed = frame_bytes(b"abc")[:10]
        with pytest.raises(CorruptStreamError):
            unframe_bytes(framed)

    def test_out_of_order_blocks(self):
        framed = frame_bytes(b"aabb", block_size=2)
        block_len = HEADER_SIZE + 2
        swapped = framed[block_len:2 * block_len] + framed[:block_len] + framed[2 * block_len:]
        with pytest.raises(CorruptStreamError, match="Out of order"):
            unframe_bytes(swapped)

    def test_terminator_with_hash_rejected(self):
        framed = frame_bytes(b"")[:4] + b"\x01" * 32 + b"\x00" * 4
        with pytest.raises(CorruptStreamError, match="non-zero hash"):
            unframe_bytes(framed)

    def test_wrong_byte_order_detected(self):
        framed = frame_bytes(b"abc")
        with pytest.raises(CorruptStreamError):
            unframe_bytes(framed, little_endian=True)

    def test_oversized_length_rejected_before_payload_read(self):
        header = struct.pack(">I32sI", 0, b"\x01" * 32, 0xFFFFFFF0)
        source = io.BytesIO(header + b"short")
        reader = HashedBlockReader(source)
        with pytest.raises(CorruptStreamError, match="exceeds limit"):
            reader.read_block()
        assert source.tell() == HEADER_SIZE

    def test_custom_length_limit(self):
        framed = frame_bytes(b"0123456789", block_size=8)
        assert unframe_bytes(framed, max_block_length=8) == b"0123456789"
        with pytest.raises(CorruptStreamError, match="exceeds limit of 4 bytes"):
            unframe_bytes(framed, max_block_length=4)

    def test_trailing_bytes_logged(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert unframe_bytes(frame_bytes(b"abc") + b"junk") == b"abc"
        assert "4 bytes after" in caplog.text
