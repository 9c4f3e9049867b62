"""Shared test doubles: a sink that survives close() and a deterministic keystream."""

from __future__ import annotations

import io

import pytest


class RecordingSink(io.BytesIO):
    """BytesIO that counts flush/close calls and keeps its contents after close()."""

    def __init__(self) -> None:
        super().__init__()
        self.flushes = 0
        self.close_calls = 0

    def flush(self) -> None:
        self.flushes += 1
        super().flush()

    def close(self) -> None:
        self.close_calls += 1


class XorKeystream:
    """Stateful toy stream cipher: stream byte n is XORed with (n * 7 + 3) mod 256."""

    def __init__(self) -> None:
        self.position = 0
        self.calls: list[bytes] = []

    def encrypt(self, data: bytes) -> bytes:
        self.calls.append(bytes(data))
        out = bytes(
            b ^ (((self.position + i) * 7 + 3) & 0xFF) for i, b in enumerate(data)
        )
        self.position += len(data)
        return out

    def decrypt(self, data: bytes) -> bytes:
        return self.encrypt(data)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def keystream():
    return XorKeystream()


@pytest.fixture
def make_keystream():
    """Factory for independent keystreams starting at position 0."""
    return XorKeystream
