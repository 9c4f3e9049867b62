"""
Inner stream ciphers for protected fields.

- Capability: StreamEncryptor / StreamDecryptor (one method each)
- Implementation: ChaCha20 with the KDBX4 inner-stream key derivation
  (SHA-512 of the inner key; bytes 0-31 key, 32-43 nonce, counter 0)

The `cryptography` package is lazily imported, so the framing and markup
layers stay usable without it.

Install with: pip install kdbxio[crypto]
"""

from __future__ import annotations

import hashlib
from typing import Protocol

from kdbxio import CHACHA20_KEY_SIZE, CHACHA20_NONCE_SIZE


class StreamEncryptor(Protocol):
    def encrypt(self, data: bytes) -> bytes: ...


class StreamDecryptor(Protocol):
    def decrypt(self, data: bytes) -> bytes: ...


def _import_chacha20():
    """Lazily import the ChaCha20 primitive from cryptography.

    Raises ImportError with a helpful message if not installed.
    """
    try:
        from cryptography.hazmat.primitives.ciphers import Cipher, algorithms

        return Cipher, algorithms.ChaCha20
    except ImportError:
        raise ImportError(
            "cryptography is required for ChaCha20 protected fields. "
            "Install with: pip install kdbxio[crypto]"
        )


def derive_chacha20_params(inner_key: bytes) -> tuple[bytes, bytes]:
    """Split SHA-512(inner_key) into a 32-byte key and a 12-byte nonce."""
    if not inner_key:
        raise ValueError("Inner stream key must not be empty")
    digest = hashlib.sha512(inner_key).digest()
    key = digest[:CHACHA20_KEY_SIZE]
    nonce = digest[CHACHA20_KEY_SIZE:CHACHA20_KEY_SIZE + CHACHA20_NONCE_SIZE]
    return key, nonce


class ChaCha20StreamCipher:
    """
    Stateful ChaCha20 keystream shared by every protected field of one pass.

    Encryption and decryption are the same XOR, so a single instance serves
    either side. Use a fresh instance per serialisation pass; reusing one
    leaves the keystream misaligned with the reader's.

    Usage:
        cipher = ChaCha20StreamCipher(inner_key)
        a = cipher.encrypt(b"first")
        b = cipher.encrypt(b"second")  # continues where "first" stopped
    """

    def __init__(self, inner_key: bytes) -> None:
        Cipher, ChaCha20 = _import_chacha20()
        key, nonce = derive_chacha20_params(inner_key)
        # cryptography takes a 16-byte nonce: 4-byte little-endian counter + 12-byte nonce
        full_nonce = (0).to_bytes(4, "little") + nonce
        self._context = Cipher(ChaCha20(key, full_nonce), mode=None).encryptor()
        self.position = 0

    def encrypt(self, data: bytes) -> bytes:
        out = self._context.update(data)
        self.position += len(data)
        return out

    def decrypt(self, data: bytes) -> bytes:
        return self.encrypt(data)
