"""
kdbxio — write-side data protection for KeePass-style encrypted containers.

Architecture:
    Markup:   XML events -> ProtectedFieldEncryptor (base64 keystream ciphertext)
    Framing:  bytes -> HashedBlockWriter (seq + SHA-256 + length + payload)
    Bridge:   kdbxio.container.write_protected / read_protected
"""

__version__ = "0.1.0"

# Hashed block constants
HASHED_BLOCK_SIZE = 8 * 1024  # per-block payload ceiling, policy not format
HASHED_BLOCK_HASH = "sha256"
HASHED_BLOCK_HASH_SIZE = 32
HASHED_BLOCK_MAX_LENGTH = 0xFFFFFFFF  # uint32 length field
# Largest block the reader will buffer; the writer never emits more than block_size
HASHED_BLOCK_READ_LIMIT = 64 * 1024 * 1024

# Markup constants
PROTECTED_ATTRIBUTE = "Protected"
COMPRESSED_ATTRIBUTE = "Compressed"
DEFAULT_ENCODING = "utf-8"

# Inner stream cipher constants (KDBX4 ChaCha20 derivation)
CHACHA20_KEY_SIZE = 32
CHACHA20_NONCE_SIZE = 12
