"""Cryptographic primitives for cloudkeychain.

Cipher:   AES-256-CBC with padding disabled (callers pad themselves).
MAC:      HMAC-SHA256 / HMAC-SHA512.
Hash:     SHA-256 / SHA-512.
Padding:  random bytes *prepended* up to the next 16-byte boundary.

Everything here is stateless.  ``bits`` arguments select the SHA-2 variant
and must be 256 or 512.
"""

from __future__ import annotations

import base64
import os
import struct
from typing import Union

from cryptography.hazmat.primitives import constant_time, hashes
from cryptography.hazmat.primitives import hmac as _hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

BLOCK_SIZE = 16
KEY_SIZE = 32

# Largest integer a little-endian length field may carry.
MAX_SAFE_INTEGER = 2**53 - 1

_HASHES = {
    256: hashes.SHA256,
    512: hashes.SHA512,
}

BytesLike = Union[bytes, bytearray, memoryview, str]


def _algorithm(bits: int) -> hashes.HashAlgorithm:
    try:
        return _HASHES[bits]()
    except KeyError:
        raise ValueError(f"Unsupported hash size: {bits} (expected 256 or 512).") from None


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------


def to_bytes(data: BytesLike) -> bytes:
    """Return *data* as bytes; a ``str`` is read as hex."""
    if isinstance(data, str):
        return bytes.fromhex(data)
    return bytes(data)


def to_hex(data: bytes) -> str:
    return bytes(data).hex()


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def from_base64(data: str | bytes) -> bytes:
    return base64.b64decode(data, validate=True)


def little_endian(number: int) -> bytes:
    """Encode *number* as 8 little-endian bytes."""
    if not 0 <= number <= MAX_SAFE_INTEGER:
        raise ValueError(f"Length {number} is outside the supported range.")
    return struct.pack("<Q", number)


def parse_little_endian(data: BytesLike) -> int:
    """Decode up to 8 little-endian bytes into an int."""
    raw = to_bytes(data)
    if len(raw) > 8:
        raise ValueError("A little-endian length is at most 8 bytes.")
    number = int.from_bytes(raw, "little")
    if number > MAX_SAFE_INTEGER:
        raise ValueError("Little-endian length is outside the supported range.")
    return number


# ---------------------------------------------------------------------------
# Randomness
# ---------------------------------------------------------------------------


def random_bytes(length: int) -> bytes:
    """Return *length* bytes from the OS CSPRNG.

    ``os.urandom`` raises if no secure source exists; that error propagates.
    """
    return os.urandom(length)


def generate_uuid(length: int = 32) -> str:
    """Return a random upper-case hex identifier of *length* characters."""
    return random_bytes(length // 2).hex().upper()


# ---------------------------------------------------------------------------
# AES-256-CBC
# ---------------------------------------------------------------------------


def encrypt(plaintext: bytes, key: BytesLike, iv: BytesLike) -> bytes:
    """Encrypt *plaintext* (a multiple of 16 bytes) with AES-256-CBC."""
    encryptor = Cipher(algorithms.AES(to_bytes(key)), modes.CBC(to_bytes(iv))).encryptor()
    return encryptor.update(bytes(plaintext)) + encryptor.finalize()


def decrypt(ciphertext: BytesLike, key: BytesLike, iv: BytesLike) -> bytes:
    """Decrypt AES-256-CBC *ciphertext*; its length must be a multiple of 16."""
    decryptor = Cipher(algorithms.AES(to_bytes(key)), modes.CBC(to_bytes(iv))).decryptor()
    return decryptor.update(to_bytes(ciphertext)) + decryptor.finalize()


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def hmac(data: BytesLike, key: BytesLike, bits: int = 256) -> bytes:
    """Return HMAC-SHA{bits} of *data* under *key*."""
    mac = _hmac.HMAC(to_bytes(key), _algorithm(bits))
    mac.update(to_bytes(data))
    return mac.finalize()


def hash(data: BytesLike, bits: int = 256) -> bytes:  # noqa: A001
    """Return SHA-{bits} of *data*."""
    digest = hashes.Hash(_algorithm(bits))
    digest.update(to_bytes(data))
    return digest.finalize()


def constant_time_equal(a: bytes, b: bytes) -> bool:
    return constant_time.bytes_eq(bytes(a), bytes(b))


# ---------------------------------------------------------------------------
# Padding
# ---------------------------------------------------------------------------


def pad(data: bytes) -> bytes:
    """Prepend 1-16 random bytes so the result fills whole blocks."""
    padding = random_bytes(BLOCK_SIZE - (len(data) % BLOCK_SIZE))
    return padding + bytes(data)


def unpad(plaintext_length: int, data: bytes) -> bytes:
    """Return the last *plaintext_length* bytes of *data*."""
    if plaintext_length == 0:
        return b""
    return bytes(data[-plaintext_length:])
