"""The opdata01 authenticated-encryption container.

Binary layout
-------------
Offset  Length  Content
0       8       Magic bytes b"opdata01"
8       8       Plaintext length (little-endian uint64)
16      16      IV
32      16k     AES-256-CBC ciphertext of IV || random prefix || plaintext
-32     32      HMAC-SHA256 over every preceding byte

Item keys use a shorter layout with no magic, no length and no padding::

    IV(16) || ciphertext(64) || HMAC-SHA256(32)
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Union

from . import crypto
from .exceptions import FormatError, IntegrityError, KeyLengthError

logger = logging.getLogger(__name__)

OPDATA_HEADER = b"opdata01"

_IV_SIZE = 16
_HMAC_SIZE = 32
_LENGTH_SIZE = 8
_ITEM_KEY_SIZE = 2 * crypto.KEY_SIZE
_PREFIX_SIZE = len(OPDATA_HEADER) + _LENGTH_SIZE + _IV_SIZE


class Kind(enum.Enum):
    """What an opdata container holds, and how its plaintext is read."""

    ITEM = "item"
    ITEM_KEY = "itemKey"
    BUFFER = "buffer"
    PROFILE_KEY = "profileKey"


class Failure(enum.Enum):
    """Why a container could not be decrypted."""

    FORMAT = "Not a valid opdata01 container."
    INTEGRITY = "Integrity check failed: wrong key or corrupted data."

    def exception(self) -> Exception:
        """Return the exception matching this failure."""
        if self is Failure.FORMAT:
            return FormatError(self.value)
        return IntegrityError(self.value)


@dataclass(frozen=True)
class KeyPair:
    """An encryption key and an HMAC key, 32 bytes each."""

    encryption_key: bytes = field(repr=False)
    hmac_key: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if len(self.encryption_key) != crypto.KEY_SIZE:
            raise KeyLengthError("Encryption key must be 32 bytes.")
        if len(self.hmac_key) != crypto.KEY_SIZE:
            raise KeyLengthError("HMAC key must be 32 bytes.")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "KeyPair":
        """Split 64 bytes into an encryption key and an HMAC key."""
        if len(raw) != _ITEM_KEY_SIZE:
            raise KeyLengthError("A key pair is built from exactly 64 bytes.")
        return cls(bytes(raw[:32]), bytes(raw[32:]))

    @classmethod
    def from_seed(cls, seed: bytes) -> "KeyPair":
        """Derive a key pair from a raw seed via SHA-512."""
        return cls.from_bytes(crypto.hash(seed, 512))

    @classmethod
    def generate(cls) -> "KeyPair":
        return cls(crypto.random_bytes(crypto.KEY_SIZE), crypto.random_bytes(crypto.KEY_SIZE))

    def to_bytes(self) -> bytes:
        return self.encryption_key + self.hmac_key


Plaintext = Union[str, bytes, KeyPair]


class Opdata:
    """Encrypts and decrypts opdata01 containers under one :class:`KeyPair`."""

    def __init__(self, keys: KeyPair) -> None:
        self.keys = keys

    @classmethod
    def from_keys(cls, encryption_key: bytes, hmac_key: bytes) -> "Opdata":
        return cls(KeyPair(bytes(encryption_key), bytes(hmac_key)))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def encrypt(self, kind: Kind, plaintext: bytes) -> bytes:
        """Wrap *plaintext* in a container of the given *kind*."""
        kind = Kind(kind)
        iv = crypto.random_bytes(_IV_SIZE)

        if kind is Kind.ITEM_KEY:
            if len(plaintext) != _ITEM_KEY_SIZE:
                raise ValueError("Item key plaintext must be exactly 64 bytes.")
            ciphertext = crypto.encrypt(plaintext, self.keys.encryption_key, iv)
            mac_input = iv + ciphertext
        else:
            padded = iv + crypto.pad(plaintext)
            ciphertext = crypto.encrypt(padded, self.keys.encryption_key, iv)
            mac_input = OPDATA_HEADER + crypto.little_endian(len(plaintext)) + iv + ciphertext

        return mac_input + crypto.hmac(mac_input, self.keys.hmac_key, 256)

    def decrypt(self, kind: Kind, container: bytes) -> Union[Plaintext, Failure]:
        """Open *container*; returns the plaintext or a :class:`Failure`.

        * ``ITEM``        -> ``str``
        * ``ITEM_KEY``    -> :class:`KeyPair`
        * ``PROFILE_KEY`` -> :class:`KeyPair` derived from SHA-512 of the seed
        * ``BUFFER``      -> ``bytes``
        """
        kind = Kind(kind)
        container = bytes(container)

        if kind is Kind.ITEM_KEY:
            iv = container[:_IV_SIZE]
            ciphertext = container[_IV_SIZE:-_HMAC_SIZE]
            minimum = _IV_SIZE + crypto.BLOCK_SIZE + _HMAC_SIZE
        else:
            if container[: len(OPDATA_HEADER)] != OPDATA_HEADER:
                logger.debug("Rejected %s container: bad header", kind.value)
                return Failure.FORMAT
            iv = container[16:_PREFIX_SIZE]
            ciphertext = container[_PREFIX_SIZE:-_HMAC_SIZE]
            minimum = _PREFIX_SIZE + crypto.BLOCK_SIZE + _HMAC_SIZE

        if len(container) < minimum or len(ciphertext) % crypto.BLOCK_SIZE:
            logger.debug("Rejected %s container: malformed length", kind.value)
            return Failure.FORMAT

        expected = crypto.hmac(container[:-_HMAC_SIZE], self.keys.hmac_key, 256)
        if not crypto.constant_time_equal(expected, container[-_HMAC_SIZE:]):
            logger.debug("Rejected %s container: HMAC mismatch", kind.value)
            return Failure.INTEGRITY

        raw = crypto.decrypt(ciphertext, self.keys.encryption_key, iv)

        if kind is Kind.ITEM_KEY:
            if len(raw) != _ITEM_KEY_SIZE:
                return Failure.FORMAT
            return KeyPair.from_bytes(raw)

        try:
            length = crypto.parse_little_endian(container[8:16])
        except ValueError:
            return Failure.FORMAT
        if length > len(raw):
            return Failure.FORMAT
        plaintext = crypto.unpad(length, raw)

        if kind is Kind.ITEM:
            try:
                return plaintext.decode("utf-8")
            except UnicodeDecodeError:
                return Failure.FORMAT
        if kind is Kind.PROFILE_KEY:
            return KeyPair.from_seed(plaintext)
        return plaintext
