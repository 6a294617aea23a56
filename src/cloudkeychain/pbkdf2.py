"""Single-block PBKDF2-HMAC-SHA256/512.

Only the first PBKDF2 block is ever computed, so the output is exactly one
digest long: 32 bytes for ``bits=256``, 64 bytes for ``bits=512``.
"""

from __future__ import annotations

from typing import Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .crypto import to_bytes

DEFAULT_ITERATIONS = 10_000
DEFAULT_BITS = 512

_HASHES = {
    256: hashes.SHA256,
    512: hashes.SHA512,
}


def derive(
    password: Union[str, bytes],
    salt: Union[str, bytes],
    iterations: int = DEFAULT_ITERATIONS,
    bits: int = DEFAULT_BITS,
) -> bytes:
    """Derive ``bits // 8`` bytes from *password* and *salt*.

    A ``str`` password is UTF-8 encoded.  A ``str`` salt is read as hex, so
    ``derive("password", "0123456789ABCDEF")`` salts with the eight bytes
    ``01 23 45 67 89 ab cd ef``.

    Raises:
        ValueError: if *bits* is not 256 or 512, or *iterations* < 1.
    """
    if bits not in _HASHES:
        raise ValueError(f"PBKDF2 output size must be 256 or 512 bits, not {bits}.")
    if iterations < 1:
        raise ValueError("PBKDF2 needs at least one iteration.")

    if isinstance(password, str):
        password = password.encode("utf-8")

    # One digest of output is block 1 only.
    kdf = PBKDF2HMAC(
        algorithm=_HASHES[bits](),
        length=bits // 8,
        salt=to_bytes(salt),
        iterations=iterations,
    )
    return kdf.derive(bytes(password))
