"""Exceptions raised by cloudkeychain."""

from __future__ import annotations


class KeychainError(Exception):
    """Base class for every cloudkeychain error."""


class FormatError(KeychainError):
    """Raised when a container or file does not have the expected shape."""


class IntegrityError(KeychainError):
    """Raised when an HMAC does not match.

    The message is the same for a wrong password and for tampered data.
    """


class KeyLengthError(KeychainError, ValueError):
    """Raised when a key pair is built from keys that are not 32 bytes."""


class DependencyError(KeychainError):
    """Raised when item details need item keys that cannot be unlocked."""


class VaultLockedError(KeychainError):
    """Raised when an operation needs the master or overview keys while locked."""


class BadKeychainError(FormatError):
    """Raised when a .cloudKeychain directory is unreadable or corrupt."""
