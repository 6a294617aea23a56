"""cloudkeychain — read and write encrypted cloud keychain vaults."""

__version__ = "0.1.0"

from .exceptions import (  # noqa: E402
    BadKeychainError,
    DependencyError,
    FormatError,
    IntegrityError,
    KeychainError,
    KeyLengthError,
    VaultLockedError,
)
from .item import Item, Section  # noqa: E402
from .keychain import Keychain  # noqa: E402
from .opdata import Failure, KeyPair, Kind, Opdata  # noqa: E402


def open_keychain(path, password: str, profile: str = "default") -> Keychain:
    """Load and unlock the keychain at *path* — the one-liner for scripts.

    Args:
        path:     The ``.cloudKeychain`` directory.
        password: The master password.
        profile:  Profile folder inside the keychain. Defaults to ``"default"``.

    Returns:
        An unlocked :class:`Keychain` with every item's overview decrypted.

    Raises:
        BadKeychainError: If the directory does not hold a readable keychain.
        IntegrityError: If *password* is wrong.

    Example::

        from cloudkeychain import open_keychain

        keychain = open_keychain("~/Dropbox/1Password.cloudkeychain", "hunter2")
        for item in keychain.find_items("github"):
            item.unlock("details")
            print(item.field("password"))
    """
    from pathlib import Path

    from .store import KeychainStore

    keychain = KeychainStore(Path(path).expanduser(), profile).load()
    if not keychain.unlock(password):
        raise Failure.INTEGRITY.exception()
    return keychain


__all__ = [
    "BadKeychainError",
    "DependencyError",
    "Failure",
    "FormatError",
    "IntegrityError",
    "Item",
    "KeyLengthError",
    "KeyPair",
    "Keychain",
    "KeychainError",
    "Kind",
    "Opdata",
    "Section",
    "VaultLockedError",
    "open_keychain",
]
