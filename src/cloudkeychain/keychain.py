"""The keychain key hierarchy.

Key derivation
--------------
    password --PBKDF2-HMAC-SHA512(salt, iterations)--> super key
    super key --opdata "profileKey"--> master seed (256 B), overview seed (64 B)
    SHA-512(seed) --> master / overview key pairs

The super key is thrown away as soon as the seeds are unwrapped.  The
master and overview key pairs live only in memory while the keychain is
unlocked; items borrow them to open their own sections.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterator, Optional, Union

from . import crypto, pbkdf2
from .exceptions import VaultLockedError
from .item import Item
from .models import ItemData, ItemRecord, ProfileRecord, now
from .opdata import Failure, KeyPair, Kind, Opdata

logger = logging.getLogger(__name__)

DEFAULT_ITERATIONS = pbkdf2.DEFAULT_ITERATIONS
DEFAULT_PROFILE = "default"
SALT_SIZE = 16
MASTER_SEED_SIZE = 256
OVERVIEW_SEED_SIZE = 64

Callback = Callable[["Keychain"], None]


def derive_super_key(password: str, salt: bytes, iterations: int) -> KeyPair:
    """Derive the password-bound key pair that wraps the master and overview seeds."""
    return KeyPair.from_bytes(pbkdf2.derive(password, salt, iterations, 512))


class SharedKeychains:
    """Other keychains opened alongside a main keychain."""

    def __init__(self) -> None:
        self._all: dict[int, Keychain] = {}
        self._next_id = 0

    def load(self, keychain: "Keychain") -> int:
        shared_id = self._next_id
        self._next_id += 1
        self._all[shared_id] = keychain
        return shared_id

    def unload(self, shared_id: int) -> None:
        self._all.pop(shared_id, None)

    def get(self, shared_id: int) -> Optional["Keychain"]:
        return self._all.get(shared_id)

    def list(self) -> list[dict]:
        return [{"id": shared_id, "uuid": kc.uuid, "profile": kc.profile_name} for shared_id, kc in self._all.items()]

    def __iter__(self) -> Iterator["Keychain"]:
        return iter(list(self._all.values()))

    def __len__(self) -> int:
        return len(self._all)


class Keychain:
    """A password-protected set of items."""

    def __init__(
        self,
        *,
        uuid: str,
        salt: bytes,
        iterations: int = DEFAULT_ITERATIONS,
        created_at: Optional[int] = None,
        updated_at: Optional[int] = None,
        profile_name: str = DEFAULT_PROFILE,
        password_hint: str = "",
        last_updated_by: str = "Dropbox",
        master_key: bytes,
        overview_key: bytes,
        on_unlock: Optional[Callback] = None,
        on_lock: Optional[Callback] = None,
    ) -> None:
        timestamp = now()
        self.uuid = uuid
        self.salt = salt
        self.iterations = iterations
        self.created_at = created_at if created_at is not None else timestamp
        self.updated_at = updated_at if updated_at is not None else timestamp
        self.profile_name = profile_name
        self.password_hint = password_hint
        self.last_updated_by = last_updated_by

        # Seed containers, encrypted under the super key.
        self.encrypted_master_key = master_key
        self.encrypted_overview_key = overview_key

        self.master: Optional[Opdata] = None
        self.overview: Optional[Opdata] = None
        self.unlocked = False

        self.items: dict[str, Item] = {}
        self.shared = SharedKeychains()

        self._on_unlock = on_unlock
        self._on_lock = on_lock

    def __repr__(self) -> str:
        state = "unlocked" if self.unlocked else "locked"
        return f"Keychain(uuid={self.uuid!r}, profile={self.profile_name!r}, {state})"

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        password: str,
        *,
        iterations: int = DEFAULT_ITERATIONS,
        profile_name: str = DEFAULT_PROFILE,
        password_hint: str = "",
        last_updated_by: str = "Dropbox",
        on_unlock: Optional[Callback] = None,
        on_lock: Optional[Callback] = None,
    ) -> "Keychain":
        """Create a new keychain protected by *password*; it starts unlocked."""
        salt = crypto.random_bytes(SALT_SIZE)
        master_seed = crypto.random_bytes(MASTER_SEED_SIZE)
        overview_seed = crypto.random_bytes(OVERVIEW_SEED_SIZE)

        super_key = Opdata(derive_super_key(password, salt, iterations))

        keychain = cls(
            uuid=crypto.generate_uuid(),
            salt=salt,
            iterations=iterations,
            profile_name=profile_name,
            password_hint=password_hint,
            last_updated_by=last_updated_by,
            master_key=super_key.encrypt(Kind.PROFILE_KEY, master_seed),
            overview_key=super_key.encrypt(Kind.PROFILE_KEY, overview_seed),
            on_unlock=on_unlock,
            on_lock=on_lock,
        )
        keychain.master = Opdata(KeyPair.from_seed(master_seed))
        keychain.overview = Opdata(KeyPair.from_seed(overview_seed))
        keychain.unlocked = True

        logger.debug("Created keychain %s (%d iterations)", keychain.uuid, iterations)
        return keychain

    @classmethod
    def from_record(cls, record: Union[ProfileRecord, dict], **callbacks: Optional[Callback]) -> "Keychain":
        """Build a locked keychain from a stored profile record."""
        if not isinstance(record, ProfileRecord):
            record = ProfileRecord.model_validate(record)
        return cls(
            uuid=record.uuid,
            salt=crypto.from_base64(record.salt),
            iterations=record.iterations,
            created_at=record.created_at,
            updated_at=record.updated_at,
            profile_name=record.profile_name,
            password_hint=record.password_hint,
            last_updated_by=record.last_updated_by,
            master_key=crypto.from_base64(record.master_key),
            overview_key=crypto.from_base64(record.overview_key),
            **callbacks,
        )

    def to_record(self) -> ProfileRecord:
        return ProfileRecord(
            uuid=self.uuid,
            salt=crypto.to_base64(self.salt),
            created_at=self.created_at,
            updated_at=self.updated_at,
            iterations=self.iterations,
            profile_name=self.profile_name,
            password_hint=self.password_hint,
            last_updated_by=self.last_updated_by,
            master_key=crypto.to_base64(self.encrypted_master_key),
            overview_key=crypto.to_base64(self.encrypted_overview_key),
        )

    # ------------------------------------------------------------------
    # Lock / unlock
    # ------------------------------------------------------------------

    def unlock(self, password: str) -> bool:
        """Unwrap the master and overview keys; ``False`` on a wrong password."""
        if self.unlocked:
            logger.debug("Keychain %s already unlocked", self.uuid)
            return True

        super_key = Opdata(derive_super_key(password, self.salt, self.iterations))

        master = super_key.decrypt(Kind.PROFILE_KEY, self.encrypted_master_key)
        if isinstance(master, Failure):
            logger.warning("Could not decrypt master key of keychain %s", self.uuid)
            return False

        overview = super_key.decrypt(Kind.PROFILE_KEY, self.encrypted_overview_key)
        if isinstance(overview, Failure):
            logger.warning("Could not decrypt overview key of keychain %s", self.uuid)
            return False

        self.master = Opdata(master)
        self.overview = Opdata(overview)
        self.unlocked = True

        for item in self.items.values():
            item.unlock("overview")

        logger.debug("Unlocked keychain %s", self.uuid)
        if self._on_unlock is not None:
            self._on_unlock(self)
        return True

    def lock(self) -> "Keychain":
        """Forget all derived keys and every item's plaintext."""
        self.master = None
        self.overview = None
        for item in self.items.values():
            item.lock("all")

        was_unlocked = self.unlocked
        self.unlocked = False
        if was_unlocked:
            logger.debug("Locked keychain %s", self.uuid)
            if self._on_lock is not None:
                self._on_lock(self)
        return self

    def change_password(self, current_password: str, new_password: str) -> bool:
        """Re-wrap the seeds under *new_password*.

        Returns ``False`` and leaves the stored keys untouched when
        *current_password* is wrong.
        """
        current_key = Opdata(derive_super_key(current_password, self.salt, self.iterations))

        master_seed = current_key.decrypt(Kind.BUFFER, self.encrypted_master_key)
        overview_seed = current_key.decrypt(Kind.BUFFER, self.encrypted_overview_key)
        if isinstance(master_seed, Failure) or isinstance(overview_seed, Failure):
            logger.warning("Password change refused for keychain %s", self.uuid)
            return False

        new_key = Opdata(derive_super_key(new_password, self.salt, self.iterations))
        self.encrypted_master_key = new_key.encrypt(Kind.PROFILE_KEY, master_seed)
        self.encrypted_overview_key = new_key.encrypt(Kind.PROFILE_KEY, overview_seed)
        self.updated_at = now()

        logger.debug("Changed password of keychain %s", self.uuid)
        return True

    def require_master(self) -> Opdata:
        if self.master is None:
            raise VaultLockedError("Keychain is locked.")
        return self.master

    def require_overview(self) -> Opdata:
        if self.overview is None:
            raise VaultLockedError("Keychain is locked.")
        return self.overview

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def create_item(self, data: Union[ItemData, dict]) -> Item:
        """Create a new encrypted item and add it to the keychain."""
        item = Item.create(self, data)
        self.items[item.uuid] = item
        return item

    def add_item(self, item: Union[Item, ItemRecord, dict]) -> Item:
        """Add an item or a stored item record."""
        if not isinstance(item, Item):
            item = Item.load(self, item)
            if self.unlocked:
                item.unlock("overview")
        self.items[item.uuid] = item
        return item

    def get_item(self, uuid: str) -> Optional[Item]:
        return self.items.get(uuid)

    def find_items(self, query: str, include_shared: bool = True) -> list[Item]:
        """Items whose overview title matches *query*; trashed items are skipped."""
        matches = [item for item in self.items.values() if not item.trashed and item.match(query)]
        if include_shared:
            for keychain in self.shared:
                matches.extend(keychain.find_items(query, include_shared=False))
        return matches
