"""Keychain items and their lock/unlock state machine.

An item has three independently encrypted sections:

keys      The item's own :class:`KeyPair`, wrapped by the keychain master key.
details   Secret fields (username, password, notes), under the item's keys.
overview  Title and URLs, under the keychain-wide overview key so listing
          and searching work without opening every item.

Unlocking ``details`` first unlocks ``keys`` when needed.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Union

from . import crypto
from .exceptions import DependencyError
from .models import CATEGORIES, LOGIN_CATEGORY, ItemData, ItemRecord, now
from .opdata import Failure, KeyPair, Kind, Opdata

if TYPE_CHECKING:
    from .keychain import Keychain

logger = logging.getLogger(__name__)


class Section(enum.Enum):
    KEYS = "keys"
    DETAILS = "details"
    OVERVIEW = "overview"
    ALL = "all"


_SECTIONS = (Section.KEYS, Section.DETAILS, Section.OVERVIEW)


class SectionState(enum.Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


@dataclass
class ItemState:
    """Lock state of each section of an item."""

    keys: SectionState = SectionState.LOCKED
    details: SectionState = SectionState.LOCKED
    overview: SectionState = SectionState.LOCKED

    def is_unlocked(self, section: Section) -> bool:
        return getattr(self, section.value) is SectionState.UNLOCKED

    def set(self, section: Section, state: SectionState) -> None:
        setattr(self, section.value, state)


@dataclass
class EncryptedSections:
    """The opdata containers of an item, as raw bytes."""

    keys: Optional[bytes] = None
    details: Optional[bytes] = None
    overview: Optional[bytes] = None


def _dumps(data: dict) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


class Item:
    """A single keychain record, e.g. a login."""

    def __init__(
        self,
        keychain: "Keychain",
        *,
        uuid: str,
        created: int,
        updated: int,
        category: str = LOGIN_CATEGORY,
        fave: Optional[int] = None,
        folder: Optional[str] = None,
        tx: Optional[int] = None,
        trashed: Optional[bool] = None,
        hmac: Optional[bytes] = None,
    ) -> None:
        self.keychain = keychain
        self.uuid = uuid
        self.created = created
        self.updated = updated
        self.category = category
        self.fave = fave
        self.folder = folder
        self.tx = tx
        self.trashed = trashed
        # Legacy item-level HMAC; carried through, never verified.
        self.hmac = hmac

        self.encrypted = EncryptedSections()
        self.state = ItemState()

        self.keys: Optional[KeyPair] = None
        self.details: Optional[dict[str, Any]] = None
        self.overview: Optional[dict[str, Any]] = None

    def __repr__(self) -> str:
        return f"Item(uuid={self.uuid!r}, category={self.category!r})"

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, keychain: "Keychain", data: Union[ItemData, dict]) -> "Item":
        """Build a new login item and encrypt every section right away."""
        if not isinstance(data, ItemData):
            data = ItemData.model_validate(data)

        timestamp = now()
        item = cls(
            keychain,
            uuid=crypto.generate_uuid(),
            created=timestamp,
            updated=timestamp,
            category=LOGIN_CATEGORY,
        )

        item.overview = {
            "title": data.title,
            "ainfo": data.username,
            "url": data.url,
            "URLS": [{"l": "website", "u": data.url}],
        }
        item.details = {
            "fields": [
                {
                    "type": "T",
                    "name": "username",
                    "value": data.username,
                    "designation": "username",
                },
                {
                    "type": "P",
                    "name": "password",
                    "value": data.password,
                    "designation": "password",
                },
            ],
            "notesPlain": data.notes or "",
        }
        item.keys = KeyPair.generate()
        for section in _SECTIONS:
            item.state.set(section, SectionState.UNLOCKED)

        item.encrypt(Section.ALL)
        return item

    @classmethod
    def load(cls, keychain: "Keychain", record: Union[ItemRecord, dict]) -> "Item":
        """Build a locked item from a stored record."""
        if not isinstance(record, ItemRecord):
            record = ItemRecord.model_validate(record)

        item = cls(
            keychain,
            uuid=record.uuid,
            created=record.created,
            updated=record.updated,
            category=record.category,
            fave=record.fave,
            folder=record.folder,
            tx=record.tx,
            trashed=record.trashed,
            hmac=crypto.from_base64(record.hmac) if record.hmac is not None else None,
        )
        item.encrypted.keys = crypto.from_base64(record.k)
        item.encrypted.details = crypto.from_base64(record.d)
        item.encrypted.overview = crypto.from_base64(record.o)
        return item

    def to_record(self) -> ItemRecord:
        """Return the storable form of the item; plaintext is never included."""
        return ItemRecord(
            uuid=self.uuid,
            category=self.category,
            created=self.created,
            updated=self.updated,
            k=crypto.to_base64(self.encrypted.keys),
            d=crypto.to_base64(self.encrypted.details),
            o=crypto.to_base64(self.encrypted.overview),
            hmac=crypto.to_base64(self.hmac) if self.hmac is not None else None,
            fave=self.fave,
            folder=self.folder,
            tx=self.tx,
            trashed=self.trashed,
        )

    # ------------------------------------------------------------------
    # Lock / unlock
    # ------------------------------------------------------------------

    def unlock(self, section: Union[Section, str] = Section.ALL) -> bool:
        """Decrypt *section*; returns ``False`` if a container fails to open.

        Raises:
            VaultLockedError: if the keychain is locked.
            DependencyError: if ``details`` is requested and the item keys
                cannot be unlocked.
        """
        section = Section(section)

        if section is Section.ALL:
            return all(self.unlock(s) for s in _SECTIONS)

        if section is Section.KEYS:
            result = self.keychain.require_master().decrypt(Kind.ITEM_KEY, self.encrypted.keys)
            if isinstance(result, Failure):
                logger.warning("Could not unlock keys of item %s (%s)", self.uuid, result.name)
                return False
            self.keys = result

        elif section is Section.DETAILS:
            if not self.state.is_unlocked(Section.KEYS) and not self.unlock(Section.KEYS):
                raise DependencyError(f"Item {self.uuid} details need its keys, which could not be unlocked.")
            data = self._open(Opdata(self.keys), self.encrypted.details)
            if data is None:
                return False
            self.details = data

        else:
            data = self._open(self.keychain.require_overview(), self.encrypted.overview)
            if data is None:
                return False
            self.overview = data

        self.state.set(section, SectionState.UNLOCKED)
        return True

    def lock(self, section: Union[Section, str] = Section.ALL) -> "Item":
        """Discard the plaintext of *section*; encrypted data is kept."""
        section = Section(section)
        for target in _SECTIONS if section is Section.ALL else (section,):
            setattr(self, target.value, None)
            self.state.set(target, SectionState.LOCKED)
        return self

    def is_unlocked(self, section: Union[Section, str]) -> bool:
        section = Section(section)
        if section is Section.ALL:
            return all(self.state.is_unlocked(s) for s in _SECTIONS)
        return self.state.is_unlocked(section)

    # ------------------------------------------------------------------
    # Encrypt
    # ------------------------------------------------------------------

    def encrypt(self, section: Union[Section, str] = Section.ALL) -> "Item":
        """Re-seal the plaintext of *section*.

        A locked section has no plaintext and its stored container is left
        as it is.

        Raises:
            VaultLockedError: if the keychain is locked.
            DependencyError: if ``details`` is unlocked but the item keys are
                locked and cannot be unlocked.
        """
        section = Section(section)

        if section is Section.ALL:
            for target in _SECTIONS:
                self.encrypt(target)
            return self

        if not self.state.is_unlocked(section):
            logger.debug("Item %s: %s is locked, nothing to encrypt", self.uuid, section.value)
            return self

        if section is Section.KEYS:
            self.encrypted.keys = self.keychain.require_master().encrypt(Kind.ITEM_KEY, self.keys.to_bytes())

        elif section is Section.DETAILS:
            if not self.state.is_unlocked(Section.KEYS) and not self.unlock(Section.KEYS):
                raise DependencyError(f"Item {self.uuid} details need its keys, which could not be unlocked.")
            self.encrypted.details = Opdata(self.keys).encrypt(Kind.ITEM, _dumps(self.details))

        else:
            self.encrypted.overview = self.keychain.require_overview().encrypt(Kind.ITEM, _dumps(self.overview))

        return self

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Update *updated* to now."""
        self.updated = now()

    @property
    def category_name(self) -> Optional[str]:
        return CATEGORIES.get(self.category)

    @property
    def title(self) -> Optional[str]:
        if self.overview is None:
            return None
        return self.overview.get("title")

    def match(self, query: str) -> bool:
        """Case-insensitive match of *query* against the overview title."""
        title = self.title
        if not title:
            return False
        return query.casefold() in title.casefold()

    def field(self, designation: str) -> Optional[str]:
        """Return the value of the details field with *designation*."""
        if self.details is None:
            return None
        for entry in self.details.get("fields", []):
            if entry.get("designation") == designation or entry.get("name") == designation:
                return entry.get("value")
        return None

    def _open(self, codec: Opdata, container: Optional[bytes]) -> Optional[dict]:
        result = codec.decrypt(Kind.ITEM, container)
        if isinstance(result, Failure):
            logger.warning("Could not unlock item %s (%s)", self.uuid, result.name)
            return None
        try:
            return json.loads(result)
        except json.JSONDecodeError:
            logger.warning("Item %s holds a section that is not JSON", self.uuid)
            return None
