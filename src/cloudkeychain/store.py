"""Reading and writing ``.cloudKeychain`` directories.

Directory layout
----------------
<keychain>/<profile>/profile.js     var profile={...};
<keychain>/<profile>/band_X.js      ld({"<uuid>": {...}, ...});

Items are grouped into band files by the first character of their uuid.
Folders and attachments are left alone.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .exceptions import BadKeychainError
from .keychain import DEFAULT_PROFILE, Callback, Keychain
from .models import ItemRecord, ProfileRecord

logger = logging.getLogger(__name__)

PROFILE_PREFIX = "var profile="
PROFILE_SUFFIX = ";"
BAND_PREFIX = "ld("
BAND_SUFFIX = ");"

PROFILE_FILE = "profile.js"
_BAND_FILE = re.compile(r"^band_[0-9A-F]\.js$")


class KeychainStore:
    """Manages reading and writing one profile of a keychain directory."""

    def __init__(self, path: Path, profile: str = DEFAULT_PROFILE) -> None:
        self.path = Path(path)
        self.profile = profile

    @property
    def profile_dir(self) -> Path:
        return self.path / self.profile

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def exists(self) -> bool:
        return (self.profile_dir / PROFILE_FILE).exists()

    def init(self, password: str, **options) -> Keychain:
        """Create a new, empty keychain protected by *password* and save it."""
        keychain = Keychain.create(password, profile_name=self.profile, **options)
        self.save(keychain)
        return keychain

    def load(
        self,
        on_unlock: Optional[Callback] = None,
        on_lock: Optional[Callback] = None,
    ) -> Keychain:
        """Read the profile and every band file; the keychain comes back locked."""
        profile_file = self.profile_dir / PROFILE_FILE
        if not profile_file.exists():
            raise BadKeychainError(f"Couldn't find {PROFILE_FILE} in {self.profile_dir}.")

        record = parse_profile(profile_file.read_text(encoding="utf-8"))
        keychain = Keychain.from_record(record, on_unlock=on_unlock, on_lock=on_lock)

        for band_file in sorted(self.profile_dir.iterdir()):
            if _BAND_FILE.match(band_file.name):
                for item_record in parse_band(band_file.read_text(encoding="utf-8")):
                    keychain.add_item(item_record)

        logger.debug("Loaded keychain %s with %d items", keychain.uuid, len(keychain.items))
        return keychain

    def save(self, keychain: Keychain) -> None:
        """Write the profile and all band files."""
        self.profile_dir.mkdir(parents=True, exist_ok=True)
        _write(self.profile_dir / PROFILE_FILE, export_profile(keychain))
        for filename, contents in export_bands(keychain).items():
            _write(self.profile_dir / filename, contents)


# ---------------------------------------------------------------------------
# Text wrapping
# ---------------------------------------------------------------------------


def _unwrap(text: str, prefix: str, suffix: str, what: str) -> dict:
    text = text.strip()
    if not (text.startswith(prefix) and text.endswith(suffix)):
        raise BadKeychainError(f"Not a valid {what} file.")
    try:
        data = json.loads(text[len(prefix) : len(text) - len(suffix)])
    except json.JSONDecodeError as exc:
        raise BadKeychainError(f"Corrupt {what} file.") from exc
    if not isinstance(data, dict):
        raise BadKeychainError(f"Corrupt {what} file.")
    return data


def parse_profile(text: str) -> ProfileRecord:
    data = _unwrap(text, PROFILE_PREFIX, PROFILE_SUFFIX, "profile")
    try:
        return ProfileRecord.model_validate(data)
    except ValidationError as exc:
        raise BadKeychainError("Profile is missing required fields.") from exc


def parse_band(text: str) -> list[ItemRecord]:
    data = _unwrap(text, BAND_PREFIX, BAND_SUFFIX, "band")
    try:
        return [ItemRecord.model_validate(entry) for entry in data.values()]
    except ValidationError as exc:
        raise BadKeychainError("Band file holds an invalid item.") from exc


def export_profile(keychain: Keychain) -> str:
    data = keychain.to_record().model_dump(by_alias=True)
    return PROFILE_PREFIX + json.dumps(data) + PROFILE_SUFFIX


def export_bands(keychain: Keychain) -> dict[str, str]:
    """Return ``{filename: contents}`` for every band that holds items."""
    bands: dict[str, dict] = {}
    for uuid, item in keychain.items.items():
        band = bands.setdefault(uuid[:1].upper(), {})
        band[uuid] = item.to_record().model_dump(exclude_none=True)

    return {
        f"band_{band_id}.js": BAND_PREFIX + json.dumps(items, indent=2) + BAND_SUFFIX
        for band_id, items in sorted(bands.items())
    }


def _write(path: Path, contents: str) -> None:
    # Atomic write via temp file
    tmp = path.with_suffix(".tmp")
    tmp.write_text(contents, encoding="utf-8")
    tmp.replace(path)

    # Restrict permissions: owner read/write only
    os.chmod(path, 0o600)
