"""Record models for cloudkeychain.

These are the shapes persisted by the storage layer.  Encrypted blobs are
kept as base64 text exactly as they appear on disk; the keychain and item
classes decode them.
"""

from __future__ import annotations

import base64
import binascii
import time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

CATEGORIES = {
    # Base categories
    "001": "Login",
    "002": "Credit Card",
    "003": "Secure Note",
    "004": "Identity",
    "005": "Generated Password",
    # Other categories
    "100": "Software License",
    "101": "Bank Account",
    "102": "Database",
    "103": "Driver's License",
    "104": "Outdoor License",
    "105": "Membership",
    "106": "Passport",
    "107": "Reward Program",
    "108": "Social Security Number",
    "109": "Wireless Router",
    "110": "Server",
    "111": "Email Account",
}

LOGIN_CATEGORY = "001"


def now() -> int:
    """Current time as whole unix seconds."""
    return int(time.time())


def _check_base64(value: Optional[str]) -> Optional[str]:
    if value is not None:
        try:
            base64.b64decode(value, validate=True)
        except binascii.Error as exc:
            raise ValueError("not valid base64") from exc
    return value


class ProfileRecord(BaseModel):
    """The contents of ``profile.js``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    uuid: str
    salt: str
    created_at: int = Field(alias="createdAt")
    updated_at: int = Field(alias="updatedAt")
    iterations: int
    profile_name: str = Field(default="default", alias="profileName")
    password_hint: str = Field(default="", alias="passwordHint")
    last_updated_by: str = Field(default="Dropbox", alias="lastUpdatedBy")
    master_key: str = Field(alias="masterKey")
    overview_key: str = Field(alias="overviewKey")

    @field_validator("salt", "master_key", "overview_key")
    @classmethod
    def check_base64(cls, value: str) -> str:
        return _check_base64(value)


class ItemRecord(BaseModel):
    """One entry of a ``band_X.js`` file."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    uuid: str
    category: str = LOGIN_CATEGORY
    created: int
    updated: int
    k: str
    d: str
    o: str
    hmac: Optional[str] = None
    fave: Optional[int] = None
    folder: Optional[str] = None
    tx: Optional[int] = None
    trashed: Optional[bool] = None

    @field_validator("k", "d", "o", "hmac")
    @classmethod
    def check_base64(cls, value: Optional[str]) -> Optional[str]:
        return _check_base64(value)


class ItemData(BaseModel):
    """Input for a new login item."""

    title: str
    username: Optional[str] = None
    password: Optional[str] = None
    url: Optional[str] = None
    notes: Optional[str] = None
