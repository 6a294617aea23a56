"""Tests for cloudkeychain.keychain."""

import pytest

from cloudkeychain import crypto
from cloudkeychain.exceptions import VaultLockedError
from cloudkeychain.keychain import (
    DEFAULT_ITERATIONS,
    Keychain,
    SALT_SIZE,
    derive_super_key,
)
from cloudkeychain.opdata import Kind, Opdata

FAST_ITERATIONS = 100
PASSWORD = "correcthorsebatterystaple"


def _reloaded(keychain: Keychain) -> Keychain:
    return Keychain.from_record(keychain.to_record())


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


def test_create_defaults():
    keychain = Keychain.create("pw", iterations=FAST_ITERATIONS)
    assert len(keychain.salt) == SALT_SIZE
    assert len(keychain.uuid) == 32
    assert keychain.profile_name == "default"
    assert keychain.unlocked
    assert keychain.master is not None
    assert keychain.overview is not None


def test_default_iterations_at_least_ten_thousand():
    assert DEFAULT_ITERATIONS >= 10_000


def test_create_wraps_seeds_as_profile_keys(keychain):
    super_key = Opdata(derive_super_key(PASSWORD, keychain.salt, keychain.iterations))
    assert len(super_key.decrypt(Kind.BUFFER, keychain.encrypted_master_key)) == 256
    assert len(super_key.decrypt(Kind.BUFFER, keychain.encrypted_overview_key)) == 64
    assert super_key.decrypt(Kind.PROFILE_KEY, keychain.encrypted_master_key) == keychain.master.keys
    assert super_key.decrypt(Kind.PROFILE_KEY, keychain.encrypted_overview_key) == keychain.overview.keys


def test_super_key_splits_pbkdf2_output():
    salt = crypto.random_bytes(16)
    pair = derive_super_key("pw", salt, 10)
    assert len(pair.encryption_key) == 32
    assert len(pair.hmac_key) == 32
    assert pair != derive_super_key("pw2", salt, 10)


# ---------------------------------------------------------------------------
# Unlock / lock
# ---------------------------------------------------------------------------


def test_unlock_with_correct_password(keychain):
    expected_master = keychain.master.keys
    reloaded = _reloaded(keychain)
    assert not reloaded.unlocked

    assert reloaded.unlock(PASSWORD)
    assert reloaded.unlocked
    assert reloaded.master.keys == expected_master
    assert reloaded.overview is not None


def test_unlock_with_wrong_password(keychain):
    reloaded = _reloaded(keychain)
    assert not reloaded.unlock("wrong")
    assert not reloaded.unlocked
    assert reloaded.master is None
    assert reloaded.overview is None


def test_unlock_when_already_unlocked(keychain):
    assert keychain.unlock("anything")


def test_lock_discards_keys(keychain):
    keychain.lock()
    assert not keychain.unlocked
    assert keychain.master is None
    assert keychain.overview is None


def test_lock_is_idempotent(keychain):
    keychain.lock()
    keychain.lock()
    assert not keychain.unlocked


def test_lock_cascades_to_items(keychain, login):
    assert login.details is not None
    keychain.lock()
    assert login.keys is None
    assert login.details is None
    assert login.overview is None


def test_locked_keychain_refuses_key_access(keychain):
    keychain.lock()
    with pytest.raises(VaultLockedError):
        keychain.require_master()
    with pytest.raises(VaultLockedError):
        keychain.create_item({"title": "x"})


def test_unlock_opens_item_overviews(keychain, login):
    reloaded = _reloaded(keychain)
    reloaded.add_item(login.to_record())
    assert reloaded.get_item(login.uuid).overview is None

    reloaded.unlock(PASSWORD)
    item = reloaded.get_item(login.uuid)
    assert item.overview["title"] == "GitHub"
    assert item.details is None


def test_callbacks_fire_on_transitions(keychain):
    events = []
    reloaded = Keychain.from_record(
        keychain.to_record(),
        on_unlock=lambda kc: events.append(("unlock", kc.uuid)),
        on_lock=lambda kc: events.append(("lock", kc.uuid)),
    )
    reloaded.unlock("wrong")
    reloaded.unlock(PASSWORD)
    reloaded.lock()
    reloaded.lock()
    assert events == [("unlock", keychain.uuid), ("lock", keychain.uuid)]


# ---------------------------------------------------------------------------
# Change password
# ---------------------------------------------------------------------------


def test_change_password(keychain):
    assert keychain.change_password(PASSWORD, "new password")

    assert _reloaded(keychain).unlock("new password")
    assert not _reloaded(keychain).unlock(PASSWORD)


def test_change_password_keeps_master_key(keychain):
    expected = keychain.master.keys
    keychain.change_password(PASSWORD, "new password")
    reloaded = _reloaded(keychain)
    reloaded.unlock("new password")
    assert reloaded.master.keys == expected


def test_change_password_with_wrong_password_leaves_blobs(keychain):
    master, overview = keychain.encrypted_master_key, keychain.encrypted_overview_key
    assert not keychain.change_password("wrong", "new password")
    assert keychain.encrypted_master_key == master
    assert keychain.encrypted_overview_key == overview
    assert _reloaded(keychain).unlock(PASSWORD)


# ---------------------------------------------------------------------------
# Records, items & search
# ---------------------------------------------------------------------------


def test_profile_record_roundtrip(keychain):
    record = keychain.to_record()
    reloaded = Keychain.from_record(record.model_dump(by_alias=True))
    assert reloaded.uuid == keychain.uuid
    assert reloaded.salt == keychain.salt
    assert reloaded.iterations == FAST_ITERATIONS
    assert reloaded.encrypted_master_key == keychain.encrypted_master_key


def test_create_item_adds_to_keychain(keychain, login):
    assert keychain.get_item(login.uuid) is login


def test_find_items(keychain, login):
    keychain.create_item({"title": "GitLab"})
    keychain.create_item({"title": "Bank"})
    assert {i.title for i in keychain.find_items("git")} == {"GitHub", "GitLab"}
    assert keychain.find_items("nothing") == []


def test_find_items_skips_trashed(keychain, login):
    login.trashed = True
    assert keychain.find_items("github") == []


def test_shared_keychains_are_searched(keychain):
    other = Keychain.create("other", iterations=FAST_ITERATIONS)
    other.create_item({"title": "Shared Router"})

    shared_id = keychain.shared.load(other)
    assert keychain.shared.get(shared_id) is other
    assert keychain.shared.list() == [{"id": shared_id, "uuid": other.uuid, "profile": "default"}]
    assert [i.title for i in keychain.find_items("router")] == ["Shared Router"]
    assert keychain.find_items("router", include_shared=False) == []

    keychain.shared.unload(shared_id)
    assert len(keychain.shared) == 0
    assert keychain.find_items("router") == []
