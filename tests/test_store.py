"""Tests for cloudkeychain.store."""

import json

import pytest

from cloudkeychain.exceptions import BadKeychainError
from cloudkeychain.store import (
    BAND_PREFIX,
    BAND_SUFFIX,
    PROFILE_PREFIX,
    PROFILE_SUFFIX,
    KeychainStore,
    export_bands,
    export_profile,
    parse_band,
    parse_profile,
)

FAST_ITERATIONS = 100


def _store(tmp_path, name="test.cloudkeychain") -> KeychainStore:
    return KeychainStore(tmp_path / name)


# ---------------------------------------------------------------------------
# Init / exists
# ---------------------------------------------------------------------------


def test_new_store_does_not_exist(tmp_path):
    assert not _store(tmp_path).exists()


def test_init_creates_profile(tmp_path):
    store = _store(tmp_path)
    store.init("password", iterations=FAST_ITERATIONS)
    assert store.exists()
    assert (store.profile_dir / "profile.js").read_text().startswith(PROFILE_PREFIX)


def test_init_sets_restricted_permissions(tmp_path):
    store = _store(tmp_path)
    store.init("password", iterations=FAST_ITERATIONS)
    mode = (store.profile_dir / "profile.js").stat().st_mode & 0o777
    assert mode == 0o600


# ---------------------------------------------------------------------------
# Round-trip load/save
# ---------------------------------------------------------------------------


def test_load_empty_keychain(tmp_path):
    store = _store(tmp_path)
    created = store.init("pw", iterations=FAST_ITERATIONS)
    keychain = store.load()
    assert keychain.uuid == created.uuid
    assert not keychain.unlocked
    assert keychain.items == {}
    assert keychain.unlock("pw")


def test_wrong_password_fails(tmp_path):
    store = _store(tmp_path)
    store.init("correct", iterations=FAST_ITERATIONS)
    assert not store.load().unlock("wrong")


def test_add_and_reload_item(tmp_path):
    store = _store(tmp_path)
    keychain = store.init("pw", iterations=FAST_ITERATIONS)
    item = keychain.create_item(
        {"title": "GitHub", "username": "alice", "password": "s3cret", "url": "https://github.com"}
    )
    store.save(keychain)

    band = store.profile_dir / f"band_{item.uuid[0]}.js"
    assert band.exists()
    assert "s3cret" not in band.read_text()

    reloaded = store.load()
    assert reloaded.unlock("pw")
    loaded = reloaded.get_item(item.uuid)
    assert loaded.title == "GitHub"
    assert loaded.unlock("details")
    assert loaded.field("username") == "alice"
    assert loaded.field("password") == "s3cret"


def test_many_items_persist(tmp_path):
    store = _store(tmp_path)
    keychain = store.init("pw", iterations=FAST_ITERATIONS)
    for i in range(20):
        keychain.create_item({"title": f"item-{i}", "password": f"pass-{i}"})
    store.save(keychain)

    reloaded = store.load()
    assert len(reloaded.items) == 20


def test_changed_password_persists(tmp_path):
    store = _store(tmp_path)
    keychain = store.init("old", iterations=FAST_ITERATIONS)
    keychain.change_password("old", "new")
    store.save(keychain)

    assert store.load().unlock("new")
    assert not store.load().unlock("old")


def test_other_profile(tmp_path):
    store = KeychainStore(tmp_path / "k.cloudkeychain", profile="work")
    store.init("pw", iterations=FAST_ITERATIONS)
    assert (tmp_path / "k.cloudkeychain" / "work" / "profile.js").exists()
    assert store.load().profile_name == "work"


# ---------------------------------------------------------------------------
# File formats
# ---------------------------------------------------------------------------


def test_export_profile_wrapping(keychain):
    text = export_profile(keychain)
    assert text.startswith("var profile={")
    assert text.endswith("};")
    data = json.loads(text[len(PROFILE_PREFIX) : -len(PROFILE_SUFFIX)])
    assert data["uuid"] == keychain.uuid
    assert data["iterations"] == keychain.iterations
    assert set(data) == {
        "uuid", "salt", "createdAt", "updatedAt", "iterations", "profileName",
        "passwordHint", "lastUpdatedBy", "masterKey", "overviewKey",
    }
    assert parse_profile(text) == keychain.to_record()


def test_export_bands_groups_by_first_uuid_char(keychain):
    items = [keychain.create_item({"title": str(i)}) for i in range(10)]
    bands = export_bands(keychain)

    expected = {f"band_{item.uuid[0]}.js" for item in items}
    assert set(bands) == expected
    for filename, text in bands.items():
        assert text.startswith(BAND_PREFIX)
        assert text.endswith(BAND_SUFFIX)
        for record in parse_band(text):
            assert record.uuid[0] == filename[5]


# ---------------------------------------------------------------------------
# Bad keychain detection
# ---------------------------------------------------------------------------


def test_missing_profile_raises(tmp_path):
    with pytest.raises(BadKeychainError):
        _store(tmp_path).load()


def test_bad_profile_wrapper_raises():
    with pytest.raises(BadKeychainError):
        parse_profile('{"uuid": "x"}')


def test_corrupt_profile_json_raises():
    with pytest.raises(BadKeychainError):
        parse_profile("var profile={not json};")


def test_incomplete_profile_raises():
    with pytest.raises(BadKeychainError):
        parse_profile('var profile={"uuid": "x"};')


def test_invalid_band_raises():
    with pytest.raises(BadKeychainError):
        parse_band('ld({"A": {"uuid": "A"}});')


def test_unrelated_files_are_ignored(tmp_path):
    store = _store(tmp_path)
    store.init("pw", iterations=FAST_ITERATIONS)
    (store.profile_dir / "folders.js").write_text("loadFolders({});")
    (store.profile_dir / "band_x.js").write_text("garbage")
    assert store.load().items == {}


def _corrupt_band(store: KeychainStore, item_uuid: str, **fields) -> None:
    band = store.profile_dir / f"band_{item_uuid[0]}.js"
    text = band.read_text()
    data = json.loads(text[len(BAND_PREFIX) : -len(BAND_SUFFIX)])
    data[item_uuid].update(fields)
    band.write_text(BAND_PREFIX + json.dumps(data) + BAND_SUFFIX)


@pytest.mark.parametrize("field", ["k", "d", "o", "hmac"])
def test_invalid_base64_in_band_raises(tmp_path, field):
    store = _store(tmp_path)
    keychain = store.init("pw", iterations=FAST_ITERATIONS)
    item = keychain.create_item({"title": "GitHub"})
    store.save(keychain)

    _corrupt_band(store, item.uuid, **{field: "abc"})
    with pytest.raises(BadKeychainError):
        store.load()


@pytest.mark.parametrize("field", ["salt", "masterKey", "overviewKey"])
def test_invalid_base64_in_profile_raises(tmp_path, field):
    store = _store(tmp_path)
    store.init("pw", iterations=FAST_ITERATIONS)
    profile = store.profile_dir / "profile.js"
    data = json.loads(profile.read_text()[len(PROFILE_PREFIX) : -len(PROFILE_SUFFIX)])
    data[field] = "not base64!"
    profile.write_text(PROFILE_PREFIX + json.dumps(data) + PROFILE_SUFFIX)

    with pytest.raises(BadKeychainError):
        store.load()


# ---------------------------------------------------------------------------
# open_keychain
# ---------------------------------------------------------------------------


def test_open_keychain(tmp_path):
    from cloudkeychain import open_keychain

    store = _store(tmp_path)
    keychain = store.init("pw", iterations=FAST_ITERATIONS)
    keychain.create_item({"title": "GitHub"})
    store.save(keychain)

    opened = open_keychain(store.path, "pw")
    assert opened.unlocked
    assert [i.title for i in opened.find_items("git")] == ["GitHub"]


def test_open_keychain_wrong_password(tmp_path):
    from cloudkeychain import IntegrityError, open_keychain

    store = _store(tmp_path)
    store.init("pw", iterations=FAST_ITERATIONS)
    with pytest.raises(IntegrityError):
        open_keychain(store.path, "nope")
