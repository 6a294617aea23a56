"""pytest configuration — put src/ on sys.path and share keychain fixtures."""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent / "src"))

from cloudkeychain.keychain import Keychain  # noqa: E402

# Keeps PBKDF2 cheap; the default count is exercised in test_pbkdf2.
FAST_ITERATIONS = 100
PASSWORD = "correcthorsebatterystaple"


@pytest.fixture
def keychain() -> Keychain:
    return Keychain.create(PASSWORD, iterations=FAST_ITERATIONS)


@pytest.fixture
def login(keychain):
    return keychain.create_item(
        {
            "title": "GitHub",
            "username": "alice@example.com",
            "password": "s3cret",
            "url": "https://github.com",
            "notes": "work account",
        }
    )
