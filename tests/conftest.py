"""Pytest fixtures for study summarizer tests."""

import os
from datetime import datetime
from typing import Any
from uuid import uuid4

import pytest

from study_summarizer.keys.models import Credential


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables before any imports.

    Ensures the credential cipher finds a master secret and that settings are
    loaded fresh.
    """
    os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-for-unit-tests")

    from study_summarizer.config import get_settings

    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Clear settings and cipher caches before each test."""
    from study_summarizer.config import get_settings
    from study_summarizer.security.cipher import get_cipher

    get_settings.cache_clear()
    get_cipher.cache_clear()
    yield
    get_settings.cache_clear()
    get_cipher.cache_clear()


class InMemoryCredentialStore:
    """Dict-backed stand-in for CredentialStorage with the same ordering rules."""

    def __init__(self) -> None:
        self.rows: dict[str, Credential] = {}
        self.calls: list[str] = []

    async def find_usable(self, now: datetime) -> Credential | None:
        self.calls.append("find_usable")
        usable = [c for c in self.rows.values() if c.is_usable(now)]
        if not usable:
            return None
        # NULLS FIRST, then oldest; dict order breaks ties
        usable.sort(key=lambda c: (c.last_used is not None, c.last_used or now))
        return usable[0]

    async def get(self, credential_id: str) -> Credential | None:
        return self.rows.get(credential_id)

    async def create(self, key_encrypted: str, provider: str = "openrouter") -> Credential:
        credential = Credential(id=str(uuid4()), key_encrypted=key_encrypted, provider=provider)
        self.rows[credential.id] = credential
        return credential

    async def update(self, credential_id: str, **fields: Any) -> bool:
        self.calls.append("update")
        credential = self.rows.get(credential_id)
        if credential is None:
            return False
        for name, value in fields.items():
            setattr(credential, name, value)
        return True

    async def delete(self, credential_id: str) -> bool:
        return self.rows.pop(credential_id, None) is not None

    async def list_all(self) -> list[Credential]:
        return sorted(
            self.rows.values(),
            key=lambda c: (c.last_used is None, -(c.last_used.timestamp() if c.last_used else 0)),
        )


@pytest.fixture
def store() -> InMemoryCredentialStore:
    """Empty in-memory credential store."""
    return InMemoryCredentialStore()


@pytest.fixture
def cipher():
    """Cipher with a fixed master secret."""
    from study_summarizer.security.cipher import CredentialCipher

    return CredentialCipher("unit-test-master-secret")


@pytest.fixture
def key_pool(store, cipher):
    """KeyPool over the in-memory store."""
    from study_summarizer.keys.pool import KeyPool

    return KeyPool(store, cipher)
