"""Key store models: the persisted credential record and its outward views."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

DEFAULT_PROVIDER = "openrouter"


@dataclass
class Credential:
    """A provider API key record as held in the key store.

    Attributes:
        id: Opaque unique identifier, assigned at creation.
        key_encrypted: Cipher blob of the plaintext secret.
        provider: Service the key authenticates to.
        is_active: Operator-controlled soft-delete flag.
        last_used: When the key was last handed out (None if never).
        fail_count: Consecutive failures since the last success.
        disabled_until: Key is skipped by selection until this moment.
        created_at: Creation timestamp.
    """

    id: str
    key_encrypted: str
    provider: str = DEFAULT_PROVIDER
    is_active: bool = True
    last_used: datetime | None = None
    fail_count: int = 0
    disabled_until: datetime | None = None
    created_at: datetime | None = None

    def is_usable(self, now: datetime) -> bool:
        """Active and outside any disable window."""
        return self.is_active and (self.disabled_until is None or self.disabled_until < now)


@dataclass(frozen=True)
class SelectedCredential:
    """A credential handed out for one provider call."""

    id: str
    key: str

    def __repr__(self) -> str:
        return f"SelectedCredential(id={self.id!r}, key='***')"


@dataclass(frozen=True)
class MaskedCredential:
    """Admin listing entry. Only the last characters of the key are exposed."""

    id: str
    last_chars: str
    provider: str
    is_active: bool
    last_used: datetime | None
    fail_count: int
    disabled_until: datetime | None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "id": self.id,
            "last_chars": self.last_chars,
            "provider": self.provider,
            "is_active": self.is_active,
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "fail_count": self.fail_count,
            "disabled_until": self.disabled_until.isoformat() if self.disabled_until else None,
        }
