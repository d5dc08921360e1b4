"""Credential selection and health tracking for the provider key pool.

Selection is round-robin by recency: the usable credential with the oldest
``last_used`` (never-used first) is handed out and its ``last_used`` is bumped
in the same step. Failures push a credential into a disable window:

* more than ``MAX_FAIL_COUNT`` consecutive failures: 1 hour
* a rate-limit failure below that threshold: 5 minutes

A success clears both the counter and the window.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from study_summarizer.keys.models import DEFAULT_PROVIDER, MaskedCredential, SelectedCredential
from study_summarizer.keys.storage import CredentialStore
from study_summarizer.logging import get_logger
from study_summarizer.security.cipher import CredentialCipher, DecryptionError, get_cipher

log = get_logger("study_summarizer.keys.pool")

MAX_FAIL_COUNT = 3
LONG_DISABLE = timedelta(hours=1)
RATE_LIMIT_DISABLE = timedelta(minutes=5)
MASKED_SUFFIX_LENGTH = 4
MASK_PLACEHOLDER = "****"


class NoKeyAvailable(Exception):
    """Raised when no usable credential exists."""

    code = "NO_API_KEY"

    def __init__(self, message: str = "No API key available. Contact the administrator.") -> None:
        super().__init__(message)


class CredentialNotFound(LookupError):
    """Raised by admin operations on an unknown credential id."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _short(credential_id: str) -> str:
    return credential_id[-6:]


class KeyPool:
    """Hands out provider credentials and records how they perform.

    No state is cached in-process: every selection re-reads the store, so
    updates made by other requests or processes are always visible.
    """

    def __init__(
        self,
        store: CredentialStore,
        cipher: CredentialCipher | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        default_provider: str = DEFAULT_PROVIDER,
    ) -> None:
        self._store = store
        self._cipher = cipher or get_cipher()
        self._clock = clock
        self._default_provider = default_provider

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def select_credential(self) -> SelectedCredential | None:
        """Claim the least recently used usable credential.

        Returns:
            The credential id and decrypted key, or ``None`` if nothing is usable.

        Raises:
            DecryptionError: If the claimed record cannot be decrypted. The
                error's ``credential_id`` names the record.
        """
        now = self._clock()
        credential = await self._store.find_usable(now)
        if credential is None:
            log.warning("no_usable_api_key")
            return None

        await self._store.update(credential.id, last_used=now)

        try:
            key = self._cipher.decrypt(credential.key_encrypted)
        except DecryptionError as e:
            log.error("api_key_decrypt_failed", key_id=_short(credential.id))
            raise DecryptionError(str(e), credential_id=credential.id) from e

        log.debug("api_key_selected", key_id=_short(credential.id))
        return SelectedCredential(id=credential.id, key=key)

    # ------------------------------------------------------------------
    # Health tracking
    # ------------------------------------------------------------------

    async def report_success(self, credential_id: str) -> None:
        """Reset failure state. Idempotent."""
        await self._store.update(credential_id, fail_count=0, disabled_until=None)
        log.debug("api_key_success", key_id=_short(credential_id))

    async def report_failure(self, credential_id: str, is_rate_limited: bool = False) -> None:
        """Record one observed failure.

        Call exactly once per failure: each call increments ``fail_count``.

        Args:
            credential_id: The credential that failed.
            is_rate_limited: Whether the provider answered 429.
        """
        credential = await self._store.get(credential_id)
        if credential is None:
            log.warning("api_key_failure_unknown", key_id=_short(credential_id))
            return

        now = self._clock()
        fail_count = credential.fail_count + 1
        disabled_until = credential.disabled_until
        if fail_count > MAX_FAIL_COUNT:
            disabled_until = now + LONG_DISABLE
        elif is_rate_limited:
            disabled_until = now + RATE_LIMIT_DISABLE

        await self._store.update(
            credential_id, fail_count=fail_count, disabled_until=disabled_until
        )
        log.info(
            "api_key_failure",
            key_id=_short(credential_id),
            fail_count=fail_count,
            rate_limited=is_rate_limited,
            disabled_until=disabled_until.isoformat() if disabled_until else None,
        )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def add_credential(self, plaintext: str, provider: str | None = None) -> str:
        """Encrypt and store a new active credential. Returns its id."""
        if not plaintext.strip():
            raise ValueError("API key must not be empty")
        encrypted = self._cipher.encrypt(plaintext)
        credential = await self._store.create(encrypted, provider or self._default_provider)
        return credential.id

    async def deactivate(self, credential_id: str) -> None:
        """Soft-delete. Failure state is kept."""
        if not await self._store.update(credential_id, is_active=False):
            raise CredentialNotFound(credential_id)
        log.info("api_key_deactivated", key_id=_short(credential_id))

    async def reactivate(self, credential_id: str) -> None:
        """Re-enable a credential and clear its failure state."""
        updated = await self._store.update(
            credential_id, is_active=True, fail_count=0, disabled_until=None
        )
        if not updated:
            raise CredentialNotFound(credential_id)
        log.info("api_key_reactivated", key_id=_short(credential_id))

    async def delete(self, credential_id: str) -> None:
        """Permanently remove a credential."""
        if not await self._store.delete(credential_id):
            raise CredentialNotFound(credential_id)

    async def list_credentials(self) -> list[MaskedCredential]:
        """List every credential with only the key's last characters exposed.

        A record that cannot be decrypted is listed with a placeholder mask
        instead of failing the listing.
        """
        masked: list[MaskedCredential] = []
        for credential in await self._store.list_all():
            try:
                last_chars = self._cipher.decrypt(credential.key_encrypted)[-MASKED_SUFFIX_LENGTH:]
            except DecryptionError:
                log.warning("api_key_listing_decrypt_failed", key_id=_short(credential.id))
                last_chars = MASK_PLACEHOLDER
            masked.append(
                MaskedCredential(
                    id=credential.id,
                    last_chars=last_chars,
                    provider=credential.provider,
                    is_active=credential.is_active,
                    last_used=credential.last_used,
                    fail_count=credential.fail_count,
                    disabled_until=credential.disabled_until,
                )
            )
        return masked
