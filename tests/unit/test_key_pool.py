"""Tests for credential selection, health tracking and administration."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from study_summarizer.keys.pool import (
    LONG_DISABLE,
    MASK_PLACEHOLDER,
    MAX_FAIL_COUNT,
    RATE_LIMIT_DISABLE,
    CredentialNotFound,
    KeyPool,
)
from study_summarizer.security.cipher import DecryptionError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock_pool(store, cipher):
    """KeyPool whose clock is pinned to NOW."""
    return KeyPool(store, cipher, clock=lambda: NOW)


async def _add(pool: KeyPool, store, key: str, **fields) -> str:
    credential_id = await pool.add_credential(key)
    if fields:
        await store.update(credential_id, **fields)
    return credential_id


class TestSelectCredential:
    """Tests for KeyPool.select_credential()."""

    @pytest.mark.asyncio
    async def test_empty_store_returns_none(self, clock_pool) -> None:
        assert await clock_pool.select_credential() is None

    @pytest.mark.asyncio
    async def test_returns_plaintext_and_bumps_last_used(self, clock_pool, store) -> None:
        credential_id = await _add(clock_pool, store, "sk-one")

        selected = await clock_pool.select_credential()

        assert selected is not None
        assert selected.id == credential_id
        assert selected.key == "sk-one"
        assert store.rows[credential_id].last_used == NOW
        assert "sk-one" not in repr(selected)

    @pytest.mark.asyncio
    async def test_never_used_before_used(self, clock_pool, store) -> None:
        await _add(clock_pool, store, "sk-used", last_used=NOW - timedelta(days=1))
        fresh = await _add(clock_pool, store, "sk-fresh")

        selected = await clock_pool.select_credential()
        assert selected is not None and selected.id == fresh

    @pytest.mark.asyncio
    async def test_least_recently_used_first(self, clock_pool, store) -> None:
        await _add(clock_pool, store, "sk-recent", last_used=NOW - timedelta(minutes=1))
        oldest = await _add(clock_pool, store, "sk-old", last_used=NOW - timedelta(hours=2))

        selected = await clock_pool.select_credential()
        assert selected is not None and selected.id == oldest

    @pytest.mark.asyncio
    async def test_round_robin(self, store, cipher) -> None:
        """Test consecutive selections rotate through the keys."""
        times = iter(NOW + timedelta(seconds=i) for i in range(10))
        pool = KeyPool(store, cipher, clock=lambda: next(times))
        ids = [await pool.add_credential(f"sk-{i}") for i in range(3)]

        picked = [(await pool.select_credential()).id for _ in range(6)]  # type: ignore[union-attr]
        assert picked == ids + ids

    @pytest.mark.asyncio
    async def test_skips_inactive_and_disabled(self, clock_pool, store) -> None:
        await _add(clock_pool, store, "sk-inactive", is_active=False)
        await _add(clock_pool, store, "sk-disabled", disabled_until=NOW + timedelta(minutes=1))
        usable = await _add(clock_pool, store, "sk-usable", last_used=NOW - timedelta(minutes=1))

        for _ in range(3):
            selected = await clock_pool.select_credential()
            assert selected is not None and selected.id == usable

    @pytest.mark.asyncio
    async def test_none_when_nothing_usable(self, clock_pool, store) -> None:
        await _add(clock_pool, store, "sk-inactive", is_active=False)
        await _add(clock_pool, store, "sk-disabled", disabled_until=NOW + timedelta(hours=1))

        assert await clock_pool.select_credential() is None

    @pytest.mark.asyncio
    async def test_expired_disable_window_is_usable(self, clock_pool, store) -> None:
        credential_id = await _add(
            clock_pool, store, "sk-back", disabled_until=NOW - timedelta(seconds=1)
        )
        selected = await clock_pool.select_credential()
        assert selected is not None and selected.id == credential_id

    @pytest.mark.asyncio
    async def test_decryption_error_names_credential(self, clock_pool, store) -> None:
        credential = await store.create("garbage-blob")

        with pytest.raises(DecryptionError) as exc_info:
            await clock_pool.select_credential()

        assert exc_info.value.credential_id == credential.id
        assert store.rows[credential.id].last_used == NOW


class TestHealthTracking:
    """Tests for report_failure() and report_success()."""

    @pytest.mark.asyncio
    async def test_threshold_disables_on_fourth_failure(self, clock_pool, store) -> None:
        credential_id = await _add(clock_pool, store, "sk-key")

        for expected in range(1, MAX_FAIL_COUNT + 1):
            await clock_pool.report_failure(credential_id)
            assert store.rows[credential_id].fail_count == expected
            assert store.rows[credential_id].disabled_until is None

        await clock_pool.report_failure(credential_id)
        assert store.rows[credential_id].fail_count == 4
        assert store.rows[credential_id].disabled_until == NOW + LONG_DISABLE

    @pytest.mark.asyncio
    async def test_rate_limit_disables_immediately(self, clock_pool, store) -> None:
        credential_id = await _add(clock_pool, store, "sk-key")

        await clock_pool.report_failure(credential_id, is_rate_limited=True)

        assert store.rows[credential_id].fail_count == 1
        assert store.rows[credential_id].disabled_until == NOW + RATE_LIMIT_DISABLE

    @pytest.mark.asyncio
    async def test_threshold_wins_over_rate_limit(self, clock_pool, store) -> None:
        credential_id = await _add(clock_pool, store, "sk-key", fail_count=MAX_FAIL_COUNT)

        await clock_pool.report_failure(credential_id, is_rate_limited=True)
        assert store.rows[credential_id].disabled_until == NOW + LONG_DISABLE

    @pytest.mark.asyncio
    async def test_plain_failure_keeps_existing_window(self, clock_pool, store) -> None:
        window = NOW + timedelta(minutes=3)
        credential_id = await _add(clock_pool, store, "sk-key", disabled_until=window)

        await clock_pool.report_failure(credential_id)
        assert store.rows[credential_id].disabled_until == window

    @pytest.mark.asyncio
    async def test_failure_on_unknown_id_is_ignored(self, clock_pool) -> None:
        await clock_pool.report_failure("missing")

    @pytest.mark.asyncio
    async def test_success_resets_health(self, clock_pool, store) -> None:
        credential_id = await _add(clock_pool, store, "sk-key")
        for _ in range(5):
            await clock_pool.report_failure(credential_id, is_rate_limited=True)

        await clock_pool.report_success(credential_id)
        await clock_pool.report_success(credential_id)

        assert store.rows[credential_id].fail_count == 0
        assert store.rows[credential_id].disabled_until is None


class TestAdministration:
    """Tests for add/deactivate/reactivate/delete/list."""

    @pytest.mark.asyncio
    async def test_add_credential_encrypts(self, key_pool, store, cipher) -> None:
        credential_id = await key_pool.add_credential("sk-plain")

        record = store.rows[credential_id]
        assert record.key_encrypted != "sk-plain"
        assert cipher.decrypt(record.key_encrypted) == "sk-plain"
        assert record.provider == "openrouter"
        assert record.is_active is True
        assert record.fail_count == 0

    @pytest.mark.asyncio
    async def test_add_credential_provider(self, key_pool, store) -> None:
        credential_id = await key_pool.add_credential("sk-plain", "other")
        assert store.rows[credential_id].provider == "other"

    @pytest.mark.asyncio
    async def test_add_empty_rejected(self, key_pool) -> None:
        with pytest.raises(ValueError):
            await key_pool.add_credential("   ")

    @pytest.mark.asyncio
    async def test_deactivate_keeps_failures(self, key_pool, store) -> None:
        credential_id = await _add(key_pool, store, "sk-key", fail_count=2)

        await key_pool.deactivate(credential_id)

        assert store.rows[credential_id].is_active is False
        assert store.rows[credential_id].fail_count == 2

    @pytest.mark.asyncio
    async def test_reactivate_clears_failures(self, key_pool, store) -> None:
        credential_id = await _add(
            key_pool,
            store,
            "sk-key",
            is_active=False,
            fail_count=7,
            disabled_until=NOW + timedelta(hours=1),
        )

        await key_pool.reactivate(credential_id)

        record = store.rows[credential_id]
        assert (record.is_active, record.fail_count, record.disabled_until) == (True, 0, None)

    @pytest.mark.asyncio
    async def test_delete(self, key_pool, store) -> None:
        credential_id = await key_pool.add_credential("sk-key")
        await key_pool.delete(credential_id)
        assert credential_id not in store.rows

    @pytest.mark.asyncio
    async def test_unknown_id_raises(self, key_pool) -> None:
        for operation in (key_pool.deactivate, key_pool.reactivate, key_pool.delete):
            with pytest.raises(CredentialNotFound):
                await operation("missing")

    def test_not_found_message_is_plain_id(self) -> None:
        error = CredentialNotFound("abc")
        assert str(error) == "abc"
        assert isinstance(error, LookupError)
        assert not isinstance(error, KeyError)

    @pytest.mark.asyncio
    async def test_list_masks_keys(self, key_pool, store) -> None:
        await key_pool.add_credential("sk-or-v1-secretABCD")
        broken = await store.create("corrupted")

        listing = {item.id: item for item in await key_pool.list_credentials()}

        masks = sorted(item.last_chars for item in listing.values())
        assert masks == [MASK_PLACEHOLDER, "ABCD"]
        assert listing[broken.id].last_chars == MASK_PLACEHOLDER
        for item in listing.values():
            assert "secret" not in str(item.to_dict())
