"""PostgreSQL-backed key store for provider credentials.

The store only finds, creates, updates and deletes ``api_keys`` rows. Selection ordering and health policy live in
:class:`~study_summarizer.keys.pool.KeyPool`. Writes are plain single-row
``UPDATE`` statements with no row locking, so concurrent selectors may read
the same least-recently-used row before either one's ``last_used`` write lands.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

import asyncpg  # type: ignore[import-not-found,import-untyped]

from study_summarizer.keys.models import DEFAULT_PROVIDER, Credential
from study_summarizer.logging import get_logger

log = get_logger("study_summarizer.keys.storage")

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS api_keys (
    id               UUID         PRIMARY KEY DEFAULT gen_random_uuid(),
    key_encrypted    TEXT         NOT NULL,
    provider         TEXT         NOT NULL DEFAULT 'openrouter',
    is_active        BOOLEAN      NOT NULL DEFAULT TRUE,
    last_used        TIMESTAMPTZ,
    fail_count       INTEGER      NOT NULL DEFAULT 0 CHECK (fail_count >= 0),
    disabled_until   TIMESTAMPTZ,
    created_at       TIMESTAMPTZ  NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_api_keys_selection
    ON api_keys (is_active, last_used);
"""

_COLUMNS = "id, key_encrypted, provider, is_active, last_used, fail_count, disabled_until, created_at"

# Columns that update() is allowed to write.
_UPDATABLE = frozenset({"is_active", "last_used", "fail_count", "disabled_until"})


class CredentialStore(Protocol):
    """Persistence operations the key pool needs."""

    async def find_usable(self, now: datetime) -> Credential | None: ...

    async def get(self, credential_id: str) -> Credential | None: ...

    async def create(self, key_encrypted: str, provider: str) -> Credential: ...

    async def update(self, credential_id: str, **fields: Any) -> bool: ...

    async def delete(self, credential_id: str) -> bool: ...

    async def list_all(self) -> list[Credential]: ...


def _row_to_credential(row: asyncpg.Record) -> Credential:
    """Convert an ``asyncpg.Record`` to a :class:`Credential`."""
    return Credential(
        id=str(row["id"]),
        key_encrypted=row["key_encrypted"],
        provider=row["provider"],
        is_active=row["is_active"],
        last_used=row["last_used"],
        fail_count=row["fail_count"],
        disabled_until=row["disabled_until"],
        created_at=row["created_at"],
    )


def _parse_id(credential_id: str) -> UUID | None:
    try:
        return UUID(str(credential_id))
    except ValueError:
        return None


class CredentialStorage:
    """asyncpg implementation of :class:`CredentialStore`."""

    def __init__(self, pool: asyncpg.Pool) -> None:  # type: ignore[type-arg]
        """Initialise with an existing asyncpg connection pool.

        Args:
            pool: An ``asyncpg.Pool`` instance.
        """
        self._pool = pool

    @classmethod
    async def connect(cls, dsn: str) -> CredentialStorage:
        """Create a pool for *dsn* and make sure the schema exists."""
        try:
            pool = await asyncpg.create_pool(dsn=dsn)
            log.info("postgres_pool_created", dsn=dsn.split("@")[-1])
        except (asyncpg.PostgresError, OSError) as exc:
            log.error("postgres_pool_creation_failed", error=str(exc))
            raise
        storage = cls(pool)
        await storage.ensure_schema()
        return storage

    async def close(self) -> None:
        """Gracefully close the connection pool."""
        await self._pool.close()
        log.info("postgres_pool_closed")

    async def ensure_schema(self) -> None:
        """Create the ``api_keys`` table and its selection index."""
        async with self._pool.acquire() as conn:
            await conn.execute(_SCHEMA_SQL)
        log.debug("api_keys_schema_ensured")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_usable(self, now: datetime) -> Credential | None:
        """Return the least recently used usable credential, never-used first."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_COLUMNS}
                FROM api_keys
                WHERE is_active = TRUE
                  AND (disabled_until IS NULL OR disabled_until < $1)
                ORDER BY last_used ASC NULLS FIRST
                LIMIT 1
                """,
                now,
            )
        return _row_to_credential(row) if row is not None else None

    async def get(self, credential_id: str) -> Credential | None:
        uid = _parse_id(credential_id)
        if uid is None:
            return None
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(f"SELECT {_COLUMNS} FROM api_keys WHERE id = $1", uid)
        return _row_to_credential(row) if row is not None else None

    async def list_all(self) -> list[Credential]:
        """All credentials, most recently used first."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM api_keys ORDER BY last_used DESC NULLS LAST"
            )
        return [_row_to_credential(row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, key_encrypted: str, provider: str = DEFAULT_PROVIDER) -> Credential:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO api_keys (key_encrypted, provider, is_active, fail_count)
                VALUES ($1, $2, TRUE, 0)
                RETURNING {_COLUMNS}
                """,
                key_encrypted,
                provider,
            )
        credential = _row_to_credential(row)
        log.info("api_key_created", key_id=credential.id[-6:], provider=provider)
        return credential

    async def update(self, credential_id: str, **fields: Any) -> bool:
        """Write *fields* to one row.

        Returns:
            ``True`` if a row was updated.

        Raises:
            ValueError: If a field is not an updatable column.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
        if not fields:
            return False
        uid = _parse_id(credential_id)
        if uid is None:
            return False

        names = list(fields)
        assignments = ", ".join(f"{name} = ${i}" for i, name in enumerate(names, start=2))
        async with self._pool.acquire() as conn:
            result: str = await conn.execute(
                f"UPDATE api_keys SET {assignments} WHERE id = $1",
                uid,
                *(fields[name] for name in names),
            )
        return result == "UPDATE 1"

    async def delete(self, credential_id: str) -> bool:
        """Hard-delete a credential. Returns ``True`` if a row was removed."""
        uid = _parse_id(credential_id)
        if uid is None:
            return False
        async with self._pool.acquire() as conn:
            result: str = await conn.execute("DELETE FROM api_keys WHERE id = $1", uid)
        deleted = result == "DELETE 1"
        log.info("api_key_deleted", key_id=str(uid)[-6:], existed=deleted)
        return deleted
