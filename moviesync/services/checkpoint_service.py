"""Durable sync checkpoint stored as a single JSON row in ``sync_metadata``."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from moviesync.models.sync import SyncMetadata
from moviesync.services.datetime_service import format_iso, now_utc, parse_datetime

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from sqlalchemy.sql.dml import Insert

logger = logging.getLogger(__name__)

SYNC_METADATA_KEY = "search_index_sync"

_MAX_PERSIST_ATTEMPTS = 5


@dataclass(frozen=True)
class SyncCheckpoint:
    """Decoded contents of the checkpoint row."""

    last_sync_time: datetime | None = None
    last_full_sync: datetime | None = None
    sync_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready mapping using the persisted (camelCase) field names."""
        return {
            "lastSyncTime": format_iso(self.last_sync_time) if self.last_sync_time else None,
            "lastFullSync": format_iso(self.last_full_sync) if self.last_full_sync else None,
            "syncCount": self.sync_count,
            "lastError": self.last_error,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> SyncCheckpoint:
        data = json.loads(raw)
        last_sync = data.get("lastSyncTime")
        last_full = data.get("lastFullSync")
        return cls(
            last_sync_time=parse_datetime(last_sync) if last_sync else None,
            last_full_sync=parse_datetime(last_full) if last_full else None,
            sync_count=int(data.get("syncCount") or 0),
            last_error=data.get("lastError"),
        )

    def advanced(
        self,
        sync_time: datetime,
        *,
        is_full_sync: bool,
        completed_at: datetime,
        last_error: str | None,
    ) -> SyncCheckpoint:
        """Return the checkpoint after one more completed sync.

        The watermark never moves backwards: a slow run that started before
        the stored watermark keeps the newer value.
        """
        if self.last_sync_time is not None and self.last_sync_time > sync_time:
            watermark = self.last_sync_time
        else:
            watermark = sync_time
        return SyncCheckpoint(
            last_sync_time=watermark,
            last_full_sync=completed_at if is_full_sync else self.last_full_sync,
            sync_count=self.sync_count + 1,
            last_error=last_error,
        )


def _insert_ignore(dialect_name: str, values: dict[str, Any]) -> tuple[Insert, bool]:
    """Build an insert that is a no-op when the key already exists.

    Returns ``(statement, native)``; ``native`` is False for dialects without
    ``ON CONFLICT`` support, where the caller must handle ``IntegrityError``.
    """
    if dialect_name == "sqlite":
        stmt = sqlite.insert(SyncMetadata).values(**values)
        return stmt.on_conflict_do_nothing(index_elements=[SyncMetadata.key]), True
    if dialect_name == "postgresql":
        pg_stmt = postgresql.insert(SyncMetadata).values(**values)
        return pg_stmt.on_conflict_do_nothing(index_elements=[SyncMetadata.key]), True
    return insert(SyncMetadata).values(**values), False


class CheckpointStore:
    """Reads and writes the checkpoint row with compare-and-swap semantics."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        key: str = SYNC_METADATA_KEY,
    ) -> None:
        self._session_factory = session_factory
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    async def load(self) -> SyncCheckpoint | None:
        """Return the stored checkpoint, or None when no sync has been persisted."""
        async with self._session_factory() as session:
            row = await session.scalar(
                select(SyncMetadata).where(SyncMetadata.key == self._key)
            )
            if row is None:
                return None
            return SyncCheckpoint.from_json(row.value)

    async def persist(
        self,
        sync_time: datetime,
        *,
        is_full_sync: bool,
        last_error: str | None = None,
    ) -> SyncCheckpoint:
        """Record one completed sync and return the checkpoint as stored.

        Inserts the row on first use, otherwise updates it only if its version
        is unchanged since it was read. Lost races are retried so concurrent
        writers never drop a ``syncCount`` increment.

        Raises:
            RuntimeError: If every attempt lost the race.
        """
        for attempt in range(1, _MAX_PERSIST_ATTEMPTS + 1):
            async with self._session_factory() as session:
                stored = await self._try_write(
                    session, sync_time, is_full_sync=is_full_sync, last_error=last_error
                )
            if stored is not None:
                return stored
            logger.debug("Checkpoint write conflict on attempt %d, retrying", attempt)

        msg = f"Checkpoint {self._key!r} still contended after {_MAX_PERSIST_ATTEMPTS} attempts"
        raise RuntimeError(msg)

    async def _try_write(
        self,
        session: AsyncSession,
        sync_time: datetime,
        *,
        is_full_sync: bool,
        last_error: str | None,
    ) -> SyncCheckpoint | None:
        completed_at = now_utc()
        result = await session.execute(
            select(SyncMetadata.value, SyncMetadata.version).where(
                SyncMetadata.key == self._key
            )
        )
        existing = result.one_or_none()

        if existing is None:
            checkpoint = SyncCheckpoint().advanced(
                sync_time,
                is_full_sync=is_full_sync,
                completed_at=completed_at,
                last_error=last_error,
            )
            stmt, native = _insert_ignore(
                session.get_bind().dialect.name,
                {
                    "key": self._key,
                    "value": checkpoint.to_json(),
                    "version": 1,
                    "updated_at": completed_at,
                },
            )
            try:
                inserted = await session.execute(stmt)
                await session.commit()
            except IntegrityError:
                if native:
                    raise
                await session.rollback()
                return None
            return checkpoint if inserted.rowcount == 1 else None

        raw_value, version = existing
        checkpoint = SyncCheckpoint.from_json(raw_value).advanced(
            sync_time,
            is_full_sync=is_full_sync,
            completed_at=completed_at,
            last_error=last_error,
        )
        updated = await session.execute(
            update(SyncMetadata)
            .where(SyncMetadata.key == self._key, SyncMetadata.version == version)
            .values(value=checkpoint.to_json(), version=version + 1, updated_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        return checkpoint if updated.rowcount == 1 else None
