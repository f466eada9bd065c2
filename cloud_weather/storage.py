"""
Persistence for Cloud Weather

Every finished aggregate is written as a new immutable record keyed by
location + timestamp. Writes are store-and-forget: a failed write is
logged and swallowed and never affects the response.

Retention (matching the deployed tables):
- Provider-level records:  30 days
- Cross-cloud aggregates:   7 days
"""

import asyncio
import json
import logging
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Set

from cloud_weather.models import LocationAggregate, isoformat, utcnow

logger = logging.getLogger(__name__)

PROVIDER_RETENTION = timedelta(days=30)
AGGREGATE_RETENTION = timedelta(days=7)

DB_PATH = Path("outputs/cloud_weather.db")


@dataclass(frozen=True)
class StoredRecord:
    """One append-only record handed to a PersistenceSink."""
    key: str
    timestamp: datetime
    kind: str  # "provider" or "aggregated"
    provider: str
    payload: Dict[str, Any]
    retention: timedelta

    @property
    def expires_at(self) -> datetime:
        return self.timestamp + self.retention

    @classmethod
    def for_location(cls, aggregate: LocationAggregate) -> "StoredRecord":
        return cls(
            key=aggregate.location.id,
            timestamp=aggregate.timestamp,
            kind="provider",
            provider=aggregate.provider,
            payload=aggregate.to_dict(),
            retention=PROVIDER_RETENTION,
        )

    @classmethod
    def for_aggregate(cls, payload: Dict[str, Any], location_key: str,
                      timestamp: datetime) -> "StoredRecord":
        return cls(
            key=f"aggregated-{location_key}",
            timestamp=timestamp,
            kind="aggregated",
            provider="aggregated",
            payload=payload,
            retention=AGGREGATE_RETENTION,
        )


class PersistenceSink(Protocol):
    """Anything that can durably accept a StoredRecord."""

    async def store(self, record: StoredRecord) -> None:
        ...


class MemorySink:
    """Keeps records in a list. Useful for tests and dry runs."""

    def __init__(self):
        self.records: List[StoredRecord] = []

    async def store(self, record: StoredRecord) -> None:
        self.records.append(record)


class SqliteSink:
    """
    SQLite-backed sink.

    Each write opens its own connection inside a worker thread so the
    event loop is never blocked and no connection crosses threads.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()
        logger.info(f"[SqliteSink] Using database: {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def _init_schema(self):
        with closing(self._connect()) as conn, conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS weather_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    location_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    cloud_provider TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    expires_at REAL NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_records_location
                ON weather_records(location_id, timestamp)
            """)

    def _insert(self, record: StoredRecord):
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT INTO weather_records
                    (location_id, timestamp, kind, cloud_provider, payload, expires_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.key,
                    isoformat(record.timestamp),
                    record.kind,
                    record.provider,
                    json.dumps(record.payload),
                    record.expires_at.timestamp(),
                ),
            )

    async def store(self, record: StoredRecord) -> None:
        await asyncio.to_thread(self._insert, record)
        logger.debug(f"[SqliteSink] Stored {record.kind} record for {record.key}")

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete records past their retention. Returns rows removed."""
        cutoff = (now or utcnow()).timestamp()
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute("DELETE FROM weather_records WHERE expires_at <= ?", (cutoff,))
            removed = cursor.rowcount
        logger.info(f"[SqliteSink] Purged {removed} expired records")
        return removed


class StoreAndForget:
    """
    Dispatches records to a sink without making the caller wait.

    ``submit`` schedules the write and returns immediately; failures are
    logged here and never propagate. ``drain`` lets a process wait for
    outstanding writes before shutting down.
    """

    def __init__(self, sink: PersistenceSink):
        self.sink = sink
        self._pending: Set[asyncio.Task] = set()

    def submit(self, record: StoredRecord) -> asyncio.Task:
        task = asyncio.create_task(self._store(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _store(self, record: StoredRecord) -> bool:
        try:
            await self.sink.store(record)
        except Exception as e:
            logger.error(f"[StoreAndForget] Failed to store {record.kind} record "
                         f"for {record.key}: {e}")
            return False
        return True

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self):
        """Wait for every outstanding write to settle."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
