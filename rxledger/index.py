"""
index.py - prescriptionId -> transaction index.

The ledger has no index by application id, so lookups by prescription id go
through this index, and it doubles as the idempotency guard for issuance:

  reserve(id)        - atomically claim an id before submitting; False if taken
  commit(id, tx)     - record the confirmed transaction for a reserved id
  release(id)        - drop a reservation after a failed submission
  lookup(id)         - confirmed transaction id, or None
  add_dispensation / dispensations - dispensation transactions per prescription

Two implementations: in-memory (default, single process) and PostgreSQL
(asyncpg, shared across gateway replicas; enabled by DATABASE_URL).
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import asyncpg

from .hashing import utc_now_iso

log = logging.getLogger("rxledger.index")


class PrescriptionIndex:

    async def reserve(self, prescription_id: str) -> bool:
        raise NotImplementedError

    async def commit(self, prescription_id: str, transaction_id: str) -> None:
        raise NotImplementedError

    async def release(self, prescription_id: str) -> None:
        raise NotImplementedError

    async def lookup(self, prescription_id: str) -> Optional[str]:
        raise NotImplementedError

    async def add_dispensation(self, prescription_id: str, transaction_id: str) -> None:
        raise NotImplementedError

    async def dispensations(self, prescription_id: str) -> list[str]:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class InMemoryPrescriptionIndex(PrescriptionIndex):

    def __init__(self):
        self._lock = asyncio.Lock()
        self._records: dict[str, Optional[str]] = {}   # None while reserved
        self._dispensations: dict[str, list[str]] = {}

    async def reserve(self, prescription_id: str) -> bool:
        async with self._lock:
            if prescription_id in self._records:
                return False
            self._records[prescription_id] = None
            return True

    async def commit(self, prescription_id: str, transaction_id: str) -> None:
        async with self._lock:
            self._records[prescription_id] = transaction_id

    async def release(self, prescription_id: str) -> None:
        async with self._lock:
            if self._records.get(prescription_id) is None:
                self._records.pop(prescription_id, None)

    async def lookup(self, prescription_id: str) -> Optional[str]:
        return self._records.get(prescription_id)

    async def add_dispensation(self, prescription_id: str, transaction_id: str) -> None:
        async with self._lock:
            self._dispensations.setdefault(prescription_id, []).append(transaction_id)

    async def dispensations(self, prescription_id: str) -> list[str]:
        return list(self._dispensations.get(prescription_id, []))


#  PostgreSQL

CREATE_SCHEMA = """
CREATE TABLE IF NOT EXISTS prescription_index (
    prescription_id TEXT PRIMARY KEY,
    transaction_id  TEXT UNIQUE,
    state           TEXT NOT NULL DEFAULT 'RESERVED',
    reserved_at     TEXT NOT NULL,
    committed_at    TEXT
);

CREATE TABLE IF NOT EXISTS dispensation_index (
    transaction_id  TEXT PRIMARY KEY,
    prescription_id TEXT NOT NULL,
    recorded_at     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_dispensation_rx ON dispensation_index(prescription_id);
"""


class PostgresPrescriptionIndex(PrescriptionIndex):

    def __init__(self, database_url: str):
        self._database_url = database_url
        self._pool: Optional[asyncpg.Pool] = None

    async def get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(self._database_url, min_size=1, max_size=10)
        return self._pool

    async def init(self) -> None:
        pool = await self.get_pool()
        async with pool.acquire() as conn:
            await conn.execute(CREATE_SCHEMA)
        log.info("prescription index schema ready")

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None

    async def reserve(self, prescription_id: str) -> bool:
        pool = await self.get_pool()
        status = await pool.execute(
            """INSERT INTO prescription_index (prescription_id, reserved_at)
               VALUES ($1, $2) ON CONFLICT (prescription_id) DO NOTHING""",
            prescription_id, utc_now_iso(),
        )
        # asyncpg returns the command tag, e.g. "INSERT 0 1"
        return status.endswith(" 1")

    async def commit(self, prescription_id: str, transaction_id: str) -> None:
        pool = await self.get_pool()
        await pool.execute(
            """UPDATE prescription_index
               SET transaction_id=$2, state='COMMITTED', committed_at=$3
               WHERE prescription_id=$1""",
            prescription_id, transaction_id, utc_now_iso(),
        )

    async def release(self, prescription_id: str) -> None:
        pool = await self.get_pool()
        await pool.execute(
            "DELETE FROM prescription_index WHERE prescription_id=$1 AND state='RESERVED'",
            prescription_id,
        )

    async def lookup(self, prescription_id: str) -> Optional[str]:
        pool = await self.get_pool()
        return await pool.fetchval(
            "SELECT transaction_id FROM prescription_index WHERE prescription_id=$1 AND state='COMMITTED'",
            prescription_id,
        )

    async def add_dispensation(self, prescription_id: str, transaction_id: str) -> None:
        pool = await self.get_pool()
        await pool.execute(
            """INSERT INTO dispensation_index (transaction_id, prescription_id, recorded_at)
               VALUES ($1, $2, $3) ON CONFLICT DO NOTHING""",
            transaction_id, prescription_id, utc_now_iso(),
        )

    async def dispensations(self, prescription_id: str) -> list[str]:
        pool = await self.get_pool()
        rows = await pool.fetch(
            "SELECT transaction_id FROM dispensation_index WHERE prescription_id=$1 ORDER BY recorded_at",
            prescription_id,
        )
        return [r["transaction_id"] for r in rows]
