"""
ledger/stub.py - In-memory ledger for development and tests.

Behaves like an append-only ledger: every submission gets a fresh
transaction hash and blob id, nothing is ever overwritten. State lives on
the instance, so each connection has its own ledger.

`network_calls` counts every simulated round-trip; `fail_next` makes the
next round-trip raise the given error.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import time
from typing import Optional

from ..config import NetworkConfig
from ..errors import LedgerError, NotFound
from ..hashing import utc_now_iso
from ..identity import is_valid_account_id
from ..schemas import TransactionReceipt
from .adapter import STATUS_SUCCESS, AccountBalance, LedgerBackend, LedgerTransaction

log = logging.getLogger("rxledger.stub")

_TX_HASH = re.compile(r"^0x[0-9a-f]{64}$")


class StubLedger(LedgerBackend):
    name = "stub"

    def __init__(self, network: NetworkConfig):
        super().__init__(network)
        self._transactions: dict[str, LedgerTransaction] = {}
        self._balances: dict[str, int] = {}
        self._counter = 0
        self.network_calls = 0
        self.fail_next: Optional[LedgerError] = None
        self.decimals = 18 if network.native_unit == "ether" else 8

    async def _round_trip(self) -> None:
        self.network_calls += 1
        await asyncio.sleep(0)
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc

    def is_valid_transaction_id(self, transaction_id: str) -> bool:
        return bool(_TX_HASH.match(transaction_id or ""))

    async def submit_blob(self, contents: bytes, max_fee: float, timeout: float) -> TransactionReceipt:
        await self._round_trip()
        self._counter += 1
        seed = f"{self._counter}:{time.time_ns()}".encode() + contents
        tx_hash = "0x" + hashlib.sha256(seed).hexdigest()
        record = LedgerTransaction(
            transaction_id=tx_hash,
            status=STATUS_SUCCESS,
            consensus_timestamp=utc_now_iso(),
            blob_id=f"0.0.{1000 + self._counter}",
            contents=contents,
        )
        self._transactions[tx_hash] = record
        log.info("stub submit tx=%s blob=%s bytes=%d", tx_hash[:18], record.blob_id, len(contents))
        return TransactionReceipt(
            transaction_id=record.transaction_id,
            blob_id=record.blob_id,
            consensus_timestamp=record.consensus_timestamp,
            status=record.status,
        )

    async def get_transaction(self, transaction_id: str) -> Optional[LedgerTransaction]:
        await self._round_trip()
        return self._transactions.get(transaction_id)

    async def get_balance(self, account_id: str) -> AccountBalance:
        await self._round_trip()
        if not is_valid_account_id(account_id):
            raise NotFound(f"account {account_id} not found")
        return AccountBalance(
            account_id=account_id,
            base_units=self._balances.get(account_id, 0),
            decimals=self.decimals,
            unit=self.network.native_unit,
        )

    def set_balance(self, account_id: str, base_units: int) -> None:
        self._balances[account_id] = base_units
