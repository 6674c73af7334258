"""
ledger/adapter.py - Abstract ledger interface.

The record store and verifier talk to a LedgerBackend without knowing
whether it is a JSON-RPC network or the in-memory stub. Swapping backends
requires only changing the LEDGER_BACKEND env var.

A backend stores opaque blobs and reports what the ledger says about them;
it knows nothing about prescriptions.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..config import NetworkConfig, Settings
from ..identity import OperatorIdentity
from ..schemas import TransactionReceipt

log = logging.getLogger("rxledger.ledger")

STATUS_SUCCESS = "SUCCESS"


@dataclass(frozen=True)
class LedgerTransaction:
    transaction_id: str
    status: str
    consensus_timestamp: str
    blob_id: str
    contents: bytes


@dataclass(frozen=True)
class AccountBalance:
    account_id: str
    base_units: int
    decimals: int
    unit: str
    evm_address: Optional[str] = None

    @property
    def amount(self) -> Decimal:
        return Decimal(self.base_units).scaleb(-self.decimals).normalize()


class LedgerBackend:
    """Connection handle to one ledger network, optionally bound to an operator."""

    name = "abstract"

    def __init__(self, network: NetworkConfig):
        self.network = network
        self._operator: Optional[OperatorIdentity] = None

    @property
    def operator(self) -> Optional[OperatorIdentity]:
        return self._operator

    def bind(self, identity: OperatorIdentity) -> None:
        self._operator = identity

    def is_valid_transaction_id(self, transaction_id: str) -> bool:
        raise NotImplementedError

    async def submit_blob(self, contents: bytes, max_fee: float, timeout: float) -> TransactionReceipt:
        """Store `contents` as a new immutable blob and wait for its receipt."""
        raise NotImplementedError

    async def get_transaction(self, transaction_id: str) -> Optional[LedgerTransaction]:
        """Return the transaction record, or None when the ledger has no such id."""
        raise NotImplementedError

    async def get_balance(self, account_id: str) -> AccountBalance:
        raise NotImplementedError


def make_backend(settings: Settings) -> LedgerBackend:
    """Build the backend selected by settings.backend (stub | evm)."""
    if settings.backend == "evm":
        from .evm import EvmLedger
        return EvmLedger(settings.network, rpc_timeout=settings.rpc_timeout)
    if settings.backend == "stub":
        from .stub import StubLedger
        return StubLedger(settings.network)
    raise ValueError(f"unknown LEDGER_BACKEND {settings.backend!r} (expected stub or evm)")
