"""
connection.py - Process-scoped ledger connection.

One LedgerConnection is built at startup and handed to every component that
needs the ledger. The underlying handle is created on first use, exactly
once, under an asyncio lock; later callers reuse it.

Operator states (see identity.OperatorState):
  not_configured - no credentials found; handle is read-only
  malformed      - credentials present but unparseable; handle is read-only
  bound          - operator bound; submissions allowed

A handle built before credentials were available stays read-only until
rebind() is called. rebind() re-reads credentials and binds them onto the
existing handle; it never replaces a handle that is already bound.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from .config import OperatorCredentials, Settings, read_operator_credentials
from .errors import OperatorNotConfigured
from .identity import OperatorIdentity, OperatorState, resolve_operator
from .ledger.adapter import LedgerBackend, make_backend

log = logging.getLogger("rxledger.connection")


class LedgerConnection:

    def __init__(
        self,
        settings: Settings,
        credentials: Callable[[], OperatorCredentials] = read_operator_credentials,
        backend_factory: Callable[[Settings], LedgerBackend] = make_backend,
    ):
        self.settings = settings
        self.network = settings.network
        self._credentials = credentials
        self._backend_factory = backend_factory
        self._handle: Optional[LedgerBackend] = None
        self._lock = asyncio.Lock()
        self.operator_state = OperatorState.NOT_CONFIGURED
        self.operator_reason = "connection not initialised"

    @property
    def network_name(self) -> str:
        return self.network.name.value

    @property
    def operator(self) -> Optional[OperatorIdentity]:
        return self._handle.operator if self._handle is not None else None

    @property
    def is_bound(self) -> bool:
        return self.operator_state is OperatorState.BOUND

    def current_credentials(self) -> OperatorCredentials:
        return self._credentials()

    async def get_handle(self) -> LedgerBackend:
        if self._handle is not None:
            return self._handle
        async with self._lock:
            if self._handle is None:
                handle = self._backend_factory(self.settings)
                log.info("ledger handle created backend=%s network=%s rpc=%s",
                         handle.name, self.network_name, self.network.rpc_url)
                self._bind(handle)
                self._handle = handle
        return self._handle

    async def require_operator(self) -> LedgerBackend:
        """Return the handle, or raise OperatorNotConfigured if it cannot submit.

        Performs no network I/O.
        """
        handle = await self.get_handle()
        if handle.operator is None:
            raise OperatorNotConfigured(
                f"Ledger operator not configured ({self.operator_reason}). "
                "Set HEDERA_OPERATOR_ID and HEDERA_OPERATOR_KEY, then rebind."
            )
        return handle

    async def rebind(self) -> OperatorState:
        """Re-attempt the operator bind on the existing handle."""
        handle = await self.get_handle()
        async with self._lock:
            if handle.operator is not None:
                log.info("rebind skipped: operator %s already bound", handle.operator.account_id)
                return self.operator_state
            self._bind(handle)
        return self.operator_state

    def _bind(self, handle: LedgerBackend) -> None:
        resolution = resolve_operator(self._credentials())
        self.operator_state = resolution.state
        self.operator_reason = resolution.reason

        if resolution.state is OperatorState.NOT_CONFIGURED:
            log.warning("ledger operator not configured: %s (read-only mode)", resolution.reason)
        elif resolution.state is OperatorState.MALFORMED:
            log.error("ledger operator credentials malformed: %s (read-only mode)", resolution.reason)
        else:
            handle.bind(resolution.identity)
            self.operator_reason = ""
            log.info("ledger operator bound account=%s network=%s",
                     resolution.identity.account_id, self.network_name)
