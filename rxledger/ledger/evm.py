"""
ledger/evm.py - JSON-RPC ledger adapter using web3.py.

Talks to the network's JSON-RPC endpoint (Hedera hashio relay, or a local
Besu node). A blob is stored as the calldata of a zero-value transaction the
operator sends to itself: the ledger orders and timestamps it, and the
transaction hash is the blob's permanent reference.

  blob id   = "<blockNumber>-<transactionIndex>" (position of the blob on the ledger)
  status    = SUCCESS when receipt.status == 1, REVERTED otherwise

Balances for Hedera networks come from the mirror node REST API, which
accepts both shard.realm.num ids and EVM addresses; on local networks they
come from eth_getBalance.

web3 is synchronous here; every call runs in the default executor so the
event loop is never blocked on a network round-trip.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import re
from decimal import Decimal
from typing import Optional

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3Exception

from ..config import NetworkConfig
from ..errors import (
    InvalidIdentityFormat, LedgerError, LedgerTimeout, NetworkError,
    NotFound, OperatorNotConfigured, SubmissionFailed,
)
from ..hashing import epoch_to_iso
from ..identity import is_hedera_account_id, parse_account_id
from ..schemas import TransactionReceipt
from .adapter import STATUS_SUCCESS, AccountBalance, LedgerBackend, LedgerTransaction

log = logging.getLogger("rxledger.evm")

_TX_HASH = re.compile(r"^0x[0-9a-fA-F]{64}$")

GAS_MARGIN = 1.30
GAS_FALLBACK_OVERHEAD = 50_000
HEDERA_DECIMALS = 8     # mirror node balances are in tinybars
EVM_DECIMALS = 18


def _intrinsic_gas(contents: bytes) -> int:
    zero = contents.count(0)
    return 21_000 + 4 * zero + 16 * (len(contents) - zero)


class EvmLedger(LedgerBackend):
    name = "evm"

    def __init__(self, network: NetworkConfig, rpc_timeout: float = 10.0):
        super().__init__(network)
        self._rpc_timeout = rpc_timeout
        # HTTPProvider connects lazily: constructing it does no network I/O.
        self._w3 = Web3(Web3.HTTPProvider(network.rpc_url, request_kwargs={"timeout": rpc_timeout}))
        if network.poa:
            from web3.middleware import ExtraDataToPOAMiddleware
            self._w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self._account = None

    def bind(self, identity) -> None:
        super().bind(identity)
        self._account = Account.from_key(identity.private_key)
        log.info("operator bound account=%s address=%s", identity.account_id, self._account.address)

    def is_valid_transaction_id(self, transaction_id: str) -> bool:
        return bool(_TX_HASH.match(transaction_id or ""))

    #  Executor plumbing

    async def _run(self, fn, *args, rpc_error: type[LedgerError] = NetworkError):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args))
        except LedgerError:
            raise
        except TimeExhausted as exc:
            raise LedgerTimeout(f"no consensus receipt before timeout: {exc}")
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"{self.network.name.value} unreachable: {exc}")
        except (Web3Exception, ValueError) as exc:
            raise rpc_error(str(exc))

    #  Submission

    async def submit_blob(self, contents: bytes, max_fee: float, timeout: float) -> TransactionReceipt:
        if self._account is None:
            raise OperatorNotConfigured("operator not bound to this connection")
        return await self._run(self._submit_sync, contents, max_fee, timeout,
                               rpc_error=SubmissionFailed)

    def _submit_sync(self, contents: bytes, max_fee: float, timeout: float) -> TransactionReceipt:
        w3 = self._w3
        address = self._account.address

        base_tx = {
            "from": address,
            "to": address,
            "value": 0,
            "data": contents,
            "nonce": w3.eth.get_transaction_count(address, "pending"),
            "chainId": w3.eth.chain_id,
        }

        try:
            est = w3.eth.estimate_gas(base_tx)
            gas_limit = int(est * GAS_MARGIN)
        except (Web3Exception, ValueError):
            gas_limit = _intrinsic_gas(contents) + GAS_FALLBACK_OVERHEAD

        gas_price = w3.eth.gas_price
        fee_ceiling = Web3.to_wei(Decimal(str(max_fee)), "ether")
        if gas_limit * gas_price > fee_ceiling:
            raise SubmissionFailed(
                f"insufficient fee ceiling: needs up to {gas_limit * gas_price} wei, "
                f"ceiling is {fee_ceiling} wei"
            )

        tx = {**base_tx, "gas": gas_limit, "gasPrice": gas_price}
        signed = self._account.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hex = Web3.to_hex(tx_hash)
        log.info("submitted tx=%s bytes=%d gas=%d", tx_hex, len(contents), gas_limit)

        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        status = STATUS_SUCCESS if int(receipt["status"]) == 1 else "REVERTED"
        block = w3.eth.get_block(receipt["blockNumber"])

        log.info("receipt tx=%s block=%s status=%s gasUsed=%s",
                 tx_hex, receipt["blockNumber"], status, receipt.get("gasUsed"))
        return TransactionReceipt(
            transaction_id=tx_hex,
            blob_id=f"{receipt['blockNumber']}-{receipt['transactionIndex']}",
            consensus_timestamp=epoch_to_iso(block["timestamp"]),
            status=status,
        )

    #  Queries

    async def get_transaction(self, transaction_id: str) -> Optional[LedgerTransaction]:
        return await self._run(self._get_transaction_sync, transaction_id)

    def _get_transaction_sync(self, transaction_id: str) -> Optional[LedgerTransaction]:
        w3 = self._w3
        try:
            receipt = w3.eth.get_transaction_receipt(transaction_id)
        except TransactionNotFound:
            return None
        tx = w3.eth.get_transaction(transaction_id)
        block = w3.eth.get_block(receipt["blockNumber"])
        return LedgerTransaction(
            transaction_id=Web3.to_hex(tx["hash"]),
            status=STATUS_SUCCESS if int(receipt["status"]) == 1 else "REVERTED",
            consensus_timestamp=epoch_to_iso(block["timestamp"]),
            blob_id=f"{receipt['blockNumber']}-{receipt['transactionIndex']}",
            contents=bytes(tx["input"]),
        )

    async def get_balance(self, account_id: str) -> AccountBalance:
        account_id = parse_account_id(account_id)
        if self.network.mirror_url:
            return await self._run(self._mirror_balance_sync, account_id)
        if is_hedera_account_id(account_id):
            raise InvalidIdentityFormat(
                f"{self.network.name.value} has no mirror node; use an EVM address"
            )
        return await self._run(self._rpc_balance_sync, account_id)

    def _rpc_balance_sync(self, address: str) -> AccountBalance:
        wei = self._w3.eth.get_balance(Web3.to_checksum_address(address))
        return AccountBalance(address, int(wei), EVM_DECIMALS, self.network.native_unit, address)

    def _mirror_balance_sync(self, account_id: str) -> AccountBalance:
        url = f"{self.network.mirror_url}/api/v1/accounts/{account_id}"
        resp = requests.get(url, timeout=self._rpc_timeout)
        if resp.status_code == 404:
            raise NotFound(f"account {account_id} not found on {self.network.name.value}")
        resp.raise_for_status()
        data = resp.json()
        return AccountBalance(
            account_id=data.get("account") or account_id,
            base_units=int((data.get("balance") or {}).get("balance", 0)),
            decimals=HEDERA_DECIMALS,
            unit=self.network.native_unit,
            evm_address=data.get("evm_address"),
        )
