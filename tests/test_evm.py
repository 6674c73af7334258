"""
Tests for the web3 JSON-RPC backend, run against an in-process stand-in for
`w3.eth` so that no node is needed. Covers the submission path, the fee
ceiling, status mapping, and how client errors become ledger errors.
"""
import asyncio
from types import SimpleNamespace

import pytest
import requests
from web3.exceptions import TimeExhausted, TransactionNotFound

from conftest import OPERATOR_ADDRESS, OPERATOR_ID, OPERATOR_KEY
from rxledger.config import NETWORKS, Network, OperatorCredentials
from rxledger.errors import (
    InvalidIdentityFormat, LedgerTimeout, NetworkError, NotFound, OperatorNotConfigured,
    SubmissionFailed,
)
from rxledger.identity import resolve_operator
from rxledger.ledger import evm
from rxledger.ledger.evm import EvmLedger

TX_HASH = bytes.fromhex("11" * 32)
BLOCK_TS = 1_760_781_600


class FakeEth:
    """Just enough of web3's `eth` namespace for EvmLedger."""

    def __init__(self):
        self.chain_id = 298
        self.gas_price = 10 ** 9
        self.receipt_status = 1
        self.estimate_error = None
        self.failures = {}
        self.sent = []
        self.mined = {}

    def _check(self, name):
        if name in self.failures:
            raise self.failures[name]

    def get_transaction_count(self, address, block_identifier):
        self._check("get_transaction_count")
        return len(self.sent)

    def estimate_gas(self, tx):
        if self.estimate_error is not None:
            raise self.estimate_error
        return 30_000

    def send_raw_transaction(self, raw):
        self._check("send_raw_transaction")
        self.sent.append(bytes(raw))
        return TX_HASH

    def wait_for_transaction_receipt(self, tx_hash, timeout):
        self._check("wait_for_transaction_receipt")
        return {"status": self.receipt_status, "blockNumber": 7, "transactionIndex": 2, "gasUsed": 23_000}

    def get_block(self, number):
        return {"number": number, "timestamp": BLOCK_TS}

    def get_transaction_receipt(self, tx_id):
        self._check("get_transaction_receipt")
        if tx_id not in self.mined:
            raise TransactionNotFound(f"Transaction with hash: {tx_id!r} not found.")
        return {"status": 1, "blockNumber": 9, "transactionIndex": 0}

    def get_transaction(self, tx_id):
        return {"hash": bytes.fromhex(tx_id[2:]), "input": self.mined[tx_id]}

    def get_balance(self, address):
        return 2 * 10 ** 18


def _ledger(network=Network.LOCAL, bound=True):
    ledger = EvmLedger(NETWORKS[network], rpc_timeout=1)
    fake = FakeEth()
    ledger._w3 = SimpleNamespace(eth=fake)
    if bound:
        ledger.bind(resolve_operator(OperatorCredentials(OPERATOR_ID, OPERATOR_KEY)).identity)
    return ledger, fake


def _submit(ledger, contents=b'{"recordType":"prescription"}', max_fee=5.0):
    return asyncio.run(ledger.submit_blob(contents, max_fee, timeout=1))


def test_submit_returns_receipt_for_mined_blob():
    ledger, fake = _ledger()
    receipt = _submit(ledger)
    assert receipt.transaction_id == "0x" + "11" * 32
    assert receipt.status == "SUCCESS"
    assert receipt.blob_id == "7-2"
    assert receipt.consensus_timestamp == "2025-10-18T10:00:00+00:00"
    assert len(fake.sent) == 1


def test_reverted_receipt_is_reported_as_such():
    ledger, fake = _ledger()
    fake.receipt_status = 0
    assert _submit(ledger).status == "REVERTED"


def test_fee_above_ceiling_is_rejected_before_sending():
    ledger, fake = _ledger()
    fake.gas_price = 10 ** 18
    with pytest.raises(SubmissionFailed, match="insufficient fee"):
        _submit(ledger)
    assert fake.sent == []


def test_failed_gas_estimate_falls_back_to_intrinsic_gas():
    ledger, fake = _ledger()
    fake.estimate_error = ValueError("execution reverted")
    assert _submit(ledger).status == "SUCCESS"


def test_submit_without_operator():
    ledger, _ = _ledger(bound=False)
    with pytest.raises(OperatorNotConfigured):
        _submit(ledger)


def test_receipt_wait_timeout_is_a_timeout():
    ledger, fake = _ledger()
    fake.failures["wait_for_transaction_receipt"] = TimeExhausted("not in chain after 1 seconds")
    with pytest.raises(LedgerTimeout) as info:
        _submit(ledger)
    assert info.value.kind == "Timeout"


def test_unreachable_node_is_a_network_error():
    ledger, fake = _ledger()
    fake.failures["get_transaction_count"] = requests.exceptions.ConnectionError("connection refused")
    with pytest.raises(NetworkError):
        _submit(ledger)


def test_rpc_rejection_is_a_submission_failure():
    ledger, fake = _ledger()
    fake.failures["send_raw_transaction"] = ValueError({"code": -32000, "message": "nonce too low"})
    with pytest.raises(SubmissionFailed):
        _submit(ledger)


def test_lookup_of_unknown_transaction_is_none():
    ledger, _ = _ledger(bound=False)
    assert asyncio.run(ledger.get_transaction("0x" + "22" * 32)) is None


def test_lookup_returns_calldata():
    ledger, fake = _ledger(bound=False)
    tx_id = "0x" + "33" * 32
    fake.mined[tx_id] = b'{"prescriptionId":"RX1"}'
    record = asyncio.run(ledger.get_transaction(tx_id))
    assert record.transaction_id == tx_id
    assert record.status == "SUCCESS"
    assert record.blob_id == "9-0"
    assert record.contents == b'{"prescriptionId":"RX1"}'


def test_lookup_network_failure():
    ledger, fake = _ledger(bound=False)
    fake.failures["get_transaction_receipt"] = requests.exceptions.ReadTimeout("read timed out")
    with pytest.raises(NetworkError):
        asyncio.run(ledger.get_transaction("0x" + "22" * 32))


def test_transaction_id_format():
    ledger, _ = _ledger(bound=False)
    assert ledger.is_valid_transaction_id("0x" + "aB" * 32)
    assert not ledger.is_valid_transaction_id("0.0.4821@1700000000.1")


def test_local_balance_uses_eth_get_balance():
    ledger, _ = _ledger(bound=False)
    balance = asyncio.run(ledger.get_balance(OPERATOR_ADDRESS))
    assert balance.amount == 2
    assert balance.unit == "ether"
    with pytest.raises(InvalidIdentityFormat):
        asyncio.run(ledger.get_balance(OPERATOR_ID))


class _MirrorResponse:

    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body or {}

    def json(self):
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")


def test_mirror_balance(monkeypatch):
    calls = []

    def fake_get(url, timeout):
        calls.append(url)
        return _MirrorResponse(200, {"account": OPERATOR_ID, "balance": {"balance": 1_050_000_000},
                                     "evm_address": OPERATOR_ADDRESS.lower()})

    monkeypatch.setattr(evm.requests, "get", fake_get)
    ledger, _ = _ledger(Network.TESTNET, bound=False)
    balance = asyncio.run(ledger.get_balance(OPERATOR_ID))
    assert calls == [f"https://testnet.mirrornode.hedera.com/api/v1/accounts/{OPERATOR_ID}"]
    assert str(balance.amount) == "10.5"
    assert balance.unit == "hbar"


def test_mirror_unknown_account(monkeypatch):
    monkeypatch.setattr(evm.requests, "get", lambda url, timeout: _MirrorResponse(404))
    ledger, _ = _ledger(Network.TESTNET, bound=False)
    with pytest.raises(NotFound):
        asyncio.run(ledger.get_balance("0.0.999999"))


def test_mirror_server_error_is_a_network_error(monkeypatch):
    monkeypatch.setattr(evm.requests, "get", lambda url, timeout: _MirrorResponse(503))
    ledger, _ = _ledger(Network.TESTNET, bound=False)
    with pytest.raises(NetworkError):
        asyncio.run(ledger.get_balance(OPERATOR_ID))
