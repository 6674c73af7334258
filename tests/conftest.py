"""Shared fixtures: stub-backed connections with and without an operator."""
import pytest

from rxledger.config import OperatorCredentials, Settings
from rxledger.connection import LedgerConnection
from rxledger.ledger.stub import StubLedger

OPERATOR_ID = "0.0.4821"
# Well-known secp256k1 development key (Besu/Hardhat account 0). Never funded on a public network.
OPERATOR_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
OPERATOR_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def connection_with(account_id=None, private_key=None, settings=None) -> LedgerConnection:
    creds = OperatorCredentials(account_id, private_key)
    return LedgerConnection(settings or Settings(), credentials=lambda: creds)


@pytest.fixture
def connection() -> LedgerConnection:
    return connection_with(OPERATOR_ID, OPERATOR_KEY)


@pytest.fixture
def unbound_connection() -> LedgerConnection:
    return connection_with()


@pytest.fixture
def prescription() -> dict:
    return {
        "prescriptionId": "RX1",
        "patientId": "P-100",
        "doctorId": "D-7",
        "patientName": "Jane Roe",
        "medicationName": "Amoxicillin",
        "dosage": "500mg",
        "duration": "7 days",
        "instructions": "Take one capsule every 8 hours",
        "doctorNotes": "",
    }


@pytest.fixture
def pharmacy() -> dict:
    return {
        "pharmacyId": "PH-22",
        "pharmacyName": "Central Pharmacy",
        "pharmacistId": "U-9",
        "pharmacistName": "Sam Lee",
        "dispensedAt": "2026-10-18T10:00:00+00:00",
    }


def stub_of(handle) -> StubLedger:
    assert isinstance(handle, StubLedger)
    return handle
