"""
HTTP tests for the gateway, run against the in-memory ledger.
"""
import hashlib

import pytest
from fastapi.testclient import TestClient

from conftest import OPERATOR_ID, OPERATOR_KEY
from rxledger.config import OperatorCredentials, Settings
from rxledger.connection import LedgerConnection
from rxledger.main import create_app

DOCTOR = {"X-Role": "doctor"}
PHARMACIST = {"X-Role": "pharmacist"}
PATIENT = {"X-Role": "patient"}
ADMIN = {"X-Role": "admin"}

UNKNOWN_TX = "0x" + hashlib.sha256(b"never submitted").hexdigest()


@pytest.fixture
def client(connection):
    with TestClient(create_app(Settings(), connection=connection)) as c:
        yield c


@pytest.fixture
def readonly_client(unbound_connection):
    with TestClient(create_app(Settings(), connection=unbound_connection)) as c:
        yield c


def _record(client, prescription):
    r = client.post("/prescriptions/record", json=prescription, headers=DOCTOR)
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["backend"] == "stub"
    assert body["operatorState"] == "bound"


def test_record_then_verify_then_dispense(client, prescription, pharmacy):
    recorded = _record(client, prescription)
    assert recorded["success"] is True
    assert recorded["transactionHash"] == recorded["transactionId"]
    assert recorded["fileId"]
    assert recorded["network"] == "testnet"

    r = client.post("/prescriptions/verify", headers=PHARMACIST,
                    json={"prescriptionId": "RX1", "transactionHash": recorded["transactionHash"]})
    assert r.status_code == 200
    verified = r.json()
    assert verified["verified"] is True
    assert verified["prescriptionData"]["medicationName"] == "Amoxicillin"
    assert verified["transactionDetails"]["transactionId"] == recorded["transactionId"]

    r = client.post("/prescriptions/dispense", headers=PHARMACIST,
                    json={"prescriptionId": "RX1", "pharmacyData": pharmacy})
    assert r.status_code == 200
    dispensed = r.json()
    assert dispensed["status"] == "dispensed"
    assert dispensed["transactionHash"] != recorded["transactionHash"]

    # Lookup by prescription id alone goes through the default in-memory index.
    r = client.post("/prescriptions/verify", headers=PATIENT, json={"prescriptionId": "RX1"})
    details = r.json()["transactionDetails"]
    assert details["dispensations"] == [dispensed["transactionHash"]]


def test_duplicate_record_is_a_conflict(client, prescription):
    _record(client, prescription)
    r = client.post("/prescriptions/record", json=prescription, headers=DOCTOR)
    assert r.status_code == 409
    assert r.json()["errorKind"] == "DuplicateSubmission"


def test_unknown_prescription_is_a_normal_answer(client):
    r = client.post("/prescriptions/verify", headers=PATIENT,
                    json={"prescriptionId": "RX404", "transactionHash": UNKNOWN_TX})
    assert r.status_code == 200
    body = r.json()
    assert body["verified"] is False
    assert "prescriptionData" not in body


def test_roles_are_enforced(client, prescription, pharmacy):
    r = client.post("/prescriptions/record", json=prescription, headers=PHARMACIST)
    assert r.status_code == 403
    detail = r.json()["detail"]
    assert detail["role"] == "pharmacist"
    assert detail["allowed_roles"] == ["doctor"]

    r = client.post("/prescriptions/dispense", json={"prescriptionId": "RX1", "pharmacyData": pharmacy})
    assert r.status_code == 403

    assert client.get("/metrics", headers=DOCTOR).status_code == 403

    r = client.get("/metrics", headers={"X-Role": "superuser"})
    assert r.status_code == 403
    assert r.json()["detail"]["error"] == "unknown_role"


def test_record_without_operator_is_unavailable(readonly_client, prescription):
    r = readonly_client.post("/prescriptions/record", json=prescription, headers=DOCTOR)
    assert r.status_code == 503
    body = r.json()
    assert body["errorKind"] == "OperatorNotConfigured"
    assert "transactionHash" not in body


def test_network_info_never_exposes_key_material(client):
    r = client.get("/network-info")
    assert r.status_code == 200
    body = r.json()
    assert body["network"] == "testnet"
    assert body["operatorId"] == OPERATOR_ID
    assert body["hasOperatorKey"] is True
    # Presence flags come from the injected credentials, not the process environment.
    assert body["hasAccountId"] is True
    assert body["hasPrivateKey"] is True
    assert body["operatorState"] == "bound"
    assert OPERATOR_KEY[2:] not in r.text


def test_network_info_without_operator(readonly_client):
    body = readonly_client.get("/network-info").json()
    assert body["operatorId"] == "Not set"
    assert body["hasOperatorKey"] is False
    assert body["operatorState"] == "not_configured"
    assert body["hasAccountId"] is False
    assert body["hasPrivateKey"] is False


def test_rebind_after_credentials_appear():
    creds = {"value": OperatorCredentials(None, None)}
    conn = LedgerConnection(Settings(), credentials=lambda: creds["value"])

    with TestClient(create_app(Settings(), connection=conn)) as c:
        assert c.get("/health").json()["operatorState"] == "not_configured"
        creds["value"] = OperatorCredentials(OPERATOR_ID, OPERATOR_KEY)
        r = c.post("/network/rebind", headers=ADMIN)
        assert r.status_code == 200
        assert r.json()["operatorState"] == "bound"
        assert c.get("/health").json()["operatorState"] == "bound"


def test_issue_records_tokenises_and_notifies(client):
    form = {
        "patientId": "P-100",
        "doctorId": "D-7",
        "patientName": "Jane Roe",
        "patientEmail": "jane@example.org",
        "patientPhone": "+15550100",
        "medicationName": "Amoxicillin",
        "dosage": "500mg",
        "duration": "7 days",
        "instructions": "Take one capsule every 8 hours",
    }
    r = client.post("/prescriptions/issue", json=form, headers=DOCTOR)
    assert r.status_code == 201, r.text
    body = r.json()
    record = body["record"]
    assert record["success"] is True
    assert record["prescriptionData"]["prescriptionId"].startswith("RX")
    assert "patientEmail" not in record["prescriptionData"]

    token = body["token"]
    assert token["token"]["transactionId"] == record["transactionId"]
    assert token["qrCode"].startswith("data:image/png;base64,")
    assert {n["channel"] for n in body["notifications"]} == {"email", "sms"}
    assert all("jane@example.org" != n["recipient"] for n in body["notifications"])


def test_issue_reports_every_missing_field(client):
    r = client.post("/prescriptions/issue", json={"patientName": "Jane Roe"}, headers=DOCTOR)
    assert r.status_code == 400
    error = r.json()["record"]["error"]
    assert "Patient ID is required" in error
    assert "Medication name is required" in error
    assert "Patient name is required" not in error


def test_token_endpoint(client):
    r = client.post("/prescriptions/token", headers=DOCTOR,
                    json={"transactionId": UNKNOWN_TX, "prescriptionId": "RX1"})
    assert r.status_code == 200
    body = r.json()
    assert body["token"]["verificationUrl"].endswith("/verify/RX1")
    assert body["qrCode"].startswith("data:image/png;base64,")

    r = client.post("/prescriptions/token", headers=DOCTOR,
                    json={"transactionId": "", "prescriptionId": "RX1"})
    assert r.status_code == 400


def test_transaction_lookup(client, prescription):
    recorded = _record(client, prescription)

    r = client.post("/transactions/verify", headers=PHARMACIST,
                    json={"transactionId": recorded["transactionId"]})
    assert r.status_code == 200
    assert r.json()["exists"] is True
    assert r.json()["status"] == "SUCCESS"

    r = client.post("/transactions/verify", headers=ADMIN, json={"transactionId": UNKNOWN_TX})
    assert r.status_code == 200
    assert r.json()["exists"] is False
    assert r.json()["errorKind"] == "NotFound"


def test_metrics_count_submissions(client, prescription):
    _record(client, prescription)
    client.post("/prescriptions/record", json=prescription, headers=DOCTOR)

    body = client.get("/metrics", headers=ADMIN).json()
    assert body["totalSubmitted"] == 2
    assert body["totalSuccess"] == 1
    assert body["failuresByKind"] == {"DuplicateSubmission": 1}


def test_account_endpoints(client):
    r = client.post("/accounts/info", headers=ADMIN, json={"accountId": OPERATOR_ID})
    assert r.status_code == 200
    assert r.json()["balance"] == "0 hbar"

    r = client.post("/accounts/info", headers=ADMIN, json={"accountId": "nope"})
    assert r.status_code == 400
    assert r.json()["errorKind"] == "InvalidIdentityFormat"

    r = client.post("/accounts/keypair", headers=ADMIN, json={"algorithm": "ecdsa"})
    assert r.status_code == 200
    pair = r.json()
    assert pair["algorithm"] == "ecdsa"
    assert pair["accountId"] == "Generated - needs to be created on network"

    r = client.post("/accounts/keypair", headers=ADMIN, json={"algorithm": "rsa"})
    assert r.status_code == 422


def test_invalid_record_comes_back_as_a_result(client, prescription):
    del prescription["dosage"]
    r = client.post("/prescriptions/record", json=prescription, headers=DOCTOR)
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["errorKind"] == "ValidationError"
    assert "dosage" in body["error"]
    assert body["message"].startswith("Failed to record prescription on ledger")
    assert "transactionHash" not in body
