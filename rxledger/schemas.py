"""
schemas.py - Record and result contracts.

Field names are snake_case in Python and camelCase on the wire (the shape the
prescription front-end already speaks). Inbound models are closed: unknown
keys are ignored, required fields must be present and non-blank.

What goes on the ledger is decided by the *ledger_document()* methods:
contact fields (patient email/phone) are used for notifications only and are
never written to the public ledger.
"""
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = "1.0"

RECORD_PRESCRIPTION = "prescription"
RECORD_DISPENSATION = "dispensation"
STATUS_DISPENSED = "dispensed"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _not_blank(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


#  Inbound records

class PrescriptionPayload(WireModel):
    """A prescription as issued by a doctor. Immutable once constructed."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    prescription_id: str = Field(..., max_length=64,
                                 description="Caller-assigned correlation key, unique per prescription")
    patient_id:      str = Field(..., max_length=64)
    doctor_id:       str = Field(..., max_length=64)
    patient_name:    str = Field(..., max_length=200)
    medication_name: str = Field(..., max_length=200)
    dosage:          str = Field(..., max_length=100)
    duration:        str = Field(..., max_length=100)
    instructions:    str = Field(..., max_length=2000)
    doctor_notes:    str = Field(..., max_length=2000)

    # Contact fields - optional, notification only
    patient_email:   Optional[str] = Field(default=None, max_length=254)
    patient_phone:   Optional[str] = Field(default=None, max_length=32)

    @field_validator("prescription_id", "patient_id", "doctor_id", "patient_name",
                     "medication_name", "dosage", "duration")
    @classmethod
    def required_not_blank(cls, v: str) -> str:
        return _not_blank(v)

    def public_fields(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"patient_email", "patient_phone"})

    def ledger_document(self) -> dict[str, Any]:
        return {
            "recordType": RECORD_PRESCRIPTION,
            "schemaVersion": SCHEMA_VERSION,
            **self.public_fields(),
        }


class PharmacyData(WireModel):
    pharmacy_id:     str
    pharmacy_name:   str
    pharmacist_id:   str = ""
    pharmacist_name: str = ""
    dispensed_at:    Optional[str] = Field(default=None, description="ISO-8601; defaults to now")

    @field_validator("pharmacy_id", "pharmacy_name")
    @classmethod
    def required_not_blank(cls, v: str) -> str:
        return _not_blank(v)


class DispensationEvent(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    prescription_id: str
    pharmacy_id:     str
    pharmacy_name:   str
    pharmacist_id:   str
    pharmacist_name: str
    dispensed_at:    str

    def pharmacy_data(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"prescription_id"})

    def ledger_document(self) -> dict[str, Any]:
        return {
            "recordType": RECORD_DISPENSATION,
            "schemaVersion": SCHEMA_VERSION,
            "prescriptionId": self.prescription_id,
            "status": STATUS_DISPENSED,
            "pharmacyData": self.pharmacy_data(),
        }


#  Ledger outputs

class TransactionReceipt(WireModel):
    """Consensus acknowledgment of a submitted blob."""
    transaction_id:      str
    blob_id:             str
    consensus_timestamp: str
    status:              str


class RecordResult(WireModel):
    success:           bool
    message:           str
    prescription_data: Optional[dict[str, Any]] = None
    transaction_hash:  Optional[str] = None
    transaction_id:    Optional[str] = None
    file_id:           Optional[str] = None
    timestamp:         Optional[str] = None
    network:           Optional[str] = None
    warning:           Optional[str] = None
    error:             Optional[str] = None
    error_kind:        Optional[str] = None


class DispenseResult(RecordResult):
    prescription_id: Optional[str] = None
    status:          Optional[str] = None
    pharmacy_data:   Optional[dict[str, Any]] = None


class TransactionStatus(WireModel):
    """Outcome of a ledger lookup. `status` is reported as the ledger gave it."""
    success:             bool
    exists:              bool
    transaction_id:      Optional[str] = None
    status:              Optional[str] = None
    consensus_timestamp: Optional[str] = None
    blob_id:             Optional[str] = None
    record:              Optional[dict[str, Any]] = None
    message:             str = ""
    error:               Optional[str] = None
    error_kind:          Optional[str] = None


class VerificationResult(WireModel):
    success:             bool
    verified:            bool
    message:             str
    prescription_data:   Optional[dict[str, Any]] = None
    transaction_details: Optional[dict[str, Any]] = None
    timestamp:           Optional[str] = None
    error:               Optional[str] = None
    error_kind:          Optional[str] = None


#  Requests

class VerifyRequest(WireModel):
    prescription_id:  str
    transaction_hash: Optional[str] = None


class DispenseRequest(WireModel):
    prescription_id: str
    pharmacy_data:   PharmacyData


class TransactionVerifyRequest(WireModel):
    transaction_id: str


class TokenRequest(WireModel):
    transaction_id:  str
    prescription_id: str


class AccountInfoRequest(WireModel):
    account_id: str


class KeyPairRequest(WireModel):
    algorithm: Literal["ed25519", "ecdsa"] = "ed25519"


class IssueRequest(WireModel):
    """Issuance form input. Everything is optional here; issuance validates and
    reports every missing field at once."""
    prescription_id: Optional[str] = None
    patient_id:      Optional[str] = None
    doctor_id:       Optional[str] = None
    patient_name:    Optional[str] = None
    patient_email:   Optional[str] = None
    patient_phone:   Optional[str] = None
    medication_name: Optional[str] = None
    dosage:          Optional[str] = None
    duration:        Optional[str] = None
    instructions:    Optional[str] = ""
    doctor_notes:    Optional[str] = ""


#  Tokens, accounts, diagnostics

class VerificationToken(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    prescription_id:  str
    transaction_id:   str
    verification_url: str
    issued_at:        str


class TokenOut(WireModel):
    token:   VerificationToken
    payload: str = Field(..., description="Exact text encoded in the QR symbol")
    qr_code: str = Field(..., description="PNG data URL")


class NotificationResult(WireModel):
    channel:   str
    recipient: str
    success:   bool
    message:   str


class IssueResult(WireModel):
    record:        RecordResult
    token:         Optional[TokenOut] = None
    notifications: list[NotificationResult] = []


class NetworkInfo(WireModel):
    network:          str
    backend:          str
    operator_id:      str
    has_operator_key: bool
    has_account_id:   bool
    has_private_key:  bool
    operator_state:   str


class AccountInfo(WireModel):
    account_id:         str
    balance:            str
    balance_base_units: str
    unit:               str
    network:            str
    evm_address:        Optional[str] = None


class KeyPair(WireModel):
    algorithm:       str
    private_key:     str
    private_key_raw: str
    public_key:      str
    account_id:      str


class MetricsSummary(WireModel):
    started_at:      str
    total_submitted: int
    total_success:   int
    total_failed:    int
    avg_latency_ms:  float
    p95_latency_ms:  float
    p99_latency_ms:  float
    failures_by_kind: dict[str, int]
    by_record_type:   dict[str, int]
