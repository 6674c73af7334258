"""
issuance.py - Doctor-side issuance workflow.

  validate form -> assign prescription id -> record on ledger
    -> build verification token -> notify patient

Notifications are best effort: a delivery failure is reported in the result
but never undoes the ledger record.
"""
from __future__ import annotations

import logging

from pydantic import ValidationError

from .hashing import generate_prescription_id, utc_now_iso
from .notifications import NotificationDispatcher
from .record_store import RecordStore, describe_validation_error
from .schemas import (
    IssueRequest, IssueResult, NotificationResult, PrescriptionPayload, RecordResult, TokenOut,
)
from .token import VerificationTokenBuilder

log = logging.getLogger("rxledger.issuance")

_REQUIRED = [
    ("patient_name", "Patient name"),
    ("patient_id", "Patient ID"),
    ("doctor_id", "Doctor ID"),
    ("patient_email", "Patient email"),
    ("patient_phone", "Patient phone"),
    ("medication_name", "Medication name"),
    ("dosage", "Dosage"),
    ("duration", "Duration"),
]


def validate_prescription_data(data: IssueRequest) -> list[str]:
    """Return one message per missing field; empty when the form is complete."""
    return [f"{label} is required" for field, label in _REQUIRED
            if not (getattr(data, field) or "").strip()]


def _rejected(message: str) -> IssueResult:
    return IssueResult(record=RecordResult(
        success=False,
        message=f"Invalid prescription: {message}",
        timestamp=utc_now_iso(),
        error=message,
        error_kind="ValidationError",
    ))


class IssuanceWorkflow:

    def __init__(self, store: RecordStore, tokens: VerificationTokenBuilder,
                 notifier: NotificationDispatcher):
        self.store = store
        self.tokens = tokens
        self.notifier = notifier

    async def issue(self, request: IssueRequest) -> IssueResult:
        errors = validate_prescription_data(request)
        if errors:
            return _rejected("; ".join(errors))

        fields = request.model_dump(exclude={"prescription_id"})
        try:
            payload = PrescriptionPayload(
                prescription_id=(request.prescription_id or "").strip() or generate_prescription_id(),
                **{k: (v or "") for k, v in fields.items()},
            )
        except ValidationError as exc:
            return _rejected(describe_validation_error(exc))

        record = await self.store.submit_record(payload)
        if not record.success:
            return IssueResult(record=record)

        rendered = self.tokens.build(record.transaction_id, payload.prescription_id)
        token = TokenOut(token=rendered.token, payload=rendered.payload, qr_code=rendered.data_url)

        try:
            notifications = await self.notifier.send_prescription_notifications(
                payload, rendered.token.verification_url, record.transaction_id,
            )
        except Exception as exc:
            log.error("notification dispatch failed prescription_id=%s: %s", payload.prescription_id, exc)
            notifications = [NotificationResult(channel="all", recipient="", success=False,
                                                message=f"Failed to send prescription: {exc}")]

        log.info("issued prescription_id=%s tx=%s notifications=%d",
                 payload.prescription_id, record.transaction_id, len(notifications))
        return IssueResult(record=record, token=token, notifications=notifications)
