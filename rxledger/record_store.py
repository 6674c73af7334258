"""
record_store.py - Immutable record submission.

Two record types go to the ledger, each as its own blob:

  prescription  - the issued PrescriptionPayload (contact fields stripped)
  dispensation  - {prescriptionId, status: "dispensed", pharmacyData}

A dispensation is linked to its prescription only by the prescriptionId
inside the blob. The store does not check that the prescription exists.

Submission is synchronous from the caller's point of view: the call returns
after a consensus receipt or a terminal failure. Nothing is retried. Every
outcome comes back as a result model; no exception leaves this module
except task cancellation, which first frees any reserved id.

With a PrescriptionIndex attached, prescriptionId is an idempotency key:
the id is reserved before submission and a second issuance of the same id is
rejected as DuplicateSubmission. Without an index, submitting the same
payload twice creates two records with two transaction ids.

Once a receipt is in hand the record is final: an index failure after that
point is reported as `warning` on a successful result and the reserved id
stays taken.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional, Union

from pydantic import ValidationError

from .connection import LedgerConnection
from .errors import (
    DuplicateSubmission, LedgerError, LedgerTimeout, RecordValidationError, SubmissionFailed,
)
from .hashing import canonical_bytes, utc_now_iso
from .index import PrescriptionIndex
from .ledger.adapter import STATUS_SUCCESS, LedgerBackend
from .metrics import MetricsCollector, SubmissionMetric
from .schemas import (
    RECORD_DISPENSATION, RECORD_PRESCRIPTION, STATUS_DISPENSED,
    DispensationEvent, DispenseResult, PharmacyData, PrescriptionPayload,
    RecordResult, TransactionReceipt,
)

log = logging.getLogger("rxledger.store")


def describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


class RecordStore:

    def __init__(
        self,
        connection: LedgerConnection,
        index: Optional[PrescriptionIndex] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.connection = connection
        self.index = index
        self.metrics = metrics

    async def submit_record(self, payload: Union[PrescriptionPayload, dict[str, Any]]) -> RecordResult:
        """Record a prescription on the ledger and wait for its receipt."""
        t0 = time.monotonic()
        raw = payload if isinstance(payload, dict) else payload.public_fields()
        prescription_id = str(raw.get("prescriptionId") or raw.get("prescription_id") or "")
        reserved_id: Optional[str] = None
        index_warning: Optional[str] = None

        try:
            prescription = (payload if isinstance(payload, PrescriptionPayload)
                            else self._validate_prescription(payload))
            handle = await self.connection.require_operator()
            if self.index is not None:
                if not await self.index.reserve(prescription.prescription_id):
                    raise DuplicateSubmission(
                        f"prescription {prescription.prescription_id} has already been recorded"
                    )
                reserved_id = prescription.prescription_id

            receipt = await self._submit(handle, prescription.ledger_document())
        except asyncio.CancelledError:
            # The receipt never arrived; free the id so the caller can resubmit.
            if reserved_id is not None:
                await self._release(reserved_id)
            raise
        except Exception as exc:
            if reserved_id is not None:
                await self._release(reserved_id)
            failure = self._as_ledger_error(exc)
            self._observe(RECORD_PRESCRIPTION, prescription_id, t0, failure)
            log.error("record failed prescription_id=%s kind=%s: %s",
                      prescription_id, failure.kind, failure.message)
            return RecordResult(
                success=False,
                message=f"Failed to record prescription on ledger: {failure.message}",
                prescription_data=raw if isinstance(payload, dict) else payload.public_fields(),
                timestamp=utc_now_iso(),
                error=failure.message,
                error_kind=failure.kind,
            )

        # The ledger record is final from here on. An index failure must not
        # free the id or hide the receipt; the reservation stays in place.
        if reserved_id is not None:
            try:
                await self.index.commit(reserved_id, receipt.transaction_id)
            except Exception as exc:
                index_warning = f"recorded on ledger but the prescription index was not updated: {exc}"
                log.error("index commit failed prescription_id=%s tx=%s: %s",
                          reserved_id, receipt.transaction_id, exc)

        self._observe(RECORD_PRESCRIPTION, prescription_id, t0)
        log.info("recorded prescription_id=%s tx=%s blob=%s network=%s",
                 prescription_id, receipt.transaction_id, receipt.blob_id, self.connection.network_name)
        return RecordResult(
            success=True,
            message="Prescription successfully recorded on ledger",
            prescription_data=prescription.public_fields(),
            transaction_hash=receipt.transaction_id,
            transaction_id=receipt.transaction_id,
            file_id=receipt.blob_id,
            timestamp=receipt.consensus_timestamp,
            network=self.connection.network_name,
            warning=index_warning,
        )

    async def mark_dispensed(
        self, prescription_id: str, pharmacy_data: Union[PharmacyData, dict[str, Any]]
    ) -> DispenseResult:
        """Record a dispensation event for `prescription_id`."""
        t0 = time.monotonic()
        raw_pharmacy = (pharmacy_data if isinstance(pharmacy_data, dict)
                        else pharmacy_data.model_dump(by_alias=True))

        try:
            event = self._build_dispensation(prescription_id, pharmacy_data)
            handle = await self.connection.require_operator()
            receipt = await self._submit(handle, event.ledger_document())
        except Exception as exc:
            failure = self._as_ledger_error(exc)
            self._observe(RECORD_DISPENSATION, prescription_id, t0, failure)
            log.error("dispense failed prescription_id=%s kind=%s: %s",
                      prescription_id, failure.kind, failure.message)
            return DispenseResult(
                success=False,
                message=f"Failed to dispense prescription on ledger: {failure.message}",
                prescription_id=prescription_id,
                pharmacy_data=raw_pharmacy,
                timestamp=utc_now_iso(),
                error=failure.message,
                error_kind=failure.kind,
            )

        index_warning = None
        if self.index is not None:
            try:
                await self.index.add_dispensation(event.prescription_id, receipt.transaction_id)
            except Exception as exc:
                index_warning = f"dispensed on ledger but the prescription index was not updated: {exc}"
                log.error("index dispensation update failed prescription_id=%s tx=%s: %s",
                          event.prescription_id, receipt.transaction_id, exc)

        self._observe(RECORD_DISPENSATION, prescription_id, t0)
        log.info("dispensed prescription_id=%s pharmacy=%s tx=%s",
                 prescription_id, event.pharmacy_id, receipt.transaction_id)
        return DispenseResult(
            success=True,
            message="Prescription successfully dispensed",
            prescription_id=event.prescription_id,
            status=STATUS_DISPENSED,
            pharmacy_data=event.pharmacy_data(),
            transaction_hash=receipt.transaction_id,
            transaction_id=receipt.transaction_id,
            file_id=receipt.blob_id,
            timestamp=receipt.consensus_timestamp,
            network=self.connection.network_name,
            warning=index_warning,
        )

    #  Internals

    @staticmethod
    def _validate_prescription(payload: dict[str, Any]) -> PrescriptionPayload:
        try:
            return PrescriptionPayload.model_validate(payload)
        except ValidationError as exc:
            raise RecordValidationError(f"invalid prescription: {describe_validation_error(exc)}")

    @staticmethod
    def _build_dispensation(
        prescription_id: str, pharmacy_data: Union[PharmacyData, dict[str, Any]]
    ) -> DispensationEvent:
        if not prescription_id or not prescription_id.strip():
            raise RecordValidationError("prescription id is required")
        try:
            pharmacy = (pharmacy_data if isinstance(pharmacy_data, PharmacyData)
                        else PharmacyData.model_validate(pharmacy_data))
        except ValidationError as exc:
            raise RecordValidationError(f"invalid pharmacy data: {describe_validation_error(exc)}")
        return DispensationEvent(
            prescription_id=prescription_id.strip(),
            pharmacy_id=pharmacy.pharmacy_id,
            pharmacy_name=pharmacy.pharmacy_name,
            pharmacist_id=pharmacy.pharmacist_id,
            pharmacist_name=pharmacy.pharmacist_name,
            dispensed_at=pharmacy.dispensed_at or utc_now_iso(),
        )

    async def _submit(self, handle: LedgerBackend, document: dict[str, Any]) -> TransactionReceipt:
        settings = self.connection.settings
        contents = canonical_bytes(document)
        # Outer bound in case the backend's own receipt timeout never fires.
        deadline = settings.confirm_timeout + settings.rpc_timeout
        try:
            receipt = await asyncio.wait_for(
                handle.submit_blob(contents, settings.max_transaction_fee, settings.confirm_timeout),
                timeout=deadline,
            )
        except asyncio.TimeoutError:
            raise LedgerTimeout(f"no consensus receipt within {deadline:.0f}s")

        if not receipt.transaction_id:
            raise SubmissionFailed("ledger acknowledgment carried no transaction id")
        if not receipt.blob_id:
            raise SubmissionFailed(f"ledger acknowledgment for {receipt.transaction_id} carried no blob id")
        if receipt.status != STATUS_SUCCESS:
            raise SubmissionFailed(f"ledger returned status {receipt.status} for {receipt.transaction_id}")
        return receipt

    async def _release(self, prescription_id: str) -> None:
        try:
            await self.index.release(prescription_id)
        except Exception as exc:
            log.error("could not release reservation for %s: %s", prescription_id, exc)

    @staticmethod
    def _as_ledger_error(exc: Exception) -> LedgerError:
        if isinstance(exc, LedgerError):
            return exc
        log.exception("unexpected submission error")
        return SubmissionFailed(str(exc) or exc.__class__.__name__)

    def _observe(self, record_type: str, prescription_id: str, t0: float,
                 failure: Optional[LedgerError] = None) -> None:
        if self.metrics is None:
            return
        self.metrics.record(SubmissionMetric(
            ts=utc_now_iso(),
            record_type=record_type,
            prescription_id=prescription_id,
            latency_ms=round((time.monotonic() - t0) * 1000, 2),
            success=failure is None,
            error_kind=failure.kind if failure else None,
        ))
