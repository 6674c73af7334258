"""
verifier.py - Ledger-backed verification.

verify_by_transaction_id is the only primitive: it asks the ledger for the
transaction and reports what came back. It does not interpret the status;
callers decide what a non-SUCCESS status means.

verify_by_prescription_id has no ledger index to use, so it resolves the id
through the PrescriptionIndex and then performs the same ledger query. With
no index configured it reports UnsupportedLookup.

verify_prescription is the pharmacy-facing check: the transaction must
exist, be SUCCESS, and its blob must be a prescription record carrying the
presented prescription id.

Outcomes are kept apart:
  NotFound                - the ledger (or index) has no such record
  NetworkError / Timeout  - the ledger could not be asked
"""
from __future__ import annotations

import logging
from typing import Optional

from .connection import LedgerConnection
from .errors import LedgerError, NetworkError, NotFound, RecordValidationError, UnsupportedLookup
from .hashing import decode_blob, utc_now_iso
from .index import PrescriptionIndex
from .ledger.adapter import STATUS_SUCCESS
from .schemas import RECORD_PRESCRIPTION, TransactionStatus, VerificationResult

log = logging.getLogger("rxledger.verifier")

_TRANSPORT_KINDS = {NetworkError.kind, "Timeout"}
_ENVELOPE_KEYS = {"recordType", "schemaVersion"}


def _failed_status(transaction_id: Optional[str], exc: LedgerError, message: str) -> TransactionStatus:
    return TransactionStatus(
        success=False,
        exists=False,
        transaction_id=transaction_id,
        message=message,
        error=exc.message,
        error_kind=exc.kind,
    )


class RecordVerifier:

    def __init__(self, connection: LedgerConnection, index: Optional[PrescriptionIndex] = None):
        self.connection = connection
        self.index = index

    async def verify_by_transaction_id(self, transaction_id: str) -> TransactionStatus:
        tx_id = (transaction_id or "").strip()
        try:
            handle = await self.connection.get_handle()
            if not handle.is_valid_transaction_id(tx_id):
                raise RecordValidationError(f"malformed transaction id {tx_id!r}")
            record = await handle.get_transaction(tx_id)
        except RecordValidationError as exc:
            return _failed_status(tx_id, exc, f"Transaction not found: {exc.message}")
        except LedgerError as exc:
            log.warning("ledger query failed tx=%s kind=%s: %s", tx_id, exc.kind, exc.message)
            return _failed_status(tx_id, exc, f"Ledger query failed: {exc.message}")

        if record is None:
            log.info("transaction not found tx=%s", tx_id)
            return _failed_status(tx_id, NotFound(f"transaction {tx_id} not found"),
                                  "Transaction not found on ledger")

        return TransactionStatus(
            success=True,
            exists=True,
            transaction_id=record.transaction_id,
            status=record.status,
            consensus_timestamp=record.consensus_timestamp,
            blob_id=record.blob_id,
            record=decode_blob(record.contents),
            message="Transaction verified on ledger",
        )

    async def verify_by_prescription_id(self, prescription_id: str) -> TransactionStatus:
        if self.index is None:
            exc = UnsupportedLookup("lookup by prescription id needs a prescription index")
            return _failed_status(None, exc, "Verification by prescription id is not supported; "
                                             "present the transaction id instead")
        try:
            tx_id = await self.index.lookup(prescription_id)
        except Exception as exc:
            log.error("prescription index lookup failed for %s: %s", prescription_id, exc)
            return _failed_status(None, NetworkError(str(exc)), "Prescription index unavailable")

        if tx_id is None:
            return _failed_status(None, NotFound(f"no ledger record indexed for {prescription_id}"),
                                  "Prescription not found on ledger")
        return await self.verify_by_transaction_id(tx_id)

    async def verify_prescription(
        self, prescription_id: str, transaction_id: Optional[str] = None
    ) -> VerificationResult:
        if transaction_id:
            status = await self.verify_by_transaction_id(transaction_id)
        else:
            status = await self.verify_by_prescription_id(prescription_id)

        if not status.exists:
            unavailable = status.error_kind in _TRANSPORT_KINDS
            return VerificationResult(
                success=False,
                verified=False,
                message=("Ledger unavailable, prescription could not be verified" if unavailable
                         else "Prescription not found on ledger"),
                timestamp=utc_now_iso(),
                error=status.error or status.message,
                error_kind=status.error_kind,
            )

        record = status.record or {}
        if record.get("recordType") != RECORD_PRESCRIPTION or record.get("prescriptionId") != prescription_id:
            log.warning("transaction %s does not record prescription %s", status.transaction_id, prescription_id)
            return VerificationResult(
                success=False,
                verified=False,
                message="Transaction does not record this prescription",
                timestamp=utc_now_iso(),
                error=f"transaction {status.transaction_id} does not record prescription {prescription_id}",
                error_kind=NotFound.kind,
            )

        details = {
            "transactionId": status.transaction_id,
            "status": status.status,
            "consensusTimestamp": status.consensus_timestamp,
            "fileId": status.blob_id,
            "network": self.connection.network_name,
            "dispensations": await self._dispensations(prescription_id),
        }
        if status.status != STATUS_SUCCESS:
            return VerificationResult(
                success=False,
                verified=False,
                message=f"Ledger reports status {status.status} for this prescription",
                transaction_details=details,
                timestamp=utc_now_iso(),
                error=f"transaction status {status.status}",
                error_kind="SubmissionFailed",
            )

        log.info("verified prescription_id=%s tx=%s", prescription_id, status.transaction_id)
        return VerificationResult(
            success=True,
            verified=True,
            message="Prescription verified on ledger",
            prescription_data={k: v for k, v in record.items() if k not in _ENVELOPE_KEYS},
            transaction_details=details,
            timestamp=utc_now_iso(),
        )

    async def _dispensations(self, prescription_id: str) -> list[str]:
        if self.index is None:
            return []
        try:
            return await self.index.dispensations(prescription_id)
        except Exception as exc:
            log.error("dispensation lookup failed for %s: %s", prescription_id, exc)
            return []
