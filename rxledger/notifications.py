"""
notifications.py - Patient notification boundary.

Delivery (SMS/email) is an external service. The gateway only calls
send_prescription_notifications after a prescription is confirmed on the
ledger. The default dispatcher logs the delivery instead of sending it.
"""
from __future__ import annotations

import logging
from typing import Optional

from .schemas import NotificationResult, PrescriptionPayload

log = logging.getLogger("rxledger.notify")


def mask_contact(value: str) -> str:
    if "@" in value:
        user, _, domain = value.partition("@")
        return f"{user[:1]}***@{domain}"
    return f"***{value[-4:]}" if len(value) > 4 else "***"


class NotificationDispatcher:

    async def send_prescription_notifications(
        self, payload: PrescriptionPayload, verification_url: str, transaction_id: str,
    ) -> list[NotificationResult]:
        raise NotImplementedError


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Records what would be sent; no external delivery."""

    async def send_prescription_notifications(
        self, payload: PrescriptionPayload, verification_url: str, transaction_id: str,
    ) -> list[NotificationResult]:
        targets: list[tuple[str, Optional[str]]] = [
            ("email", payload.patient_email),
            ("sms", payload.patient_phone),
        ]
        results = []
        for channel, recipient in targets:
            if not recipient:
                continue
            log.info("notify channel=%s to=%s prescription_id=%s tx=%s url=%s",
                     channel, mask_contact(recipient), payload.prescription_id,
                     transaction_id, verification_url)
            results.append(NotificationResult(
                channel=channel,
                recipient=mask_contact(recipient),
                success=True,
                message=f"Prescription {payload.prescription_id} sent via {channel}",
            ))
        return results
