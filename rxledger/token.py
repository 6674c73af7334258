"""
token.py - Scannable verification tokens.

A token binds a prescription id to the transaction that recorded it:

  {"issuedAt": ..., "prescriptionId": ..., "transactionId": ..., "verificationUrl": ...}

It is encoded as compact canonical JSON in a QR symbol, rendered as a
300x300 black-on-white PNG. The token proves nothing by itself; a scanner
must feed transactionId back into RecordVerifier.
"""
from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from typing import Callable
from urllib.parse import quote

import qrcode
from PIL import Image
from pydantic import ValidationError
from qrcode.constants import ERROR_CORRECT_M

from .errors import RecordValidationError
from .hashing import canonical_json, utc_now_iso
from .schemas import VerificationToken

log = logging.getLogger("rxledger.token")

QR_SIZE = 300
QR_BORDER = 2
DARK = "#000000"
LIGHT = "#FFFFFF"


@dataclass(frozen=True)
class RenderedToken:
    token: VerificationToken
    payload: str
    png: bytes

    @property
    def data_url(self) -> str:
        return "data:image/png;base64," + base64.b64encode(self.png).decode("ascii")


def encode_token(token: VerificationToken) -> str:
    return canonical_json(token.model_dump(by_alias=True))


def decode_token(payload: str) -> VerificationToken:
    """Parse a scanned QR payload back into a VerificationToken."""
    try:
        return VerificationToken.model_validate_json(payload)
    except ValidationError as exc:
        raise RecordValidationError(f"not a verification token: {exc.error_count()} invalid field(s)")


class VerificationTokenBuilder:

    def __init__(self, base_url: str, size: int = QR_SIZE, border: int = QR_BORDER,
                 clock: Callable[[], str] = utc_now_iso):
        self.base_url = base_url.rstrip("/")
        self.size = size
        self.border = border
        self._clock = clock

    def verification_url(self, prescription_id: str) -> str:
        return f"{self.base_url}/verify/{quote(prescription_id, safe='')}"

    def build(self, transaction_id: str, prescription_id: str) -> RenderedToken:
        if not transaction_id or not prescription_id:
            raise RecordValidationError("transaction id and prescription id are both required")
        token = VerificationToken(
            prescription_id=prescription_id,
            transaction_id=transaction_id,
            verification_url=self.verification_url(prescription_id),
            issued_at=self._clock(),
        )
        payload = encode_token(token)
        png = self.render(payload)
        log.info("token built prescription_id=%s tx=%s bytes=%d", prescription_id, transaction_id, len(png))
        return RenderedToken(token=token, payload=payload, png=png)

    def render(self, payload: str) -> bytes:
        """Render `payload` as a fixed-size two-tone PNG."""
        qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, border=self.border)
        qr.add_data(payload)
        qr.make(fit=True)

        # Whole-pixel modules, centred on a fixed canvas.
        span = qr.modules_count + 2 * self.border
        qr.box_size = max(1, self.size // span)
        symbol = qr.make_image(fill_color=DARK, back_color=LIGHT)

        buf = io.BytesIO()
        symbol.save(buf)
        buf.seek(0)
        with Image.open(buf) as img:
            symbol_img = img.convert("1")
            if symbol_img.size[0] > self.size:
                symbol_img = symbol_img.resize((self.size, self.size), Image.Resampling.NEAREST)
            canvas = Image.new("1", (self.size, self.size), 1)
            offset = (self.size - symbol_img.size[0]) // 2
            canvas.paste(symbol_img, (offset, offset))

        out = io.BytesIO()
        canvas.save(out, format="PNG")
        return out.getvalue()
