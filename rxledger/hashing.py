"""
Canonical encoding for ledger blobs, plus id and timestamp helpers.

A blob is the UTF-8 bytes of compact JSON with keys sorted at every level and
the text NFC-normalised, so the same record always yields the same bytes and
the same SHA-256 digest regardless of key order or Unicode composition.
"""
import hashlib
import json
import secrets
import string
import time
import unicodedata
from datetime import datetime, timezone

_ID_ALPHABET = string.ascii_uppercase + string.digits


def canonical_json(payload: dict) -> str:
    text = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return unicodedata.normalize("NFC", text)


def canonical_bytes(payload: dict) -> bytes:
    return canonical_json(payload).encode("utf-8")


def compute_payload_hash(payload: dict) -> str:
    """SHA-256 hex digest of the canonical blob."""
    return hashlib.sha256(canonical_bytes(payload)).hexdigest()


def decode_blob(blob: bytes) -> dict | None:
    """Parse a ledger blob back into a dict; None if it is not one of ours."""
    try:
        data = json.loads(blob.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def generate_prescription_id() -> str:
    """RX + epoch millis + 6 random uppercase alphanumerics."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"RX{time.time_ns() // 1_000_000}{suffix}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def epoch_to_iso(seconds: float) -> str:
    return datetime.fromtimestamp(seconds, timezone.utc).isoformat(timespec="seconds")
