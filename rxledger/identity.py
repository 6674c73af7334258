"""
identity.py - Operator identity resolution.

The operator is the account whose key signs every ledger submission.
Credentials come from configuration as an account id plus a private key:

  account id   - Hedera form shard.realm.num (e.g. 0.0.4821) or a 0x EVM address
  private key  - ECDSA secp256k1, either 32 raw bytes in hex (optional 0x)
                 or DER hex (PKCS#8, including the short Hedera encoding)

ED25519 keys are recognised but rejected: submissions go through the
JSON-RPC relay, which only accepts secp256k1 signatures.

The private key is never logged and never part of any repr.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from eth_account import Account

from .config import OperatorCredentials
from .errors import InvalidIdentityFormat

log = logging.getLogger("rxledger.identity")

_HEDERA_ID = re.compile(r"^\d+\.\d+\.\d+$")
_EVM_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HEX = re.compile(r"^[0-9a-fA-F]+$")

# Short DER prefixes emitted by Hedera tooling (PrivateKey.toString()).
_HEDERA_ECDSA_DER_PREFIX = "3030020100300706052b8104000a04220420"
_HEDERA_ED25519_DER_PREFIX = "302e020100300506032b657004220420"

_SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class OperatorState(str, Enum):
    NOT_CONFIGURED = "not_configured"
    MALFORMED      = "malformed"
    BOUND          = "bound"


@dataclass(frozen=True)
class OperatorIdentity:
    account_id: str
    private_key: bytes = field(repr=False)
    evm_address: str = ""


@dataclass(frozen=True)
class OperatorResolution:
    state: OperatorState
    identity: Optional[OperatorIdentity] = None
    reason: str = ""


def is_valid_account_id(account_id: str) -> bool:
    return bool(_HEDERA_ID.match(account_id) or _EVM_ADDRESS.match(account_id))


def is_hedera_account_id(account_id: str) -> bool:
    return bool(_HEDERA_ID.match(account_id))


def parse_account_id(account_id: str) -> str:
    value = (account_id or "").strip()
    if not is_valid_account_id(value):
        raise InvalidIdentityFormat(f"Invalid account ID format: {value}")
    return value


def _secp256k1_scalar(value: int) -> bytes:
    if not 0 < value < _SECP256K1_ORDER:
        raise InvalidIdentityFormat("Invalid private key format: scalar out of range for secp256k1")
    return value.to_bytes(32, "big")


def parse_private_key(private_key: str) -> bytes:
    """Return the 32-byte secp256k1 private scalar encoded in `private_key`."""
    text = (private_key or "").strip()
    if text.lower().startswith("0x"):
        text = text[2:]
    if not text or not _HEX.match(text) or len(text) % 2:
        raise InvalidIdentityFormat("Invalid private key format: expected hex")

    lowered = text.lower()
    if len(lowered) == 64:
        return _secp256k1_scalar(int(lowered, 16))
    if lowered.startswith(_HEDERA_ECDSA_DER_PREFIX) and len(lowered) == len(_HEDERA_ECDSA_DER_PREFIX) + 64:
        return _secp256k1_scalar(int(lowered[len(_HEDERA_ECDSA_DER_PREFIX):], 16))
    if lowered.startswith(_HEDERA_ED25519_DER_PREFIX):
        raise InvalidIdentityFormat("ED25519 operator keys are not supported; use an ECDSA secp256k1 key")

    try:
        key = serialization.load_der_private_key(bytes.fromhex(lowered), password=None)
    except (ValueError, TypeError):
        raise InvalidIdentityFormat("Invalid private key format: not a DER-encoded private key")

    if isinstance(key, ed25519.Ed25519PrivateKey):
        raise InvalidIdentityFormat("ED25519 operator keys are not supported; use an ECDSA secp256k1 key")
    if isinstance(key, ec.EllipticCurvePrivateKey) and isinstance(key.curve, ec.SECP256K1):
        return key.private_numbers().private_value.to_bytes(32, "big")
    raise InvalidIdentityFormat("Invalid private key format: unsupported key type")


def resolve_operator(credentials: OperatorCredentials) -> OperatorResolution:
    """Turn raw credentials into an OperatorIdentity, or explain why not."""
    if not credentials.account_id and not credentials.private_key:
        return OperatorResolution(OperatorState.NOT_CONFIGURED,
                                  reason="operator credentials not found in environment")
    if not credentials.account_id:
        return OperatorResolution(OperatorState.NOT_CONFIGURED,
                                  reason="operator account id not set")
    if not credentials.private_key:
        return OperatorResolution(OperatorState.NOT_CONFIGURED,
                                  reason="operator private key not set")
    try:
        account_id = parse_account_id(credentials.account_id)
        key = parse_private_key(credentials.private_key)
    except InvalidIdentityFormat as exc:
        return OperatorResolution(OperatorState.MALFORMED, reason=exc.message)

    address = Account.from_key(key).address
    return OperatorResolution(
        OperatorState.BOUND,
        identity=OperatorIdentity(account_id=account_id, private_key=key, evm_address=address),
    )
