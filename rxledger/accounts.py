"""
accounts.py - Read-only account diagnostics and key generation.

Independent of the record/verification flow: no operator is needed.
Key pairs are generated locally; the ledger only assigns an account id once
a key is registered on-network, which this service does not do.
"""
from __future__ import annotations

import logging

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519

from .connection import LedgerConnection
from .errors import InvalidIdentityFormat
from .identity import parse_account_id
from .schemas import AccountInfo, KeyPair

log = logging.getLogger("rxledger.accounts")

UNREGISTERED_ACCOUNT = "Generated - needs to be created on network"


def _der_hex(key) -> tuple[str, str]:
    private_der = key.private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    public_der = key.public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_der.hex(), public_der.hex()


def generate_key_pair(algorithm: str = "ed25519") -> KeyPair:
    """Generate a fresh key pair, DER hex encoded (the form ledger tooling accepts)."""
    if algorithm == "ed25519":
        key = ed25519.Ed25519PrivateKey.generate()
        raw = key.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )
    elif algorithm == "ecdsa":
        key = ec.generate_private_key(ec.SECP256K1())
        raw = key.private_numbers().private_value.to_bytes(32, "big")
    else:
        raise InvalidIdentityFormat(f"unsupported key algorithm {algorithm!r}")

    private_hex, public_hex = _der_hex(key)
    log.info("generated %s key pair", algorithm)
    return KeyPair(
        algorithm=algorithm,
        private_key=private_hex,
        private_key_raw=raw.hex(),
        public_key=public_hex,
        account_id=UNREGISTERED_ACCOUNT,
    )


class AccountInspector:

    def __init__(self, connection: LedgerConnection):
        self.connection = connection

    async def get_balance(self, account_id: str) -> str:
        """Balance as a decimal string in the network's native unit."""
        balance = await self._query(account_id)
        return f"{balance.amount:f} {balance.unit}"

    async def get_account_info(self, account_id: str) -> AccountInfo:
        balance = await self._query(account_id)
        return AccountInfo(
            account_id=balance.account_id,
            balance=f"{balance.amount:f} {balance.unit}",
            balance_base_units=str(balance.base_units),
            unit=balance.unit,
            network=self.connection.network_name,
            evm_address=balance.evm_address,
        )

    def generate_key_pair(self, algorithm: str = "ed25519") -> KeyPair:
        return generate_key_pair(algorithm)

    async def create_account(self, initial_balance: float = 1000) -> None:
        raise NotImplementedError("account creation requires operator-funded registration and is not implemented")

    async def _query(self, account_id: str):
        account_id = parse_account_id(account_id)
        handle = await self.connection.get_handle()
        return await handle.get_balance(account_id)
