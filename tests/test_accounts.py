"""
Tests for account diagnostics and local key generation.
"""
import asyncio

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from conftest import OPERATOR_ID, stub_of
from rxledger.accounts import UNREGISTERED_ACCOUNT, AccountInspector, generate_key_pair
from rxledger.errors import InvalidIdentityFormat, NetworkError
from rxledger.identity import parse_private_key


def test_ed25519_key_pair():
    pair = generate_key_pair("ed25519")
    assert pair.algorithm == "ed25519"
    assert pair.account_id == UNREGISTERED_ACCOUNT
    assert len(pair.private_key_raw) == 64

    key = serialization.load_der_private_key(bytes.fromhex(pair.private_key), password=None)
    assert isinstance(key, ed25519.Ed25519PrivateKey)
    public = key.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    assert public.hex() == pair.public_key


def test_ecdsa_key_pair_is_usable_as_operator_key():
    pair = generate_key_pair("ecdsa")
    assert parse_private_key(pair.private_key) == bytes.fromhex(pair.private_key_raw)
    assert parse_private_key(pair.private_key_raw) == bytes.fromhex(pair.private_key_raw)


def test_key_pairs_are_fresh():
    assert generate_key_pair().private_key != generate_key_pair().private_key


def test_unknown_algorithm_is_rejected():
    with pytest.raises(InvalidIdentityFormat):
        generate_key_pair("rsa")


def test_balance_in_native_unit(unbound_connection):
    inspector = AccountInspector(unbound_connection)

    async def scenario():
        handle = stub_of(await unbound_connection.get_handle())
        handle.set_balance(OPERATOR_ID, 1_050_000_000)
        return await inspector.get_balance(OPERATOR_ID), await inspector.get_balance("0.0.7")

    funded, empty = asyncio.run(scenario())
    assert funded == "10.5 hbar"
    assert empty == "0 hbar"


def test_account_info(connection):
    inspector = AccountInspector(connection)

    async def scenario():
        handle = stub_of(await connection.get_handle())
        handle.set_balance(OPERATOR_ID, 2_000_000_000)
        return await inspector.get_account_info(OPERATOR_ID)

    info = asyncio.run(scenario())
    assert info.account_id == OPERATOR_ID
    assert info.balance == "20 hbar"
    assert info.balance_base_units == "2000000000"
    assert info.network == "testnet"


def test_malformed_account_id_is_rejected_without_a_query(connection):
    inspector = AccountInspector(connection)

    async def scenario():
        with pytest.raises(InvalidIdentityFormat):
            await inspector.get_balance("account-7")
        return stub_of(await connection.get_handle())

    assert asyncio.run(scenario()).network_calls == 0


def test_network_failure_propagates(connection):
    inspector = AccountInspector(connection)

    async def scenario():
        handle = stub_of(await connection.get_handle())
        handle.fail_next = NetworkError("mirror node unreachable")
        with pytest.raises(NetworkError):
            await inspector.get_balance(OPERATOR_ID)

    asyncio.run(scenario())


def test_account_creation_is_not_available(connection):
    with pytest.raises(NotImplementedError):
        asyncio.run(AccountInspector(connection).create_account())
