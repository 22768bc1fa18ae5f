"""
Test configuration for arkcore tests.
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from arkcore.crypto import KeyPair
from arkcore.models import NetworkType, ServerInfo
from arkcore.psbt import Psbt
from arkcore.script import p2tr_script_pubkey
from arkcore.transaction import Transaction, TxIn, TxOut


@pytest.fixture
def server_keypair() -> KeyPair:
    return KeyPair.from_secret_hex("11" * 32)


@pytest.fixture
def owner_keypair() -> KeyPair:
    return KeyPair.from_secret_hex("22" * 32)


@pytest.fixture
def server_info(server_keypair: KeyPair) -> ServerInfo:
    return ServerInfo(
        pubkey=server_keypair.public_key_bytes().hex(),
        vtxo_tree_expiry=604672,
        unilateral_exit_delay=86528,
        boarding_exit_delay=604672,
        round_interval=10,
        network=NetworkType.REGTEST,
        dust=546,
        forfeit_address="bcrt1q8wwcz2axjnlwhmkrm0z5wsuhvkp4rl7aajhpv2",
    )


@pytest.fixture
def make_psbt() -> Callable[..., Psbt]:
    """Factory for one-input, one-output PSBTs spending a given outpoint."""

    def _make(txid: str = "aa" * 32, vout: int = 0, value: int = 10_000) -> Psbt:
        tx = Transaction(
            version=2,
            inputs=[TxIn(txid=txid, vout=vout)],
            outputs=[TxOut(value, p2tr_script_pubkey(b"\x01" * 32))],
        )
        return Psbt.from_unsigned_tx(tx)

    return _make
