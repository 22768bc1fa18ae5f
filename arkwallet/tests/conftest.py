"""
Test configuration for arkwallet tests.
"""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest
from arkcore.coordinator import ListVtxosResult
from arkcore.crypto import KeyPair
from arkcore.models import NetworkType, OutPoint, ServerInfo, VtxoOutPoint

NOW = 1_700_000_000


@pytest.fixture
def now() -> int:
    return NOW


@pytest.fixture
def keypair() -> KeyPair:
    return KeyPair.from_secret_hex("33" * 32)


@pytest.fixture
def server_info() -> ServerInfo:
    server = KeyPair.from_secret_hex("44" * 32)
    return ServerInfo(
        pubkey=server.public_key_bytes().hex(),
        vtxo_tree_expiry=604672,
        unilateral_exit_delay=86528,
        boarding_exit_delay=604672,
        network=NetworkType.REGTEST,
        dust=1000,
        forfeit_address="bcrt1q8wwcz2axjnlwhmkrm0z5wsuhvkp4rl7aajhpv2",
    )


@pytest.fixture
def make_vtxo() -> Callable[..., VtxoOutPoint]:
    counter = iter(range(1, 1_000))

    def _make(amount: int, expire_at: int = NOW + 3600, **kwargs) -> VtxoOutPoint:
        index = next(counter)
        return VtxoOutPoint(
            outpoint=OutPoint(txid=f"{index:064x}", vout=0),
            amount=amount,
            expire_at=expire_at,
            **kwargs,
        )

    return _make


@pytest.fixture
def mock_coordinator() -> AsyncMock:
    coordinator = AsyncMock()
    coordinator.list_vtxos.return_value = ListVtxosResult()
    return coordinator


@pytest.fixture
def mock_explorer() -> AsyncMock:
    explorer = AsyncMock()
    explorer.find_outpoints.return_value = []
    return explorer
