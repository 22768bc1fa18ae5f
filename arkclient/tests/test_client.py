"""
Tests for ArkClient wallet operations.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from arkcore.coordinator import ListVtxosResult
from arkcore.crypto import KeyPair
from arkcore.errors import ArkError, ConversionError, InsufficientFunds, WalletNotFoundError
from arkcore.models import ExplorerUtxo, NetworkType, OutPoint, VtxoOutPoint
from arkcore.vtxo import ArkAddress, Vtxo

from arkclient.client import ArkClient
from arkclient.config import Settings
from arkclient.settlement import SettlementOutcome

OWNER_SECRET = "22" * 32


@pytest.fixture
def settings() -> Settings:
    return Settings(server_url="http://coordinator", esplora_url="http://esplora")


@pytest.fixture
def explorer() -> AsyncMock:
    explorer = AsyncMock()
    explorer.find_outpoints.return_value = []
    return explorer


@pytest.fixture
def client(settings, fake_coordinator, explorer) -> ArkClient:
    return ArkClient(settings, coordinator=fake_coordinator, explorer=explorer)


@pytest.mark.asyncio
async def test_connect_fetches_server_info(client, fake_coordinator, server_info):
    info = await client.connect()
    assert info == server_info
    assert client.server_info == server_info
    assert fake_coordinator.calls == ["get_info"]


@pytest.mark.asyncio
async def test_connect_rejects_network_mismatch(fake_coordinator, explorer):
    settings = Settings(network=NetworkType.MAINNET)
    client = ArkClient(settings, coordinator=fake_coordinator, explorer=explorer)

    with pytest.raises(ArkError, match="regtest"):
        await client.connect()
    assert client.server_info is None


@pytest.mark.asyncio
async def test_wallets_require_connection(client):
    with pytest.raises(ArkError, match="Not connected"):
        await client.create_wallet()


@pytest.mark.asyncio
async def test_create_and_get_wallet(client, owner_keypair):
    await client.connect()

    wallet_id = await client.create_wallet(OWNER_SECRET)
    wallet = await client.get_wallet(wallet_id)

    assert wallet.keypair.public_key_bytes() == owner_keypair.public_key_bytes()
    assert wallet.offchain_address().startswith("tark1")
    assert await client.create_wallet() != wallet_id

    with pytest.raises(WalletNotFoundError):
        await client.get_wallet("missing")


@pytest.mark.asyncio
async def test_get_balance(client, fake_coordinator, explorer):
    fake_coordinator.list_vtxos = AsyncMock(
        return_value=ListVtxosResult(
            spendable=[
                VtxoOutPoint(
                    outpoint=OutPoint(txid="01" * 32, vout=0), amount=7_000, expire_at=2**40
                )
            ]
        )
    )
    explorer.find_outpoints.return_value = [
        ExplorerUtxo(outpoint=OutPoint(txid="02" * 32, vout=1), amount=3_000)
    ]
    await client.connect()
    wallet_id = await client.create_wallet(OWNER_SECRET)

    balance = await client.get_balance(wallet_id)

    assert balance.offchain_spendable == 7_000
    assert balance.boarding_pending == 3_000


@pytest.mark.asyncio
async def test_settle_with_nothing_spendable(client, fake_coordinator):
    fake_coordinator.list_vtxos = AsyncMock(return_value=ListVtxosResult())
    await client.connect()
    wallet_id = await client.create_wallet(OWNER_SECRET)

    result = await client.settle(wallet_id)

    assert result.outcome == SettlementOutcome.NOTHING_TO_SETTLE
    assert fake_coordinator.calls == ["get_info"]


@pytest.mark.asyncio
async def test_settle_everything_to_own_address(client, fake_coordinator):
    fake_coordinator.list_vtxos = AsyncMock(
        return_value=ListVtxosResult(
            spendable=[
                VtxoOutPoint(
                    outpoint=OutPoint(txid="03" * 32, vout=0), amount=12_000, expire_at=2**40
                )
            ]
        )
    )
    await client.connect()
    wallet_id = await client.create_wallet(OWNER_SECRET)
    wallet = await client.get_wallet(wallet_id)

    captured = {}
    original_outputs = fake_coordinator.register_outputs_for_next_round

    async def register_outputs(payment_id, outputs, cosigner_pubkeys, signing_all):
        captured["outputs"] = outputs
        await original_outputs(payment_id, outputs, cosigner_pubkeys, signing_all)
        raise ArkError("stop after registration")

    fake_coordinator.register_outputs_for_next_round = register_outputs

    with pytest.raises(ArkError, match="stop after registration"):
        await client.settle(wallet_id)

    assert [(o.address, o.amount) for o in captured["outputs"]] == [
        (wallet.offchain_address(), 12_000)
    ]
    assert not client.registry.is_busy(wallet_id)


@pytest.mark.asyncio
async def test_settlements_for_one_wallet_are_serialized(client, fake_coordinator):
    fake_coordinator.list_vtxos = AsyncMock(return_value=ListVtxosResult())
    await client.connect()
    wallet_id = await client.create_wallet(OWNER_SECRET)

    async with client.registry.exclusive(wallet_id):
        pending = asyncio.create_task(client.settle(wallet_id))
        await asyncio.sleep(0.01)
        assert not pending.done()

    result = await pending
    assert result.outcome == SettlementOutcome.NOTHING_TO_SETTLE


@pytest.mark.asyncio
async def test_close(client, fake_coordinator, explorer):
    await client.close()
    assert fake_coordinator.calls == ["close"]
    explorer.close.assert_awaited_once()


@pytest.fixture
def recipient_address(server_info) -> str:
    other = KeyPair.from_secret_hex("77" * 32)
    return Vtxo(
        server_info.xonly_pubkey,
        other.xonly_public_key(),
        server_info.unilateral_exit_delay,
        server_info.network,
    ).address()


@pytest.mark.asyncio
async def test_send_submits_signed_redeem_tx(client, fake_coordinator, recipient_address):
    fake_coordinator.list_vtxos = AsyncMock(
        return_value=ListVtxosResult(
            spendable=[
                VtxoOutPoint(
                    outpoint=OutPoint(txid="04" * 32, vout=0), amount=20_000, expire_at=2**40
                )
            ]
        )
    )
    await client.connect()
    wallet_id = await client.create_wallet(OWNER_SECRET)
    wallet = await client.get_wallet(wallet_id)

    txid = await client.send(wallet_id, recipient_address, 5_000)

    redeem = fake_coordinator.submitted_redeem
    assert txid == redeem.txid
    assert fake_coordinator.calls == ["get_info", "submit_redeem_transaction"]
    assert [i.outpoint for i in redeem.tx.inputs] == [OutPoint(txid="04" * 32, vout=0)]
    assert [(o.value, o.script_pubkey) for o in redeem.tx.outputs] == [
        (5_000, ArkAddress.decode(recipient_address, NetworkType.REGTEST).script_pubkey),
        (15_000, wallet.vtxo.script_pubkey),
    ]
    assert (wallet.keypair.xonly_public_key(), wallet.vtxo.forfeit_leaf_hash) in (
        redeem.tap_script_sigs(0)
    )
    assert not client.registry.is_busy(wallet_id)


@pytest.mark.asyncio
async def test_send_rejects_address_of_other_coordinator(client, fake_coordinator):
    stranger = KeyPair.from_secret_hex("88" * 32)
    address = Vtxo(
        stranger.xonly_public_key(),
        stranger.xonly_public_key(),
        86528,
        NetworkType.REGTEST,
    ).address()
    await client.connect()
    wallet_id = await client.create_wallet(OWNER_SECRET)

    with pytest.raises(ConversionError, match="different coordinator"):
        await client.send(wallet_id, address, 5_000)
    assert "submit_redeem_transaction" not in fake_coordinator.calls


@pytest.mark.asyncio
async def test_send_with_insufficient_funds(client, fake_coordinator, recipient_address):
    fake_coordinator.list_vtxos = AsyncMock(return_value=ListVtxosResult())
    await client.connect()
    wallet_id = await client.create_wallet(OWNER_SECRET)

    with pytest.raises(InsufficientFunds):
        await client.send(wallet_id, recipient_address, 5_000)
    assert fake_coordinator.submitted_redeem is None
