"""
Test configuration for arkclient tests.

Provides a round builder that lays out a small but real round (round tx,
two-level VTXO tree, connector tree) and a scripted in-memory coordinator.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
from arkcore.coordinator import ListVtxosResult
from arkcore.crypto import KeyPair
from arkcore.events import (
    RoundFailed,
    RoundFinalization,
    RoundFinalized,
    RoundSigning,
    RoundSigningNoncesGenerated,
    RoundStreamEvent,
)
from arkcore.models import NetworkType, OutPoint, ServerInfo, VtxoOutPoint
from arkcore.musig import apply_taproot_tweak, key_agg, key_sort, nonce_agg, nonce_gen
from arkcore.psbt import Psbt
from arkcore.script import encode_p2tr_address, p2tr_script_pubkey
from arkcore.transaction import Transaction, TxIn, TxOut
from arkcore.tree import TreeNode, TxTree
from arkcore.vtxo import BoardingOutput, Vtxo
from arkwallet.models import BoardingOutpoints, BoardingUtxo, VirtualTxOutpoints, VtxoEntry

from arkclient.forfeit import VtxoInput
from arkclient.round_psbt import OnchainInput
from arkclient.settlement import RoundPlan
from arkclient.tree_signer import sweep_merkle_root

NOW = 1_700_000_000
CONNECTOR_VALUE = 1_000
FUNDING_OUTPOINT = OutPoint(txid="ee" * 32, vout=0)
LEAF_OUTPUT_KEY = b"\x02" * 32


@pytest.fixture
def server_keypair() -> KeyPair:
    return KeyPair.from_secret_hex("11" * 32)


@pytest.fixture
def owner_keypair() -> KeyPair:
    return KeyPair.from_secret_hex("22" * 32)


@pytest.fixture
def other_cosigner() -> KeyPair:
    return KeyPair.from_secret_hex("66" * 32)


@pytest.fixture
def server_info(server_keypair: KeyPair) -> ServerInfo:
    forfeit_key = KeyPair.from_secret_hex("55" * 32).xonly_public_key()
    return ServerInfo(
        pubkey=server_keypair.public_key_bytes().hex(),
        vtxo_tree_expiry=604672,
        unilateral_exit_delay=86528,
        boarding_exit_delay=604672,
        round_interval=10,
        network=NetworkType.REGTEST,
        dust=1000,
        forfeit_address=encode_p2tr_address(forfeit_key, NetworkType.REGTEST),
    )


@pytest.fixture
def vtxo(server_info: ServerInfo, owner_keypair: KeyPair) -> Vtxo:
    return Vtxo(
        server_info.xonly_pubkey,
        owner_keypair.xonly_public_key(),
        server_info.unilateral_exit_delay,
        server_info.network,
    )


@pytest.fixture
def boarding_output(server_info: ServerInfo, owner_keypair: KeyPair) -> BoardingOutput:
    return BoardingOutput(
        server_info.xonly_pubkey,
        owner_keypair.xonly_public_key(),
        server_info.boarding_exit_delay,
        server_info.network,
    )


@pytest.fixture
def make_vtxo_entry(vtxo: Vtxo) -> Callable[..., VtxoEntry]:
    counter = iter(range(1, 1_000))

    def _make(amount: int, expire_at: int = NOW + 3600) -> VtxoEntry:
        outpoint = VtxoOutPoint(
            outpoint=OutPoint(txid=f"{next(counter):064x}", vout=0),
            amount=amount,
            expire_at=expire_at,
        )
        return VtxoEntry(vtxo, outpoint)

    return _make


@pytest.fixture
def make_boarding_utxo(boarding_output: BoardingOutput) -> Callable[..., BoardingUtxo]:
    counter = iter(range(1, 1_000))

    def _make(amount: int) -> BoardingUtxo:
        return BoardingUtxo(
            boarding_output,
            OutPoint(txid=f"b{next(counter):063x}", vout=1),
            amount,
            confirmation_blocktime=NOW - 600,
        )

    return _make


class RoundBuilder:
    """Lays out the transactions a coordinator would hand out for one round."""

    def __init__(self, server_info: ServerInfo):
        self.server_info = server_info

    def tree_script(self, cosigners: list[bytes]) -> bytes:
        merkle_root = sweep_merkle_root(
            self.server_info.vtxo_tree_expiry, self.server_info.xonly_pubkey
        )
        ctx = apply_taproot_tweak(key_agg(key_sort(cosigners)), merkle_root)
        return p2tr_script_pubkey(ctx.xonly_key)

    def round_tx(
        self,
        cosigners: list[bytes],
        tree_value: int,
        onchain_inputs: list[OnchainInput] | None = None,
        connector_count: int = 0,
    ) -> Psbt:
        onchain_inputs = onchain_inputs or []
        outputs = [TxOut(tree_value, self.tree_script(cosigners))]
        if connector_count:
            server_spk = p2tr_script_pubkey(self.server_info.xonly_pubkey)
            outputs.append(TxOut(CONNECTOR_VALUE * connector_count, server_spk))

        tx = Transaction(
            inputs=[TxIn(txid=FUNDING_OUTPOINT.txid, vout=FUNDING_OUTPOINT.vout)]
            + [TxIn(txid=i.outpoint.txid, vout=i.outpoint.vout) for i in onchain_inputs],
            outputs=outputs,
        )
        psbt = Psbt.from_unsigned_tx(tx)
        psbt.set_witness_utxo(
            0, TxOut(10_000_000, p2tr_script_pubkey(self.server_info.xonly_pubkey))
        )
        return psbt

    def vtxo_tree(self, round_psbt: Psbt, cosigners: list[bytes]) -> TxTree:
        """Root node splitting the tree output in two, plus two leaves."""
        tree_output = round_psbt.tx.outputs[0]
        half = tree_output.value // 2
        root_psbt = Psbt.from_unsigned_tx(
            Transaction(
                inputs=[TxIn(txid=round_psbt.txid, vout=0)],
                outputs=[
                    TxOut(half, tree_output.script_pubkey),
                    TxOut(tree_output.value - half, tree_output.script_pubkey),
                ],
            )
        )
        root = TreeNode(root_psbt.txid, root_psbt, round_psbt.txid, list(cosigners))

        leaves = []
        for vout, output in enumerate(root_psbt.tx.outputs):
            leaf_psbt = Psbt.from_unsigned_tx(
                Transaction(
                    inputs=[TxIn(txid=root_psbt.txid, vout=vout)],
                    outputs=[TxOut(output.value, p2tr_script_pubkey(LEAF_OUTPUT_KEY))],
                )
            )
            leaves.append(
                TreeNode(leaf_psbt.txid, leaf_psbt, root_psbt.txid, list(cosigners), leaf=True)
            )
        return TxTree([[root], leaves])

    def connector_tree(
        self, round_psbt: Psbt, vtxo_outpoints: list[OutPoint]
    ) -> tuple[TxTree, dict[OutPoint, OutPoint]]:
        if not vtxo_outpoints:
            return TxTree(), {}
        server_spk = p2tr_script_pubkey(self.server_info.xonly_pubkey)
        psbt = Psbt.from_unsigned_tx(
            Transaction(
                inputs=[TxIn(txid=round_psbt.txid, vout=1)],
                outputs=[TxOut(CONNECTOR_VALUE, server_spk) for _ in vtxo_outpoints],
            )
        )
        node = TreeNode(psbt.txid, psbt, round_psbt.txid, leaf=True)
        index = {
            outpoint: OutPoint(txid=psbt.txid, vout=vout)
            for vout, outpoint in enumerate(vtxo_outpoints)
        }
        return TxTree([[node]]), index


@pytest.fixture
def round_builder(server_info: ServerInfo) -> RoundBuilder:
    return RoundBuilder(server_info)


def _copy(psbt: Psbt) -> Psbt:
    return Psbt.from_base64(psbt.to_base64())


class FakeCoordinator:
    """
    In-memory coordinator that plays one round.

    ``script`` lists event factories; each is called only when the client
    asks for the next event, so later events can depend on what the client
    submitted. Every RPC is recorded in ``calls`` in order.
    """

    def __init__(self, server_info: ServerInfo, builder: RoundBuilder, other: KeyPair):
        self.server_info = server_info
        self.builder = builder
        self.other = other
        self.plan: RoundPlan | None = None
        self.script: list[Callable[[], RoundStreamEvent]] = []
        self.hang_after_script = False

        self.calls: list[str] = []
        self.payment_id = "payment-1"
        self.registered_inputs: list[Any] = []
        self.registered_outputs: list[Any] = []
        self.cosigner_pubkeys: list[bytes] = []
        self.submitted_nonces: list[list[bytes | None]] | None = None
        self.submitted_signatures: list[list[bytes | None]] | None = None
        self.submitted_forfeits: list[Psbt] | None = None
        self.submitted_round_psbt: Psbt | None = None
        self.submitted_redeem: Psbt | None = None
        self.stream_closed = False

        self.round_psbt: Psbt | None = None
        self.vtxo_tree: TxTree | None = None
        self.other_nonces: list[list[Any]] = []
        self.agg_nonces: list[list[bytes | None]] = []

    def happy_path(self, round_id: str = "round-1") -> None:
        self.script = [
            lambda: self.signing_event(round_id),
            lambda: self.nonces_event(round_id),
            lambda: self.finalization_event(round_id),
            lambda: self.finalized_event(round_id),
        ]

    def all_cosigners(self) -> list[bytes]:
        return [*self.cosigner_pubkeys, self.other.public_key_bytes()]

    # Event factories

    def signing_event(self, round_id: str) -> RoundSigning:
        assert self.plan is not None
        tree_value = sum(o.amount for o in self.plan.outputs)
        self.round_psbt = self.builder.round_tx(
            self.all_cosigners(),
            tree_value,
            self.plan.onchain_inputs,
            connector_count=len(self.plan.vtxo_inputs),
        )
        self.vtxo_tree = self.builder.vtxo_tree(self.round_psbt, self.all_cosigners())
        return RoundSigning(
            id=round_id,
            unsigned_tree=self.vtxo_tree,
            unsigned_round_tx=_copy(self.round_psbt),
            cosigner_pubkeys=self.all_cosigners(),
        )

    def nonces_event(self, round_id: str) -> RoundSigningNoncesGenerated:
        assert self.vtxo_tree is not None and self.submitted_nonces is not None
        self.other_nonces = [
            [nonce_gen(self.other.public_key_bytes()) for _ in level]
            for level in self.vtxo_tree.levels
        ]
        self.agg_nonces = [
            [
                nonce_agg([ours, theirs[1]]) if ours is not None else None
                for ours, theirs in zip(our_level, other_level)
            ]
            for our_level, other_level in zip(self.submitted_nonces, self.other_nonces)
        ]
        return RoundSigningNoncesGenerated(id=round_id, tree_nonces=self.agg_nonces)

    def finalization_event(self, round_id: str) -> RoundFinalization:
        assert self.plan is not None and self.round_psbt is not None
        connector_tree, index = self.builder.connector_tree(
            self.round_psbt, [i.outpoint for i in self.plan.vtxo_inputs]
        )
        return RoundFinalization(
            id=round_id,
            round_tx=_copy(self.round_psbt),
            connector_tree=connector_tree,
            connectors_index=index,
            min_relay_fee_rate=1000,
        )

    def finalized_event(self, round_id: str) -> RoundFinalized:
        txid = self.round_psbt.txid if self.round_psbt is not None else "ff" * 32
        return RoundFinalized(id=round_id, round_txid=txid)

    def failed_event(self, round_id: str, reason: str = "not enough participants") -> RoundFailed:
        return RoundFailed(id=round_id, reason=reason)

    # Coordinator RPCs

    async def get_info(self) -> ServerInfo:
        self.calls.append("get_info")
        return self.server_info

    async def list_vtxos(self, address: str) -> ListVtxosResult:
        self.calls.append("list_vtxos")
        return ListVtxosResult()

    async def register_inputs_for_next_round(self, inputs: list[Any]) -> str:
        self.calls.append("register_inputs")
        self.registered_inputs = inputs
        return self.payment_id

    async def register_outputs_for_next_round(
        self,
        payment_id: str,
        outputs: list[Any],
        cosigner_pubkeys: list[bytes],
        signing_all: bool,
    ) -> None:
        self.calls.append("register_outputs")
        self.registered_outputs = outputs
        self.cosigner_pubkeys = list(cosigner_pubkeys)

    async def ping(self, payment_id: str) -> None:
        self.calls.append("ping")

    def get_event_stream(self) -> AsyncIterator[RoundStreamEvent]:
        self.calls.append("get_event_stream")
        return self._stream()

    async def _stream(self) -> AsyncIterator[RoundStreamEvent]:
        try:
            for make_event in self.script:
                yield make_event()
            if self.hang_after_script:
                await asyncio.sleep(3600)
        finally:
            self.stream_closed = True

    async def submit_tree_nonces(
        self, round_id: str, cosigner_pubkey: bytes, nonce_tree: list[list[bytes | None]]
    ) -> None:
        self.calls.append("submit_tree_nonces")
        self.submitted_nonces = nonce_tree

    async def submit_tree_signatures(
        self, round_id: str, cosigner_pubkey: bytes, partial_sig_tree: list[list[bytes | None]]
    ) -> None:
        self.calls.append("submit_tree_signatures")
        self.submitted_signatures = partial_sig_tree

    async def submit_signed_forfeit_txs(
        self, forfeit_txs: list[Psbt], round_psbt: Psbt | None
    ) -> None:
        self.calls.append("submit_signed_forfeit_txs")
        self.submitted_forfeits = forfeit_txs
        self.submitted_round_psbt = round_psbt

    async def submit_redeem_transaction(self, redeem_psbt: Psbt) -> Psbt:
        self.calls.append("submit_redeem_transaction")
        self.submitted_redeem = redeem_psbt
        return _copy(redeem_psbt)

    async def close(self) -> None:
        self.calls.append("close")


@pytest.fixture
def fake_coordinator(
    server_info: ServerInfo, round_builder: RoundBuilder, other_cosigner: KeyPair
) -> FakeCoordinator:
    return FakeCoordinator(server_info, round_builder, other_cosigner)


@pytest.fixture
def empty_boarding() -> BoardingOutpoints:
    return BoardingOutpoints()


@pytest.fixture
def empty_virtual() -> VirtualTxOutpoints:
    return VirtualTxOutpoints()


@pytest.fixture
def vtxo_input(vtxo: Vtxo) -> VtxoInput:
    return VtxoInput(vtxo, OutPoint(txid="ab" * 32, vout=0), 50_000)
