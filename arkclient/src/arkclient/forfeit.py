"""
Forfeit transactions for VTXOs consumed by a round.

A forfeit spends the VTXO together with a connector output of the round and
pays both to the coordinator's forfeit address. The connector makes the
forfeit valid only if the round transaction confirms.
"""

from __future__ import annotations

from dataclasses import dataclass

from arkcore.constants import (
    P2TR_KEYPATH_INPUT_VSIZE,
    P2TR_OUTPUT_VSIZE,
    P2TR_SCRIPTPATH_INPUT_VSIZE,
    TX_OVERHEAD_VSIZE,
)
from arkcore.crypto import KeyPair
from arkcore.errors import BelowDustThreshold, ConversionError, ProtocolViolation, SigningError
from arkcore.models import OutPoint
from arkcore.psbt import Psbt
from arkcore.script import address_to_script_pubkey
from arkcore.transaction import Transaction, TxIn, TxOut, taproot_sighash
from arkcore.tree import TxTree
from arkcore.vtxo import Vtxo
from loguru import logger

FORFEIT_TX_VSIZE = (
    TX_OVERHEAD_VSIZE + P2TR_KEYPATH_INPUT_VSIZE + P2TR_SCRIPTPATH_INPUT_VSIZE + P2TR_OUTPUT_VSIZE
)

# Input order inside every forfeit transaction
CONNECTOR_INPUT_INDEX = 0
VTXO_INPUT_INDEX = 1


@dataclass
class VtxoInput:
    """A VTXO registered in the round, with the script that locks it."""

    vtxo: Vtxo
    outpoint: OutPoint
    amount: int

    @property
    def prevout(self) -> TxOut:
        return TxOut(self.amount, self.vtxo.script_pubkey)


def forfeit_fee(min_relay_fee_rate: int) -> int:
    """Fee in sats for one forfeit tx at ``min_relay_fee_rate`` sat/kvB, rounded up."""
    return -(-min_relay_fee_rate * FORFEIT_TX_VSIZE // 1000)


def find_connector_output(connector_tree: TxTree, round_tx: Psbt, outpoint: OutPoint) -> TxOut:
    if outpoint.txid == round_tx.txid:
        outputs = round_tx.tx.outputs
    else:
        try:
            outputs = connector_tree.find(outpoint.txid).psbt.tx.outputs
        except ConversionError as e:
            raise ProtocolViolation(f"Connector {outpoint} is not part of the round") from e
    if outpoint.vout >= len(outputs):
        raise ProtocolViolation(f"Connector {outpoint} does not exist")
    return outputs[outpoint.vout]


def build_forfeit_tx(
    vtxo_input: VtxoInput,
    connector: OutPoint,
    connector_output: TxOut,
    forfeit_script: bytes,
    fee: int,
    dust: int,
) -> Psbt:
    amount = vtxo_input.amount + connector_output.value - fee
    if amount < dust:
        raise BelowDustThreshold(amount, dust)

    tx = Transaction(
        version=2,
        inputs=[
            TxIn(txid=connector.txid, vout=connector.vout),
            TxIn(txid=vtxo_input.outpoint.txid, vout=vtxo_input.outpoint.vout),
        ],
        outputs=[TxOut(amount, forfeit_script)],
        locktime=0,
    )
    psbt = Psbt.from_unsigned_tx(tx)
    psbt.set_witness_utxo(CONNECTOR_INPUT_INDEX, connector_output)
    psbt.set_witness_utxo(VTXO_INPUT_INDEX, vtxo_input.prevout)
    psbt.add_tap_leaf_script(
        VTXO_INPUT_INDEX,
        vtxo_input.vtxo.forfeit_control_block(),
        vtxo_input.vtxo.forfeit_script,
    )
    return psbt


def sign_forfeit_tx(psbt: Psbt, keypair: KeyPair, vtxo_input: VtxoInput) -> None:
    if keypair.xonly_public_key() != vtxo_input.vtxo.owner_xonly:
        raise SigningError(f"VTXO {vtxo_input.outpoint} is not owned by this key")
    prevouts = psbt.prevouts()
    if prevouts is None:
        raise SigningError("Forfeit transaction is missing prevout data")

    leaf_hash = vtxo_input.vtxo.forfeit_leaf_hash
    digest = taproot_sighash(psbt.tx, VTXO_INPUT_INDEX, prevouts, leaf_hash=leaf_hash)
    signature = keypair.sign_schnorr(digest)
    psbt.add_tap_script_sig(VTXO_INPUT_INDEX, keypair.xonly_public_key(), leaf_hash, signature)


def create_and_sign_forfeit_txs(
    keypair: KeyPair,
    vtxo_inputs: list[VtxoInput],
    round_tx: Psbt,
    connector_tree: TxTree,
    connectors_index: dict[OutPoint, OutPoint],
    min_relay_fee_rate: int,
    forfeit_address: str,
    dust: int,
) -> list[Psbt]:
    """
    Build and sign one forfeit per VTXO.

    Either every VTXO gets a signed forfeit or an error is raised and none
    are returned.
    """
    forfeit_script = address_to_script_pubkey(forfeit_address)
    fee = forfeit_fee(min_relay_fee_rate)

    forfeits = []
    for vtxo_input in vtxo_inputs:
        connector = connectors_index.get(vtxo_input.outpoint)
        if connector is None:
            raise ProtocolViolation(f"No connector assigned to VTXO {vtxo_input.outpoint}")
        connector_output = find_connector_output(connector_tree, round_tx, connector)

        psbt = build_forfeit_tx(vtxo_input, connector, connector_output, forfeit_script, fee, dust)
        sign_forfeit_tx(psbt, keypair, vtxo_input)
        forfeits.append(psbt)

    logger.debug(f"Signed {len(forfeits)} forfeit transactions (fee {fee} sats each)")
    return forfeits
