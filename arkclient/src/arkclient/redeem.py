"""
Redeem transactions: off-chain transfers outside of rounds.

A redeem transaction spends VTXOs over their collaborative leaf and pays new
VTXO scripts directly. The owner signs every input; the coordinator adds its
own signature and returns the transaction.
"""

from __future__ import annotations

from arkcore.errors import BelowDustThreshold, SigningError, UnbalancedPlanError
from arkcore.psbt import Psbt
from arkcore.transaction import Transaction, TxIn, TxOut, taproot_sighash
from arkcore.vtxo import ArkAddress
from arkwallet.coin_select import select_vtxos
from arkwallet.models import VirtualTxOutpoints
from loguru import logger

from arkclient.forfeit import VtxoInput
from arkclient.round_psbt import SignForPk


def build_redeem_transaction(
    outputs: list[tuple[ArkAddress, int]],
    change_address: ArkAddress | None,
    vtxo_inputs: list[VtxoInput],
    dust: int,
) -> Psbt:
    """
    Lay out an unsigned redeem transaction.

    Whatever the inputs hold beyond ``outputs`` goes to ``change_address``.
    Redeem transactions pay no fee, so inputs and outputs must balance.
    """
    if not vtxo_inputs:
        raise UnbalancedPlanError(0, sum(amount for _, amount in outputs))
    for address, amount in outputs:
        if amount < dust:
            raise BelowDustThreshold(amount, dust)

    tx_outputs = [TxOut(amount, address.script_pubkey) for address, amount in outputs]
    input_total = sum(i.amount for i in vtxo_inputs)
    change = input_total - sum(amount for _, amount in outputs)
    if change > 0 and change_address is not None:
        if change < dust:
            raise BelowDustThreshold(change, dust)
        tx_outputs.append(TxOut(change, change_address.script_pubkey))
        change = 0
    if change != 0:
        raise UnbalancedPlanError(input_total, input_total - change)

    tx = Transaction(
        version=2,
        inputs=[TxIn(txid=i.outpoint.txid, vout=i.outpoint.vout) for i in vtxo_inputs],
        outputs=tx_outputs,
        locktime=0,
    )
    psbt = Psbt.from_unsigned_tx(tx)
    for index, vtxo_input in enumerate(vtxo_inputs):
        psbt.set_witness_utxo(index, vtxo_input.prevout)
        psbt.add_tap_leaf_script(
            index, vtxo_input.vtxo.forfeit_control_block(), vtxo_input.vtxo.forfeit_script
        )
    return psbt


def sign_redeem_transaction(
    sign_for_pk: SignForPk, psbt: Psbt, vtxo_inputs: list[VtxoInput], index: int
) -> None:
    """Sign input ``index`` over its VTXO's collaborative leaf."""
    vtxo_input = vtxo_inputs[index]
    tx_input = psbt.tx.inputs[index]
    if tx_input.outpoint != vtxo_input.outpoint:
        raise SigningError(f"Redeem input {index} does not spend {vtxo_input.outpoint}")
    prevouts = psbt.prevouts()
    if prevouts is None:
        raise SigningError("Redeem transaction is missing prevout data")

    owner = vtxo_input.vtxo.owner_xonly
    leaf_hash = vtxo_input.vtxo.forfeit_leaf_hash
    digest = taproot_sighash(psbt.tx, index, prevouts, leaf_hash=leaf_hash)
    psbt.add_tap_script_sig(index, owner, leaf_hash, sign_for_pk(owner, digest))


def create_redeem_transaction(
    sign_for_pk: SignForPk,
    virtual: VirtualTxOutpoints,
    destination: ArkAddress,
    change_address: ArkAddress,
    amount: int,
    dust: int,
    drop_dust_change: bool = False,
) -> Psbt:
    """
    Select VTXOs for ``amount`` and return the redeem transaction signed by the owner.

    A dropped sub-dust change is paid to the destination along with ``amount``.
    """
    if amount < dust:
        raise BelowDustThreshold(amount, dust)

    selection = select_vtxos(
        [e.outpoint for e in virtual.spendable], amount, dust, drop_dust_change
    )
    entries = {e.outpoint.outpoint: e for e in virtual.spendable}
    vtxo_inputs = [
        VtxoInput(entries[v.outpoint].vtxo, v.outpoint, v.amount) for v in selection.selected
    ]

    psbt = build_redeem_transaction(
        [(destination, selection.total_value - selection.change_value)],
        change_address,
        vtxo_inputs,
        dust,
    )
    for index in range(len(vtxo_inputs)):
        sign_redeem_transaction(sign_for_pk, psbt, vtxo_inputs, index)

    logger.debug(
        f"Signed redeem tx {psbt.txid}: {len(vtxo_inputs)} inputs, "
        f"{amount:,} sats to destination, {selection.change_value:,} sats change"
    )
    return psbt
