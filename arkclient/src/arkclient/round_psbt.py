"""
Signing of boarding inputs in the round transaction.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from arkcore.errors import ProtocolViolation, SigningError
from arkcore.models import OutPoint
from arkcore.psbt import Psbt
from arkcore.script import tap_leaf_hash
from arkcore.transaction import TxOut, taproot_sighash
from arkcore.vtxo import BoardingOutput
from loguru import logger

# (x-only public key, 32-byte digest) -> 64-byte Schnorr signature
SignForPk = Callable[[bytes, bytes], bytes]


@dataclass
class OnchainInput:
    boarding_output: BoardingOutput
    outpoint: OutPoint
    amount: int

    @property
    def prevout(self) -> TxOut:
        return TxOut(self.amount, self.boarding_output.script_pubkey)


def _leaf_script(psbt: Psbt, index: int, boarding_output: BoardingOutput) -> bytes:
    """Leaf the input spends: the one the coordinator attached, else the collaborative leaf."""
    ours = {boarding_output.forfeit_script, boarding_output.exit_script}
    for _, script, _ in psbt.tap_leaf_scripts(index):
        if script in ours:
            return script
    psbt.add_tap_leaf_script(
        index, boarding_output.forfeit_control_block(), boarding_output.forfeit_script
    )
    return boarding_output.forfeit_script


def sign_round_psbt(
    sign_for_pk: SignForPk, round_psbt: Psbt, onchain_inputs: list[OnchainInput]
) -> Psbt:
    """Add our tapscript signature to every boarding input; mutates and returns the PSBT."""
    input_index_map = {
        (inp.txid, inp.vout): i for i, inp in enumerate(round_psbt.tx.inputs)
    }

    indexed: list[tuple[int, OnchainInput]] = []
    for onchain in onchain_inputs:
        key = (onchain.outpoint.txid, onchain.outpoint.vout)
        if key not in input_index_map:
            raise ProtocolViolation(f"Boarding input {onchain.outpoint} missing from round tx")
        index = input_index_map[key]

        existing = round_psbt.witness_utxo(index)
        if existing is None:
            round_psbt.set_witness_utxo(index, onchain.prevout)
        elif existing != onchain.prevout:
            raise SigningError(f"Round tx describes boarding input {onchain.outpoint} differently")
        indexed.append((index, onchain))

    prevouts = round_psbt.prevouts()
    if prevouts is None:
        raise SigningError("Round transaction is missing prevout data for some inputs")

    for index, onchain in indexed:
        script = _leaf_script(round_psbt, index, onchain.boarding_output)
        leaf_hash = tap_leaf_hash(script)
        digest = taproot_sighash(round_psbt.tx, index, prevouts, leaf_hash=leaf_hash)
        owner = onchain.boarding_output.owner_xonly
        round_psbt.add_tap_script_sig(index, owner, leaf_hash, sign_for_pk(owner, digest))

    logger.debug(f"Signed {len(indexed)} boarding inputs of round tx {round_psbt.txid}")
    return round_psbt
