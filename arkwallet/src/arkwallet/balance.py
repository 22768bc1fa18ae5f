"""
Classification of a wallet's outputs into spendable, expired and pending.

Pure functions over a ChainSnapshot: no I/O happens here.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from arkcore.models import VtxoOutPoint
from arkcore.vtxo import BoardingOutput, Vtxo
from loguru import logger

from arkwallet.models import (
    Balance,
    BoardingOutpoints,
    BoardingUtxo,
    ChainSnapshot,
    VirtualTxOutpoints,
    VtxoEntry,
)


def list_virtual_tx_outpoints(
    snapshot: ChainSnapshot, vtxos: Mapping[Vtxo, Sequence[VtxoOutPoint]]
) -> VirtualTxOutpoints:
    """
    Bucket coordinator-reported VTXOs.

    Spent and swept VTXOs are set aside; of the rest, those at or past
    their expiry are expired and everything else (pending included) is
    spendable.
    """
    result = VirtualTxOutpoints()
    for vtxo, outpoints in vtxos.items():
        for outpoint in outpoints:
            entry = VtxoEntry(vtxo, outpoint)
            if outpoint.spent or outpoint.swept:
                result.spent.append(entry)
            elif outpoint.expire_at <= snapshot.timestamp:
                result.expired.append(entry)
            else:
                result.spendable.append(entry)
    return result


def list_boarding_outpoints(
    snapshot: ChainSnapshot, boarding_outputs: Iterable[BoardingOutput]
) -> BoardingOutpoints:
    """
    Bucket on-chain outputs paying our boarding addresses.

    Unconfirmed outputs are pending. Confirmed outputs whose exit delay has
    elapsed are expired, since the owner can now only reclaim them on-chain.
    """
    result = BoardingOutpoints()
    for boarding_output in boarding_outputs:
        for utxo in snapshot.find_outpoints(boarding_output.address()):
            entry = BoardingUtxo(
                boarding_output=boarding_output,
                outpoint=utxo.outpoint,
                amount=utxo.amount,
                confirmation_blocktime=utxo.confirmation_blocktime,
            )
            if utxo.is_spent:
                result.spent.append(entry)
            elif utxo.confirmation_blocktime is None:
                result.pending.append(entry)
            elif (
                snapshot.timestamp
                >= utxo.confirmation_blocktime + boarding_output.exit_delay_seconds
            ):
                result.expired.append(entry)
            else:
                result.spendable.append(entry)
    return result


def summarize(virtual: VirtualTxOutpoints, boarding: BoardingOutpoints) -> Balance:
    balance = Balance(
        offchain_spendable=virtual.spendable_balance(),
        offchain_expired=virtual.expired_balance(),
        boarding_spendable=boarding.spendable_balance(),
        boarding_expired=boarding.expired_balance(),
        boarding_pending=boarding.pending_balance(),
    )
    logger.debug(
        f"Classified {len(virtual.spendable)} spendable / {len(virtual.expired)} expired VTXOs, "
        f"{len(boarding.spendable)} spendable / {len(boarding.pending)} pending boarding outputs"
    )
    return balance
