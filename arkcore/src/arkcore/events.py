"""
Round events delivered on the coordinator stream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from arkcore.models import OutPoint
from arkcore.psbt import Psbt
from arkcore.tree import TxTree


class RoundEventKind(str, Enum):
    SIGNING = "round_signing"
    NONCES_GENERATED = "round_signing_nonces_generated"
    FINALIZATION = "round_finalization"
    FINALIZED = "round_finalized"
    FAILED = "round_failed"


@dataclass
class RoundSigning:
    id: str
    unsigned_tree: TxTree
    unsigned_round_tx: Psbt
    cosigner_pubkeys: list[bytes] = field(default_factory=list)

    kind = RoundEventKind.SIGNING


@dataclass
class RoundSigningNoncesGenerated:
    id: str
    # Aggregated 66-byte public nonce per tree node, None where the node
    # was not signed
    tree_nonces: list[list[bytes | None]]

    kind = RoundEventKind.NONCES_GENERATED


@dataclass
class RoundFinalization:
    id: str
    round_tx: Psbt
    connector_tree: TxTree
    # VTXO outpoint -> connector outpoint it is forfeited against
    connectors_index: dict[OutPoint, OutPoint]
    min_relay_fee_rate: int  # sat/kvB

    kind = RoundEventKind.FINALIZATION


@dataclass
class RoundFinalized:
    id: str
    round_txid: str

    kind = RoundEventKind.FINALIZED


@dataclass
class RoundFailed:
    id: str
    reason: str

    kind = RoundEventKind.FAILED


RoundStreamEvent = (
    RoundSigning | RoundSigningNoncesGenerated | RoundFinalization | RoundFinalized | RoundFailed
)
