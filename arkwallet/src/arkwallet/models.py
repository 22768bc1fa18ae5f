"""
Wallet data models.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from arkcore.models import ExplorerUtxo, OutPoint, VtxoOutPoint
from arkcore.vtxo import BoardingOutput, Vtxo


@dataclass(frozen=True)
class ChainSnapshot:
    """
    Read-only view of on-chain evidence taken at one moment.

    Classification and selection read from it instead of querying the
    explorer, so a result is reproducible from the same snapshot.
    """

    timestamp: int
    outpoints: Mapping[str, tuple[ExplorerUtxo, ...]] = field(default_factory=dict)

    def find_outpoints(self, address: str) -> tuple[ExplorerUtxo, ...]:
        return self.outpoints.get(address, ())


@dataclass
class VtxoEntry:
    """A coordinator-reported VTXO together with the script that owns it."""

    vtxo: Vtxo
    outpoint: VtxoOutPoint

    @property
    def amount(self) -> int:
        return self.outpoint.amount


@dataclass
class BoardingUtxo:
    boarding_output: BoardingOutput
    outpoint: OutPoint
    amount: int
    confirmation_blocktime: int | None = None


@dataclass
class VirtualTxOutpoints:
    spendable: list[VtxoEntry] = field(default_factory=list)
    expired: list[VtxoEntry] = field(default_factory=list)
    spent: list[VtxoEntry] = field(default_factory=list)

    def spendable_balance(self) -> int:
        return sum(entry.amount for entry in self.spendable)

    def expired_balance(self) -> int:
        return sum(entry.amount for entry in self.expired)


@dataclass
class BoardingOutpoints:
    spendable: list[BoardingUtxo] = field(default_factory=list)
    expired: list[BoardingUtxo] = field(default_factory=list)
    pending: list[BoardingUtxo] = field(default_factory=list)
    spent: list[BoardingUtxo] = field(default_factory=list)

    def spendable_balance(self) -> int:
        return sum(u.amount for u in self.spendable)

    def expired_balance(self) -> int:
        return sum(u.amount for u in self.expired)

    def pending_balance(self) -> int:
        return sum(u.amount for u in self.pending)


@dataclass
class CoinSelection:
    """Result of coin selection"""

    selected: list[VtxoOutPoint]
    total_value: int
    target_amount: int
    change_value: int


@dataclass
class Balance:
    offchain_spendable: int = 0
    offchain_expired: int = 0
    boarding_spendable: int = 0
    boarding_expired: int = 0
    boarding_pending: int = 0

    @property
    def total(self) -> int:
        return (
            self.offchain_spendable
            + self.offchain_expired
            + self.boarding_spendable
            + self.boarding_expired
            + self.boarding_pending
        )
