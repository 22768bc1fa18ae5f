"""
Transaction trees handed out by the coordinator during a round.

Both the VTXO tree and the connector tree arrive as levels of nodes, root
level first. Each node is a one-input PSBT spending an output of its parent
(or of the round transaction for the root).
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from arkcore.errors import ConversionError
from arkcore.psbt import Psbt


@dataclass
class TreeNode:
    txid: str
    psbt: Psbt
    parent_txid: str
    cosigners: list[bytes] = field(default_factory=list)
    leaf: bool = False

    @property
    def cosigner_keys(self) -> list[bytes]:
        """Explicit cosigners, falling back to the keys embedded in the PSBT."""
        return self.cosigners or self.psbt.cosigner_keys(0)


@dataclass
class TxTree:
    levels: list[list[TreeNode]] = field(default_factory=list)

    def __iter__(self) -> Iterator[TreeNode]:
        for level in self.levels:
            yield from level

    def __len__(self) -> int:
        return sum(len(level) for level in self.levels)

    def is_empty(self) -> bool:
        return len(self) == 0

    def find(self, txid: str) -> TreeNode:
        for node in self:
            if node.txid == txid:
                return node
        raise ConversionError(f"Transaction {txid} not found in tree")

    def leaves(self) -> list[TreeNode]:
        return [node for node in self if node.leaf]

    def validate(self) -> None:
        """Check that node txids match their PSBTs and every parent exists."""
        known: set[str] = set()
        for depth, level in enumerate(self.levels):
            for node in level:
                if node.psbt.txid != node.txid:
                    raise ConversionError(
                        f"Tree node {node.txid} does not match its transaction {node.psbt.txid}"
                    )
                if len(node.psbt.tx.inputs) != 1:
                    raise ConversionError(f"Tree node {node.txid} must have exactly one input")
                if node.psbt.tx.inputs[0].txid != node.parent_txid:
                    raise ConversionError(f"Tree node {node.txid} does not spend its parent")
                if depth > 0 and node.parent_txid not in known:
                    raise ConversionError(f"Tree node {node.txid} has unknown parent")
            known.update(node.txid for node in level)
