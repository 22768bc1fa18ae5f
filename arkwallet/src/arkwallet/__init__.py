"""
arkwallet - Ark wallet: output scripts, coin classification and selection.
"""

__version__ = "0.1.0"

from arkwallet.balance import list_boarding_outpoints, list_virtual_tx_outpoints, summarize
from arkwallet.coin_select import select_vtxos
from arkwallet.explorer import EsploraExplorer, ExplorerBackend, take_snapshot
from arkwallet.models import (
    Balance,
    BoardingOutpoints,
    BoardingUtxo,
    ChainSnapshot,
    CoinSelection,
    VirtualTxOutpoints,
    VtxoEntry,
)
from arkwallet.registry import WalletRegistry
from arkwallet.service import WalletService

__all__ = [
    "Balance",
    "BoardingOutpoints",
    "BoardingUtxo",
    "ChainSnapshot",
    "CoinSelection",
    "EsploraExplorer",
    "ExplorerBackend",
    "VirtualTxOutpoints",
    "VtxoEntry",
    "WalletRegistry",
    "WalletService",
    "list_boarding_outpoints",
    "list_virtual_tx_outpoints",
    "select_vtxos",
    "summarize",
    "take_snapshot",
]
