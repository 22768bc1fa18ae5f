"""
arkcore - Core library for Ark client components

Provides shared models, crypto, transaction formats and the coordinator client.
"""

__version__ = "0.1.0"

from arkcore.coordinator import CoordinatorClient, ListVtxosResult
from arkcore.crypto import KeyPair, tagged_hash, verify_schnorr
from arkcore.errors import (
    ArkError,
    BelowDustThreshold,
    CoinSelectionError,
    ConversionError,
    EventTimeoutError,
    InsufficientFunds,
    NetworkError,
    ProtocolViolation,
    RoundFailedError,
    SigningError,
    UnbalancedPlanError,
    WalletNotFoundError,
)
from arkcore.events import (
    RoundEventKind,
    RoundFailed,
    RoundFinalization,
    RoundFinalized,
    RoundSigning,
    RoundSigningNoncesGenerated,
    RoundStreamEvent,
)
from arkcore.models import (
    ExplorerUtxo,
    NetworkType,
    OutPoint,
    RoundInput,
    RoundOutput,
    ServerInfo,
    VtxoOutPoint,
)
from arkcore.psbt import Psbt
from arkcore.transaction import Transaction, TxIn, TxOut
from arkcore.tree import TreeNode, TxTree
from arkcore.vtxo import ArkAddress, BoardingOutput, Vtxo

__all__ = [
    "ArkAddress",
    "ArkError",
    "BelowDustThreshold",
    "BoardingOutput",
    "CoinSelectionError",
    "ConversionError",
    "CoordinatorClient",
    "EventTimeoutError",
    "ExplorerUtxo",
    "InsufficientFunds",
    "KeyPair",
    "ListVtxosResult",
    "NetworkError",
    "NetworkType",
    "OutPoint",
    "ProtocolViolation",
    "Psbt",
    "RoundEventKind",
    "RoundFailed",
    "RoundFailedError",
    "RoundFinalization",
    "RoundFinalized",
    "RoundInput",
    "RoundOutput",
    "RoundSigning",
    "RoundSigningNoncesGenerated",
    "RoundStreamEvent",
    "ServerInfo",
    "SigningError",
    "Transaction",
    "TreeNode",
    "TxIn",
    "TxOut",
    "TxTree",
    "UnbalancedPlanError",
    "Vtxo",
    "VtxoOutPoint",
    "WalletNotFoundError",
    "tagged_hash",
    "verify_schnorr",
]
