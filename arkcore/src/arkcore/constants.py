"""
Bitcoin and Ark protocol constants.
"""

from __future__ import annotations

# secp256k1 group order
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# BIP341 NUMS point "H": an x-only key nobody knows the discrete log of.
# Every Ark tapscript tree uses it as internal key so only script paths spend.
UNSPENDABLE_INTERNAL_KEY = bytes.fromhex(
    "50929b74c1a04954b78b4b6035e97a5e078a5a0f28ec96d547bfee9ace803ac0"
)

TAPROOT_LEAF_VERSION = 0xC0

SIGHASH_DEFAULT = 0x00
SIGHASH_ALL = 0x01

# BIP68 relative time locks
SEQUENCE_LOCKTIME_TYPE_FLAG = 1 << 22
SEQUENCE_LOCKTIME_GRANULARITY = 512  # seconds per unit
SEQUENCE_LOCKTIME_MASK = 0x0000FFFF
SEQUENCE_FINAL = 0xFFFFFFFF

# Standard P2PKH dust limit in Bitcoin Core
STANDARD_DUST_LIMIT = 546  # satoshis

# Ark addresses: bech32m(hrp, version || server x-only key || vtxo taproot key)
ARK_ADDRESS_VERSION = 0
ARK_HRP_MAINNET = "ark"
ARK_HRP_TESTNET = "tark"

# Virtual sizes used when estimating the forfeit transaction fee.
# Forfeit txs spend a P2TR key-path connector and a P2TR script-path VTXO
# (two 2-of-2 leaves, control block with one sibling hash).
TX_OVERHEAD_VSIZE = 11
P2TR_KEYPATH_INPUT_VSIZE = 58
P2TR_SCRIPTPATH_INPUT_VSIZE = 107
P2TR_OUTPUT_VSIZE = 43
