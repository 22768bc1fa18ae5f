"""
MuSig2 participation in signing the round's VTXO tree.

Every tree node is a one-input transaction whose input is locked to the
aggregate of the node's cosigner keys, tweaked with the sweep leaf
``<tree expiry> CSV DROP <server> CHECKSIG``. For every node our round
cosigner key is part of, we contribute one nonce pair and later one partial
signature over the node's key-path sighash.
"""

from __future__ import annotations

from dataclasses import dataclass

from arkcore.crypto import KeyPair
from arkcore.errors import ProtocolViolation, SigningError
from arkcore.musig import (
    KeyAggContext,
    SecretNonce,
    apply_taproot_tweak,
    key_agg,
    key_sort,
    nonce_gen,
    partial_sig_verify,
    partial_sign,
)
from arkcore.psbt import Psbt
from arkcore.script import (
    bip68_sequence_from_seconds,
    csv_sig_script,
    p2tr_script_pubkey,
    tap_leaf_hash,
)
from arkcore.transaction import TxOut, taproot_sighash
from arkcore.tree import TreeNode, TxTree
from loguru import logger

NodeMatrix = list[list[bytes | None]]


@dataclass
class TreeNonces:
    """Nonces for one round. Secret halves never leave this object."""

    secret: list[list[SecretNonce | None]]
    public: NodeMatrix

    def count(self) -> int:
        return sum(1 for level in self.public for nonce in level if nonce is not None)


def sweep_merkle_root(vtxo_tree_expiry: int, server_xonly: bytes) -> bytes:
    sweep_script = csv_sig_script(bip68_sequence_from_seconds(vtxo_tree_expiry), server_xonly)
    return tap_leaf_hash(sweep_script)


def _node_cosigners(node: TreeNode, fallback: list[bytes]) -> list[bytes]:
    return node.cosigner_keys or fallback


def generate_nonce_tree(
    cosigner: KeyPair, unsigned_tree: TxTree, cosigner_pubkeys: list[bytes]
) -> TreeNonces:
    """One nonce pair per node we cosign, None elsewhere."""
    our_key = cosigner.public_key_bytes()
    secret: list[list[SecretNonce | None]] = []
    public: NodeMatrix = []

    for level in unsigned_tree.levels:
        secret_level: list[SecretNonce | None] = []
        public_level: list[bytes | None] = []
        for node in level:
            if our_key in _node_cosigners(node, cosigner_pubkeys):
                secnonce, pubnonce = nonce_gen(our_key)
                secret_level.append(secnonce)
                public_level.append(pubnonce)
            else:
                secret_level.append(None)
                public_level.append(None)
        secret.append(secret_level)
        public.append(public_level)

    nonces = TreeNonces(secret, public)
    logger.debug(f"Generated {nonces.count()} tree nonces")
    return nonces


def _node_prevout(node: TreeNode, tree: TxTree, round_tx: Psbt) -> TxOut:
    vout = node.psbt.tx.inputs[0].vout
    if node.parent_txid == round_tx.txid:
        parent_outputs = round_tx.tx.outputs
    else:
        parent_outputs = tree.find(node.parent_txid).psbt.tx.outputs
    if vout >= len(parent_outputs):
        raise SigningError(f"Tree node {node.txid} spends missing output {vout} of its parent")
    return parent_outputs[vout]


def _tweaked_key(cosigners: list[bytes], merkle_root: bytes) -> KeyAggContext:
    return apply_taproot_tweak(key_agg(key_sort(cosigners)), merkle_root)


def sign_vtxo_tree(
    vtxo_tree_expiry: int,
    server_xonly: bytes,
    cosigner: KeyPair,
    unsigned_tree: TxTree,
    unsigned_round_tx: Psbt,
    cosigner_pubkeys: list[bytes],
    nonces: TreeNonces,
    agg_nonces: NodeMatrix,
) -> NodeMatrix:
    """
    Partial signatures for every node we hold a nonce for.

    Each signature is checked against our own public nonce before it is
    returned, and every secret nonce is consumed.
    """
    if len(agg_nonces) != len(unsigned_tree.levels) or any(
        len(agg) != len(level) for agg, level in zip(agg_nonces, unsigned_tree.levels)
    ):
        raise ProtocolViolation("Aggregated nonce tree does not match the VTXO tree shape")

    our_key = cosigner.public_key_bytes()
    merkle_root = sweep_merkle_root(vtxo_tree_expiry, server_xonly)
    signatures: NodeMatrix = []

    for depth, level in enumerate(unsigned_tree.levels):
        level_sigs: list[bytes | None] = []
        for index, node in enumerate(level):
            secnonce = nonces.secret[depth][index]
            pubnonce = nonces.public[depth][index]
            if secnonce is None or pubnonce is None:
                level_sigs.append(None)
                continue

            aggnonce = agg_nonces[depth][index]
            if aggnonce is None:
                raise ProtocolViolation(f"No aggregated nonce for tree node {node.txid}")

            ctx = _tweaked_key(_node_cosigners(node, cosigner_pubkeys), merkle_root)
            prevout = _node_prevout(node, unsigned_tree, unsigned_round_tx)
            if prevout.script_pubkey != p2tr_script_pubkey(ctx.xonly_key):
                raise SigningError(
                    f"Tree node {node.txid} input is not locked to its cosigners' key"
                )

            msg = taproot_sighash(node.psbt.tx, 0, [prevout])
            psig = partial_sign(secnonce, cosigner.secret_int, ctx, aggnonce, msg)
            if not partial_sig_verify(psig, pubnonce, our_key, ctx, aggnonce, msg):
                raise SigningError(f"Partial signature for {node.txid} does not verify")
            level_sigs.append(psig)
        signatures.append(level_sigs)

    logger.debug(f"Signed {sum(s is not None for lvl in signatures for s in lvl)} tree nodes")
    return signatures
