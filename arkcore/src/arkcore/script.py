"""
Bitcoin script building, taproot commitments and address encoding.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

import base58
from embit import bech32

from arkcore.constants import (
    SECP256K1_ORDER,
    SEQUENCE_LOCKTIME_GRANULARITY,
    SEQUENCE_LOCKTIME_MASK,
    SEQUENCE_LOCKTIME_TYPE_FLAG,
    TAPROOT_LEAF_VERSION,
)
from arkcore.crypto import has_even_y, int_from_bytes, lift_x, tagged_hash, xonly
from arkcore.errors import ConversionError
from arkcore.models import NetworkType

OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_1 = 0x51
OP_DROP = 0x75
OP_CHECKSIG = 0xAC
OP_CHECKSIGVERIFY = 0xAD
OP_CHECKSEQUENCEVERIFY = 0xB2


def varint(n: int) -> bytes:
    """Encode integer as Bitcoin varint."""
    if n < 0xFD:
        return bytes([n])
    elif n <= 0xFFFF:
        return bytes([0xFD]) + struct.pack("<H", n)
    elif n <= 0xFFFFFFFF:
        return bytes([0xFE]) + struct.pack("<I", n)
    else:
        return bytes([0xFF]) + struct.pack("<Q", n)


def push_data(data: bytes) -> bytes:
    if len(data) < OP_PUSHDATA1:
        return bytes([len(data)]) + data
    if len(data) <= 0xFF:
        return bytes([OP_PUSHDATA1, len(data)]) + data
    return bytes([OP_PUSHDATA2]) + struct.pack("<H", len(data)) + data


def script_num(n: int) -> bytes:
    """Minimal push of an integer, as CHECKSEQUENCEVERIFY expects it."""
    if n == 0:
        return bytes([OP_0])
    if 1 <= n <= 16:
        return bytes([OP_1 + n - 1])

    negative = n < 0
    value = abs(n)
    encoded = bytearray()
    while value:
        encoded.append(value & 0xFF)
        value >>= 8
    if encoded[-1] & 0x80:
        encoded.append(0x80 if negative else 0x00)
    elif negative:
        encoded[-1] |= 0x80
    return push_data(bytes(encoded))


def bip68_sequence_from_seconds(seconds: int) -> int:
    """
    Time-based relative locktime rounding up to the next 512 second unit.
    """
    if seconds <= 0:
        raise ConversionError(f"Relative timelock must be positive, got {seconds}s")
    units = -(-seconds // SEQUENCE_LOCKTIME_GRANULARITY)
    if units > SEQUENCE_LOCKTIME_MASK:
        raise ConversionError(f"Relative timelock of {seconds}s does not fit in BIP68")
    return SEQUENCE_LOCKTIME_TYPE_FLAG | units


def bip68_sequence_to_seconds(sequence: int) -> int:
    if not sequence & SEQUENCE_LOCKTIME_TYPE_FLAG:
        raise ConversionError(f"Sequence {sequence:#x} is not time based")
    return (sequence & SEQUENCE_LOCKTIME_MASK) * SEQUENCE_LOCKTIME_GRANULARITY


def multisig_script(owner_xonly: bytes, server_xonly: bytes) -> bytes:
    """<owner> CHECKSIGVERIFY <server> CHECKSIG"""
    return (
        push_data(owner_xonly)
        + bytes([OP_CHECKSIGVERIFY])
        + push_data(server_xonly)
        + bytes([OP_CHECKSIG])
    )


def csv_sig_script(sequence: int, pubkey_xonly: bytes) -> bytes:
    """<sequence> CHECKSEQUENCEVERIFY DROP <pubkey> CHECKSIG"""
    return (
        script_num(sequence)
        + bytes([OP_CHECKSEQUENCEVERIFY, OP_DROP])
        + push_data(pubkey_xonly)
        + bytes([OP_CHECKSIG])
    )


def p2tr_script_pubkey(output_key: bytes) -> bytes:
    return bytes([OP_1]) + push_data(output_key)


def tap_leaf_hash(script: bytes, leaf_version: int = TAPROOT_LEAF_VERSION) -> bytes:
    return tagged_hash("TapLeaf", bytes([leaf_version]) + varint(len(script)) + script)


def tap_branch_hash(left: bytes, right: bytes) -> bytes:
    if right < left:
        left, right = right, left
    return tagged_hash("TapBranch", left + right)


def tap_tweak(internal_key: bytes, merkle_root: bytes | None) -> bytes:
    return tagged_hash("TapTweak", internal_key + (merkle_root or b""))


def _build_tree(scripts: list[bytes]) -> tuple[bytes, dict[bytes, list[bytes]]]:
    """Balanced script tree. Returns (root hash, script -> merkle path)."""
    if len(scripts) == 1:
        return tap_leaf_hash(scripts[0]), {scripts[0]: []}
    mid = (len(scripts) + 1) // 2
    left_hash, left_paths = _build_tree(scripts[:mid])
    right_hash, right_paths = _build_tree(scripts[mid:])
    paths = {s: p + [right_hash] for s, p in left_paths.items()}
    paths.update({s: p + [left_hash] for s, p in right_paths.items()})
    return tap_branch_hash(left_hash, right_hash), paths


@dataclass(frozen=True)
class TaprootSpendInfo:
    internal_key: bytes
    merkle_root: bytes | None
    output_key: bytes
    output_key_parity: int
    merkle_paths: dict[bytes, list[bytes]] = field(default_factory=dict)

    @property
    def script_pubkey(self) -> bytes:
        return p2tr_script_pubkey(self.output_key)

    def control_block(self, script: bytes, leaf_version: int = TAPROOT_LEAF_VERSION) -> bytes:
        if script not in self.merkle_paths:
            raise ConversionError(f"Script {script.hex()} is not a leaf of this tree")
        return (
            bytes([leaf_version | self.output_key_parity])
            + self.internal_key
            + b"".join(self.merkle_paths[script])
        )


def taproot_output_key(internal_key: bytes, merkle_root: bytes | None) -> tuple[bytes, int]:
    """Tweak an x-only internal key; returns (x-only output key, parity)."""
    tweak = tap_tweak(internal_key, merkle_root)
    if int_from_bytes(tweak) >= SECP256K1_ORDER:
        raise ConversionError("Taproot tweak exceeds curve order")
    output_point = lift_x(internal_key).add(tweak)
    return xonly(output_point), 0 if has_even_y(output_point) else 1


def build_taproot(internal_key: bytes, scripts: list[bytes]) -> TaprootSpendInfo:
    if not scripts:
        output_key, parity = taproot_output_key(internal_key, None)
        return TaprootSpendInfo(internal_key, None, output_key, parity)
    merkle_root, paths = _build_tree(scripts)
    output_key, parity = taproot_output_key(internal_key, merkle_root)
    return TaprootSpendInfo(internal_key, merkle_root, output_key, parity, paths)


def encode_p2tr_address(output_key: bytes, network: NetworkType) -> str:
    # Witness v1 programs use the bech32m checksum
    result = bech32.encode(network.bech32_hrp, 1, output_key)
    if result is None:
        raise ConversionError(f"Failed to encode P2TR address: {output_key.hex()}")
    return result


def encode_ark_address(
    version: int, server_xonly: bytes, vtxo_output_key: bytes, network: NetworkType
) -> str:
    payload = bytes([version]) + server_xonly + vtxo_output_key
    data = bech32.convertbits(payload, 8, 5)
    if data is None:
        raise ConversionError("Failed to convert Ark address payload")
    return bech32.bech32_encode(bech32.Encoding.BECH32M, network.ark_hrp, data)


def decode_ark_address(address: str) -> tuple[str, int, bytes, bytes]:
    """
    Split an Ark address into (hrp, version, server x-only key, VTXO output key).

    Ark addresses are longer than the 90 characters BIP173 allows, so the
    checksum is verified here rather than through ``bech32_decode``.
    """
    if address.lower() != address and address.upper() != address:
        raise ConversionError(f"Mixed-case Ark address: {address}")
    address = address.lower()
    pos = address.rfind("1")
    if pos < 1 or pos + 7 > len(address):
        raise ConversionError(f"Invalid Ark address: {address}")

    hrp = address[:pos]
    try:
        data = [bech32.CHARSET.index(c) for c in address[pos + 1 :]]
    except ValueError as e:
        raise ConversionError(f"Invalid character in Ark address: {address}") from e
    if bech32.bech32_verify_checksum(hrp, data) != bech32.Encoding.BECH32M:
        raise ConversionError(f"Invalid Ark address checksum: {address}")

    payload = bech32.convertbits(data[:-6], 5, 8, False)
    if payload is None or len(payload) != 65:
        raise ConversionError(f"Invalid Ark address payload: {address}")
    payload = bytes(payload)
    return hrp, payload[0], payload[1:33], payload[33:]


def address_to_script_pubkey(address: str) -> bytes:
    """
    Convert an on-chain address to its scriptPubKey.

    Supports P2WPKH, P2WSH, P2TR and legacy P2PKH/P2SH addresses.
    """
    if address.lower().startswith(("bc1", "tb1", "bcrt1")):
        hrp = address[: address.rfind("1")].lower()
        witver, witprog = bech32.decode(hrp, address)
        if witver is None or witprog is None:
            raise ConversionError(f"Invalid bech32 address: {address}")
        program = bytes(witprog)

        if witver == 0 and len(program) in (20, 32):
            return bytes([OP_0]) + push_data(program)
        if witver == 1 and len(program) == 32:
            return p2tr_script_pubkey(program)
        raise ConversionError(f"Unsupported witness program v{witver} in {address}")

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise ConversionError(f"Invalid address: {address}") from e
    version, payload = decoded[0], decoded[1:]

    if version in (0x00, 0x6F):
        # OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG
        return bytes([0x76, 0xA9, 0x14]) + payload + bytes([0x88, 0xAC])
    if version in (0x05, 0xC4):
        # OP_HASH160 <20-byte-scripthash> OP_EQUAL
        return bytes([0xA9, 0x14]) + payload + bytes([0x87])
    raise ConversionError(f"Unknown address version: {version}")
