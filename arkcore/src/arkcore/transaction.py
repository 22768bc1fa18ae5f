"""
Bitcoin transaction (de)serialization and BIP341 signature hashing.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field

from arkcore.constants import SEQUENCE_FINAL, SIGHASH_ALL, SIGHASH_DEFAULT
from arkcore.crypto import tagged_hash
from arkcore.errors import ConversionError, SigningError
from arkcore.models import OutPoint
from arkcore.script import varint


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        return int.from_bytes(data[offset : offset + 2], "little"), offset + 2
    if first == 0xFE:
        return int.from_bytes(data[offset : offset + 4], "little"), offset + 4
    return int.from_bytes(data[offset : offset + 8], "little"), offset + 8


def read_bytes(data: bytes, offset: int, length: int) -> tuple[bytes, int]:
    end = offset + length
    if end > len(data):
        raise ConversionError(f"Unexpected end of data at offset {offset}")
    return data[offset:end], end


@dataclass
class TxIn:
    """Transaction input. ``txid`` is in RPC (big-endian) hex."""

    txid: str
    vout: int
    script_sig: bytes = b""
    sequence: int = SEQUENCE_FINAL
    witness: list[bytes] = field(default_factory=list)

    @property
    def outpoint(self) -> OutPoint:
        return OutPoint(txid=self.txid, vout=self.vout)

    def serialize_outpoint(self) -> bytes:
        return bytes.fromhex(self.txid)[::-1] + struct.pack("<I", self.vout)


@dataclass
class TxOut:
    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return struct.pack("<Q", self.value) + varint(len(self.script_pubkey)) + self.script_pubkey


@dataclass
class Transaction:
    version: int = 2
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)
    locktime: int = 0

    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        segwit = include_witness and self.has_witness()

        result = struct.pack("<i", self.version)
        if segwit:
            result += b"\x00\x01"

        result += varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize_outpoint()
            result += varint(len(inp.script_sig)) + inp.script_sig
            result += struct.pack("<I", inp.sequence)

        result += varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()

        if segwit:
            for inp in self.inputs:
                result += varint(len(inp.witness))
                for item in inp.witness:
                    result += varint(len(item)) + item

        result += struct.pack("<I", self.locktime)
        return result

    @property
    def txid(self) -> str:
        return hash256(self.serialize(include_witness=False))[::-1].hex()

    @classmethod
    def parse(cls, raw: bytes) -> Transaction:
        try:
            tx, offset = cls._parse(raw)
        except (IndexError, struct.error) as e:
            raise ConversionError(f"Malformed transaction: {e}") from e
        if offset != len(raw):
            raise ConversionError(f"Trailing {len(raw) - offset} bytes after transaction")
        return tx

    @classmethod
    def _parse(cls, raw: bytes) -> tuple[Transaction, int]:
        offset = 0
        (version,) = struct.unpack_from("<i", raw, offset)
        offset += 4

        segwit = raw[offset] == 0x00 and raw[offset + 1] == 0x01
        if segwit:
            offset += 2

        input_count, offset = read_varint(raw, offset)
        inputs = []
        for _ in range(input_count):
            txid_le, offset = read_bytes(raw, offset, 32)
            (vout,) = struct.unpack_from("<I", raw, offset)
            offset += 4
            script_len, offset = read_varint(raw, offset)
            script_sig, offset = read_bytes(raw, offset, script_len)
            (sequence,) = struct.unpack_from("<I", raw, offset)
            offset += 4
            inputs.append(TxIn(txid_le[::-1].hex(), vout, script_sig, sequence))

        output_count, offset = read_varint(raw, offset)
        outputs = []
        for _ in range(output_count):
            (value,) = struct.unpack_from("<Q", raw, offset)
            offset += 8
            script_len, offset = read_varint(raw, offset)
            script_pubkey, offset = read_bytes(raw, offset, script_len)
            outputs.append(TxOut(value, script_pubkey))

        if segwit:
            for inp in inputs:
                item_count, offset = read_varint(raw, offset)
                for _ in range(item_count):
                    item_len, offset = read_varint(raw, offset)
                    item, offset = read_bytes(raw, offset, item_len)
                    inp.witness.append(item)

        (locktime,) = struct.unpack_from("<I", raw, offset)
        offset += 4
        return cls(version, inputs, outputs, locktime), offset


def taproot_sighash(
    tx: Transaction,
    input_index: int,
    prevouts: list[TxOut],
    sighash_type: int = SIGHASH_DEFAULT,
    leaf_hash: bytes | None = None,
) -> bytes:
    """
    BIP341 signature message digest.

    Key-path spend when ``leaf_hash`` is None, script-path otherwise.
    Only SIGHASH_DEFAULT and SIGHASH_ALL are supported.
    """
    if sighash_type not in (SIGHASH_DEFAULT, SIGHASH_ALL):
        raise SigningError(f"Unsupported sighash type {sighash_type:#x}")
    if len(prevouts) != len(tx.inputs):
        raise SigningError(f"Need {len(tx.inputs)} prevouts, got {len(prevouts)}")
    if not 0 <= input_index < len(tx.inputs):
        raise SigningError(f"Input index {input_index} out of range")

    sha_prevouts = sha256(b"".join(inp.serialize_outpoint() for inp in tx.inputs))
    sha_amounts = sha256(b"".join(struct.pack("<Q", p.value) for p in prevouts))
    sha_scriptpubkeys = sha256(
        b"".join(varint(len(p.script_pubkey)) + p.script_pubkey for p in prevouts)
    )
    sha_sequences = sha256(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs))
    sha_outputs = sha256(b"".join(out.serialize() for out in tx.outputs))

    ext_flag = 1 if leaf_hash is not None else 0

    msg = bytes([0x00, sighash_type])
    msg += struct.pack("<i", tx.version)
    msg += struct.pack("<I", tx.locktime)
    msg += sha_prevouts + sha_amounts + sha_scriptpubkeys + sha_sequences
    msg += sha_outputs
    msg += bytes([ext_flag * 2])
    msg += struct.pack("<I", input_index)

    if leaf_hash is not None:
        msg += leaf_hash + b"\x00" + struct.pack("<I", 0xFFFFFFFF)

    return tagged_hash("TapSighash", msg)
