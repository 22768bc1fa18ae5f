"""
BIP174 (version 0) partially signed transactions.

Only the fields an Ark client reads or writes are interpreted; every other
key-value pair is carried through untouched so the coordinator gets back
what it sent plus our signatures.
"""

from __future__ import annotations

import base64
import binascii
import struct

from arkcore.constants import TAPROOT_LEAF_VERSION
from arkcore.errors import ConversionError
from arkcore.script import varint
from arkcore.transaction import Transaction, TxOut, read_bytes, read_varint

PSBT_MAGIC = b"psbt\xff"

PSBT_GLOBAL_UNSIGNED_TX = 0x00
PSBT_IN_WITNESS_UTXO = 0x01
PSBT_IN_TAP_SCRIPT_SIG = 0x14
PSBT_IN_TAP_LEAF_SCRIPT = 0x15
PSBT_IN_TAP_INTERNAL_KEY = 0x17

# Coordinator-defined input field listing a tree node's cosigner keys:
# key = b"cosigner" || index (4 bytes BE), value = compressed pubkey
COSIGNER_KEY_PREFIX = b"cosigner"

KeyValueMap = dict[bytes, bytes]


def _kv(key: bytes, value: bytes) -> bytes:
    return varint(len(key)) + key + varint(len(value)) + value


def _read_map(data: bytes, offset: int) -> tuple[KeyValueMap, int]:
    entries: KeyValueMap = {}
    while True:
        key_len, offset = read_varint(data, offset)
        if key_len == 0:
            return entries, offset
        key, offset = read_bytes(data, offset, key_len)
        value_len, offset = read_varint(data, offset)
        value, offset = read_bytes(data, offset, value_len)
        if key in entries:
            raise ConversionError(f"Duplicate PSBT key {key.hex()}")
        entries[key] = value


class Psbt:
    def __init__(
        self,
        tx: Transaction,
        global_map: KeyValueMap | None = None,
        input_maps: list[KeyValueMap] | None = None,
        output_maps: list[KeyValueMap] | None = None,
    ):
        self.tx = tx
        self.global_map = global_map or {}
        self.input_maps = input_maps or [{} for _ in tx.inputs]
        self.output_maps = output_maps or [{} for _ in tx.outputs]
        if len(self.input_maps) != len(tx.inputs) or len(self.output_maps) != len(tx.outputs):
            raise ConversionError("PSBT map count does not match transaction")

    @classmethod
    def from_unsigned_tx(cls, tx: Transaction) -> Psbt:
        if any(inp.script_sig or inp.witness for inp in tx.inputs):
            raise ConversionError("PSBT requires an unsigned transaction")
        return cls(tx)

    @property
    def txid(self) -> str:
        return self.tx.txid

    def serialize(self) -> bytes:
        result = PSBT_MAGIC
        result += _kv(bytes([PSBT_GLOBAL_UNSIGNED_TX]), self.tx.serialize(include_witness=False))
        for key, value in self.global_map.items():
            result += _kv(key, value)
        result += b"\x00"
        for section in (*self.input_maps, *self.output_maps):
            for key, value in section.items():
                result += _kv(key, value)
            result += b"\x00"
        return result

    def to_base64(self) -> str:
        return base64.b64encode(self.serialize()).decode()

    @classmethod
    def parse(cls, data: bytes) -> Psbt:
        if data[: len(PSBT_MAGIC)] != PSBT_MAGIC:
            raise ConversionError("Bad PSBT magic")
        try:
            offset = len(PSBT_MAGIC)
            global_map, offset = _read_map(data, offset)
            raw_tx = global_map.pop(bytes([PSBT_GLOBAL_UNSIGNED_TX]), None)
            if raw_tx is None:
                raise ConversionError("Missing unsigned tx in PSBT")
            tx = Transaction.parse(raw_tx)

            input_maps = []
            for _ in tx.inputs:
                section, offset = _read_map(data, offset)
                input_maps.append(section)
            output_maps = []
            for _ in tx.outputs:
                section, offset = _read_map(data, offset)
                output_maps.append(section)
        except (IndexError, struct.error) as e:
            raise ConversionError(f"Malformed PSBT: {e}") from e

        if offset != len(data):
            raise ConversionError(f"Trailing {len(data) - offset} bytes after PSBT")
        return cls(tx, global_map, input_maps, output_maps)

    @classmethod
    def from_base64(cls, value: str) -> Psbt:
        try:
            raw = base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ConversionError(f"Invalid base64 PSBT: {e}") from e
        return cls.parse(raw)

    # Input accessors

    def witness_utxo(self, index: int) -> TxOut | None:
        value = self.input_maps[index].get(bytes([PSBT_IN_WITNESS_UTXO]))
        if value is None:
            return None
        try:
            (amount,) = struct.unpack_from("<Q", value, 0)
            script_len, offset = read_varint(value, 8)
            script, _ = read_bytes(value, offset, script_len)
        except (IndexError, struct.error) as e:
            raise ConversionError(f"Malformed witness utxo on input {index}") from e
        return TxOut(amount, script)

    def set_witness_utxo(self, index: int, utxo: TxOut) -> None:
        self.input_maps[index][bytes([PSBT_IN_WITNESS_UTXO])] = utxo.serialize()

    def prevouts(self) -> list[TxOut] | None:
        """Witness UTXOs for every input, or None if any is missing."""
        utxos = [self.witness_utxo(i) for i in range(len(self.tx.inputs))]
        if any(u is None for u in utxos):
            return None
        return [u for u in utxos if u is not None]

    def add_tap_leaf_script(
        self,
        index: int,
        control_block: bytes,
        script: bytes,
        leaf_version: int = TAPROOT_LEAF_VERSION,
    ) -> None:
        key = bytes([PSBT_IN_TAP_LEAF_SCRIPT]) + control_block
        self.input_maps[index][key] = script + bytes([leaf_version])

    def tap_leaf_scripts(self, index: int) -> list[tuple[bytes, bytes, int]]:
        """(control block, script, leaf version) entries on an input."""
        leaves = []
        for key, value in self.input_maps[index].items():
            if key[0] == PSBT_IN_TAP_LEAF_SCRIPT and value:
                leaves.append((key[1:], value[:-1], value[-1]))
        return leaves

    def add_tap_script_sig(
        self, index: int, xonly_pubkey: bytes, leaf_hash: bytes, signature: bytes
    ) -> None:
        key = bytes([PSBT_IN_TAP_SCRIPT_SIG]) + xonly_pubkey + leaf_hash
        self.input_maps[index][key] = signature

    def tap_script_sigs(self, index: int) -> dict[tuple[bytes, bytes], bytes]:
        sigs = {}
        for key, value in self.input_maps[index].items():
            if key[0] == PSBT_IN_TAP_SCRIPT_SIG and len(key) == 65:
                sigs[(key[1:33], key[33:])] = value
        return sigs

    def cosigner_keys(self, index: int = 0) -> list[bytes]:
        """Compressed cosigner pubkeys attached to an input, in index order."""
        entries = []
        for key, value in self.input_maps[index].items():
            if key.startswith(COSIGNER_KEY_PREFIX):
                position = int.from_bytes(key[len(COSIGNER_KEY_PREFIX) :], "big")
                entries.append((position, value))
        return [value for _, value in sorted(entries)]

    def add_cosigner_key(self, index: int, position: int, pubkey: bytes) -> None:
        key = COSIGNER_KEY_PREFIX + position.to_bytes(4, "big")
        self.input_maps[index][key] = pubkey
