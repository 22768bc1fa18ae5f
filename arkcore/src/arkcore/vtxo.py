"""
Output descriptors for the two kinds of coins an Ark wallet owns.

Both are taproot outputs over the unspendable internal key with two leaves:
a collaborative leaf (owner + server) used inside rounds and an exit leaf
the owner can use alone after a relative timelock.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property

from arkcore.constants import ARK_ADDRESS_VERSION, UNSPENDABLE_INTERNAL_KEY
from arkcore.errors import ConversionError
from arkcore.models import NetworkType
from arkcore.script import (
    TaprootSpendInfo,
    bip68_sequence_from_seconds,
    build_taproot,
    csv_sig_script,
    decode_ark_address,
    encode_ark_address,
    encode_p2tr_address,
    multisig_script,
    p2tr_script_pubkey,
    tap_leaf_hash,
)


@dataclass(frozen=True)
class TapscriptOutput:
    server_xonly: bytes
    owner_xonly: bytes
    exit_delay_seconds: int
    network: NetworkType

    @cached_property
    def exit_sequence(self) -> int:
        return bip68_sequence_from_seconds(self.exit_delay_seconds)

    @cached_property
    def forfeit_script(self) -> bytes:
        return multisig_script(self.owner_xonly, self.server_xonly)

    @cached_property
    def exit_script(self) -> bytes:
        return csv_sig_script(self.exit_sequence, self.owner_xonly)

    @cached_property
    def spend_info(self) -> TaprootSpendInfo:
        return build_taproot(UNSPENDABLE_INTERNAL_KEY, [self.forfeit_script, self.exit_script])

    @property
    def script_pubkey(self) -> bytes:
        return self.spend_info.script_pubkey

    @property
    def forfeit_leaf_hash(self) -> bytes:
        return tap_leaf_hash(self.forfeit_script)

    def forfeit_control_block(self) -> bytes:
        return self.spend_info.control_block(self.forfeit_script)

    def tapscripts(self) -> list[str]:
        return [self.forfeit_script.hex(), self.exit_script.hex()]

    def onchain_address(self) -> str:
        return encode_p2tr_address(self.spend_info.output_key, self.network)


class BoardingOutput(TapscriptOutput):
    """On-chain output a wallet deposits to before boarding it into a round."""

    def address(self) -> str:
        return self.onchain_address()


class Vtxo(TapscriptOutput):
    """Off-chain output script an Ark address resolves to."""

    def to_ark_address(self) -> ArkAddress:
        return ArkAddress(
            ARK_ADDRESS_VERSION, self.server_xonly, self.spend_info.output_key, self.network
        )

    def address(self) -> str:
        return self.to_ark_address().encode()


@dataclass(frozen=True)
class ArkAddress:
    """Decoded Ark address: the server it belongs to and the VTXO taproot key it pays."""

    version: int
    server_xonly: bytes
    vtxo_output_key: bytes
    network: NetworkType

    @classmethod
    def decode(cls, address: str, network: NetworkType) -> ArkAddress:
        hrp, version, server_xonly, vtxo_output_key = decode_ark_address(address)
        if hrp != network.ark_hrp:
            raise ConversionError(
                f"Ark address {address} is not for {network.value} (prefix {hrp})"
            )
        if version != ARK_ADDRESS_VERSION:
            raise ConversionError(f"Unsupported Ark address version {version}")
        return cls(version, server_xonly, vtxo_output_key, network)

    def encode(self) -> str:
        return encode_ark_address(
            self.version, self.server_xonly, self.vtxo_output_key, self.network
        )

    @property
    def script_pubkey(self) -> bytes:
        return p2tr_script_pubkey(self.vtxo_output_key)
