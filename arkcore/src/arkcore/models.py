"""
Core data models using Pydantic for validation and serialization.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from arkcore.constants import ARK_HRP_MAINNET, ARK_HRP_TESTNET
from arkcore.errors import ConversionError


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    MUTINYNET = "mutinynet"
    REGTEST = "regtest"

    @classmethod
    def _missing_(cls, value: object) -> NetworkType | None:
        # Coordinators report mainnet under its chain name
        if isinstance(value, str) and value.lower() == "bitcoin":
            return cls.MAINNET
        return None

    @property
    def bech32_hrp(self) -> str:
        if self == NetworkType.MAINNET:
            return "bc"
        if self == NetworkType.REGTEST:
            return "bcrt"
        return "tb"

    @property
    def ark_hrp(self) -> str:
        return ARK_HRP_MAINNET if self == NetworkType.MAINNET else ARK_HRP_TESTNET


class OutPoint(BaseModel):
    """Reference to a transaction output, txid in RPC (big-endian) hex."""

    model_config = ConfigDict(frozen=True)

    txid: str = Field(..., pattern=r"^[0-9a-f]{64}$")
    vout: int = Field(..., ge=0, le=0xFFFFFFFF)

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"

    @classmethod
    def parse(cls, value: str) -> OutPoint:
        txid, sep, vout = value.rpartition(":")
        if not sep:
            raise ConversionError(f"Invalid outpoint: {value!r}")
        try:
            return cls(txid=txid.lower(), vout=int(vout))
        except ValueError as e:
            raise ConversionError(f"Invalid outpoint: {value!r}") from e

    def sort_key(self) -> tuple[str, int]:
        return (self.txid, self.vout)


class ServerInfo(BaseModel):
    """
    Coordinator parameters, fetched once per session.

    Delays are kept in seconds as reported; ``*_sequence`` helpers give the
    BIP68 encoding used in scripts.
    """

    model_config = ConfigDict(frozen=True)

    pubkey: str = Field(..., pattern=r"^(02|03)[0-9a-f]{64}$", description="Compressed pubkey")
    vtxo_tree_expiry: int = Field(..., gt=0, description="Seconds")
    unilateral_exit_delay: int = Field(..., gt=0, description="Seconds")
    boarding_exit_delay: int = Field(..., gt=0, description="Seconds")
    round_interval: int = Field(default=0, ge=0, description="Seconds")
    network: NetworkType
    dust: int = Field(..., ge=0, description="Satoshis")
    forfeit_address: str = Field(..., min_length=1)

    @property
    def pubkey_bytes(self) -> bytes:
        return bytes.fromhex(self.pubkey)

    @property
    def xonly_pubkey(self) -> bytes:
        return self.pubkey_bytes[1:]


class VtxoOutPoint(BaseModel):
    """A VTXO as reported by the coordinator."""

    outpoint: OutPoint
    amount: int = Field(..., ge=0)
    expire_at: int = Field(..., description="Unix timestamp")
    created_at: int = 0
    round_txid: str = ""
    pubkey: str = ""
    is_pending: bool = False
    spent: bool = False
    swept: bool = False
    spent_by: str | None = None


class ExplorerUtxo(BaseModel):
    """On-chain evidence for one output paying a watched address."""

    outpoint: OutPoint
    amount: int = Field(..., ge=0)
    confirmation_blocktime: int | None = None
    is_spent: bool = False


class RoundInput(BaseModel):
    outpoint: OutPoint
    tapscripts: list[str] = Field(default_factory=list, description="Hex-encoded leaf scripts")


class RoundOutput(BaseModel):
    address: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    is_virtual: bool = True

    @classmethod
    def new_virtual(cls, address: str, amount: int) -> RoundOutput:
        return cls(address=address, amount=amount, is_virtual=True)

    @classmethod
    def new_onchain(cls, address: str, amount: int) -> RoundOutput:
        return cls(address=address, amount=amount, is_virtual=False)
