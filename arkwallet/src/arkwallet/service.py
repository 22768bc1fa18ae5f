"""
Wallet service: one long-term key, its output scripts and its coins.
"""

from __future__ import annotations

import time

from arkcore.coordinator import CoordinatorClient
from arkcore.crypto import KeyPair
from arkcore.errors import SigningError
from arkcore.models import ServerInfo
from arkcore.vtxo import BoardingOutput, Vtxo
from loguru import logger

from arkwallet.balance import list_boarding_outpoints, list_virtual_tx_outpoints, summarize
from arkwallet.explorer import ExplorerBackend, take_snapshot
from arkwallet.models import Balance, BoardingOutpoints, ChainSnapshot, VirtualTxOutpoints


class WalletService:
    """
    Ark wallet over a single key pair.

    The key owns one VTXO script (and so one Ark address) and one boarding
    script (one on-chain deposit address), both derived from the
    coordinator's parameters.
    """

    def __init__(
        self,
        keypair: KeyPair,
        server_info: ServerInfo,
        coordinator: CoordinatorClient,
        explorer: ExplorerBackend,
    ):
        self.keypair = keypair
        self.server_info = server_info
        self.coordinator = coordinator
        self.explorer = explorer

        self.vtxo = Vtxo(
            server_info.xonly_pubkey,
            keypair.xonly_public_key(),
            server_info.unilateral_exit_delay,
            server_info.network,
        )
        self.boarding_output = BoardingOutput(
            server_info.xonly_pubkey,
            keypair.xonly_public_key(),
            server_info.boarding_exit_delay,
            server_info.network,
        )

    def offchain_address(self) -> str:
        return self.vtxo.address()

    def boarding_address(self) -> str:
        return self.boarding_output.address()

    async def snapshot(self, timestamp: int | None = None) -> ChainSnapshot:
        return await take_snapshot(
            self.explorer,
            [self.boarding_address()],
            int(time.time()) if timestamp is None else timestamp,
        )

    async def list_outpoints(
        self, snapshot: ChainSnapshot | None = None
    ) -> tuple[VirtualTxOutpoints, BoardingOutpoints]:
        """Fetch VTXOs from the coordinator and classify everything we own."""
        snapshot = snapshot or await self.snapshot()
        listed = await self.coordinator.list_vtxos(self.offchain_address())

        virtual = list_virtual_tx_outpoints(
            snapshot, {self.vtxo: [*listed.spendable, *listed.spent]}
        )
        boarding = list_boarding_outpoints(snapshot, [self.boarding_output])
        return virtual, boarding

    async def get_balance(self) -> Balance:
        virtual, boarding = await self.list_outpoints()
        balance = summarize(virtual, boarding)
        logger.info(
            f"Balance: offchain {balance.offchain_spendable:,} sats spendable "
            f"({balance.offchain_expired:,} expired), boarding "
            f"{balance.boarding_spendable:,} spendable / {balance.boarding_pending:,} pending "
            f"({balance.boarding_expired:,} expired)"
        )
        return balance

    def sign_for_pk(self, xonly_pubkey: bytes, digest: bytes) -> bytes:
        """Schnorr-sign ``digest`` with the key matching ``xonly_pubkey``."""
        if xonly_pubkey != self.keypair.xonly_public_key():
            raise SigningError(f"No key for public key {xonly_pubkey.hex()}")
        return self.keypair.sign_schnorr(digest)
