"""
Ark client: wallets bound to one coordinator and one explorer.
"""

from __future__ import annotations

from arkcore.coordinator import CoordinatorClient
from arkcore.crypto import KeyPair
from arkcore.errors import ArkError, ConversionError
from arkcore.models import ServerInfo
from arkcore.vtxo import ArkAddress
from arkwallet.explorer import EsploraExplorer, ExplorerBackend
from arkwallet.models import Balance
from arkwallet.registry import WalletRegistry
from arkwallet.service import WalletService
from loguru import logger

from arkclient.config import Settings
from arkclient.redeem import create_redeem_transaction
from arkclient.settlement import RoundSettlement, SettlementResult, plan_round


class ArkClient:
    """
    Entry point for wallet operations.

    ``connect`` must be awaited first: wallet scripts depend on the
    coordinator's key and delays.
    """

    def __init__(
        self,
        settings: Settings,
        coordinator: CoordinatorClient | None = None,
        explorer: ExplorerBackend | None = None,
    ):
        self.settings = settings
        self.coordinator = coordinator or CoordinatorClient(
            settings.server_url, timeout=settings.rpc_timeout_sec
        )
        self.explorer = explorer or EsploraExplorer(
            settings.esplora_url, timeout=settings.rpc_timeout_sec
        )
        self.registry = WalletRegistry()
        self.server_info: ServerInfo | None = None

    async def connect(self) -> ServerInfo:
        logger.info(f"Connecting to coordinator at {self.settings.server_url}")
        info = await self.coordinator.get_info()
        if self.settings.network is not None and info.network != self.settings.network:
            raise ArkError(
                f"Coordinator runs on {info.network.value}, "
                f"expected {self.settings.network.value}"
            )
        self.server_info = info
        logger.info(
            f"Coordinator on {info.network.value}: dust {info.dust} sats, "
            f"round interval {info.round_interval}s"
        )
        return info

    async def close(self) -> None:
        await self.coordinator.close()
        await self.explorer.close()

    def _require_server_info(self) -> ServerInfo:
        if self.server_info is None:
            raise ArkError("Not connected to a coordinator")
        return self.server_info

    async def create_wallet(self, secret_hex: str | None = None) -> str:
        """Load a wallet (or create one with a fresh key) and return its id."""
        keypair = KeyPair.from_secret_hex(secret_hex) if secret_hex else KeyPair()
        server_info = self._require_server_info()
        wallet = WalletService(keypair, server_info, self.coordinator, self.explorer)
        return await self.registry.register(wallet)

    async def get_wallet(self, wallet_id: str) -> WalletService:
        return await self.registry.get(wallet_id)

    async def get_balance(self, wallet_id: str) -> Balance:
        wallet = await self.registry.get(wallet_id)
        return await wallet.get_balance()

    async def settle(
        self,
        wallet_id: str,
        to_address: str | None = None,
        amount: int | None = None,
    ) -> SettlementResult:
        """
        Join the next round with the wallet's coins.

        Without ``amount`` every spendable VTXO and boarding output is
        settled to ``to_address`` (default: the wallet's own Ark address).
        Only one settlement runs per wallet at a time.
        """
        server_info = self._require_server_info()
        async with self.registry.exclusive(wallet_id) as wallet:
            virtual, boarding = await wallet.list_outpoints()
            logger.info(
                f"Wallet {wallet_id}: {len(virtual.spendable)} spendable VTXOs, "
                f"{len(boarding.spendable)} spendable boarding outputs"
            )

            own_address = wallet.offchain_address()
            plan = plan_round(
                virtual,
                boarding,
                to_address or own_address,
                own_address,
                server_info.dust,
                amount=amount,
                drop_dust_change=self.settings.drop_dust_change,
            )
            settlement = RoundSettlement(
                self.coordinator,
                server_info,
                wallet.keypair,
                plan,
                wallet.sign_for_pk,
                self.settings.round_config(),
            )
            return await settlement.run()

    async def send(self, wallet_id: str, to_address: str, amount: int) -> str:
        """
        Pay ``amount`` sats to an Ark address without waiting for a round.

        VTXOs are coin-selected; change returns to the wallet's Ark address.
        Returns the redeem transaction id.
        """
        server_info = self._require_server_info()
        destination = ArkAddress.decode(to_address, server_info.network)
        if destination.server_xonly != server_info.xonly_pubkey:
            raise ConversionError(f"Ark address {to_address} belongs to a different coordinator")

        async with self.registry.exclusive(wallet_id) as wallet:
            virtual, _ = await wallet.list_outpoints()
            redeem_psbt = create_redeem_transaction(
                wallet.sign_for_pk,
                virtual,
                destination,
                wallet.vtxo.to_ark_address(),
                amount,
                server_info.dust,
                drop_dust_change=self.settings.drop_dust_change,
            )
            logger.info(f"Submitting redeem tx {redeem_psbt.txid} ({amount:,} sats)")
            signed = await self.coordinator.submit_redeem_transaction(redeem_psbt)
            logger.info(f"Redeem tx {signed.txid} accepted by coordinator")
            return signed.txid
