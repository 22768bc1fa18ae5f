"""
Registry of loaded wallets by identifier.

Lookups and inserts go through one registry lock; each wallet additionally
has its own lock so that at most one operation mutates it at a time.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from arkcore.errors import WalletNotFoundError
from loguru import logger

from arkwallet.service import WalletService


@dataclass
class _Entry:
    wallet: WalletService
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class WalletRegistry:
    def __init__(self, max_wallets: int = 1000):
        self.max_wallets = max_wallets
        self._wallets: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    async def register(self, wallet: WalletService, wallet_id: str | None = None) -> str:
        async with self._lock:
            if len(self._wallets) >= self.max_wallets:
                raise ValueError(f"Maximum wallets reached: {self.max_wallets}")
            wallet_id = wallet_id or str(uuid.uuid4())
            if wallet_id in self._wallets:
                raise ValueError(f"Wallet {wallet_id} already registered")
            self._wallets[wallet_id] = _Entry(wallet)
        logger.info(f"Registered wallet {wallet_id}")
        return wallet_id

    async def unregister(self, wallet_id: str) -> None:
        async with self._lock:
            entry = self._wallets.pop(wallet_id, None)
        if entry is None:
            raise WalletNotFoundError(f"Wallet {wallet_id} not found")
        logger.info(f"Unregistered wallet {wallet_id}")

    async def get(self, wallet_id: str) -> WalletService:
        return (await self._entry(wallet_id)).wallet

    async def _entry(self, wallet_id: str) -> _Entry:
        async with self._lock:
            entry = self._wallets.get(wallet_id)
        if entry is None:
            raise WalletNotFoundError(f"Wallet {wallet_id} not found")
        return entry

    @asynccontextmanager
    async def exclusive(self, wallet_id: str) -> AsyncIterator[WalletService]:
        """Hold the wallet's lock for the duration of the block."""
        entry = await self._entry(wallet_id)
        async with entry.lock:
            yield entry.wallet

    def is_busy(self, wallet_id: str) -> bool:
        entry = self._wallets.get(wallet_id)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._wallets)

    def wallet_ids(self) -> list[str]:
        return list(self._wallets)
