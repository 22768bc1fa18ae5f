"""
On-chain explorer backends used to discover boarding outputs.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import httpx
from arkcore.errors import ConversionError, NetworkError
from arkcore.models import ExplorerUtxo, OutPoint
from loguru import logger
from pydantic import ValidationError

from arkwallet.models import ChainSnapshot


class ExplorerBackend(ABC):
    """Chain evidence lookup for watched addresses."""

    @abstractmethod
    async def find_outpoints(self, address: str) -> list[ExplorerUtxo]:
        """All outputs ever paid to ``address`` with confirmation and spent status"""

    async def close(self) -> None:
        """Release any held connections"""


class EsploraExplorer(ExplorerBackend):
    """
    Explorer backed by an Esplora REST API (blockstream.info, mempool.space).

    Lists the address' transactions, then asks for the spend status of every
    output paying the address.
    """

    def __init__(
        self,
        esplora_url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.esplora_url = esplora_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _api_call(self, endpoint: str) -> Any:
        url = f"{self.esplora_url}/{endpoint}"
        try:
            response = await self.client.get(url)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error(f"Esplora API call failed: {endpoint} - {e}")
            raise NetworkError(f"Esplora request {endpoint} failed: {e}") from e

    async def find_outpoints(self, address: str) -> list[ExplorerUtxo]:
        txs = await self._api_call(f"address/{address}/txs")

        found: list[ExplorerUtxo] = []
        for tx in txs:
            status = tx.get("status") or {}
            blocktime = status.get("block_time") if status.get("confirmed") else None
            for vout, output in enumerate(tx.get("vout", [])):
                if output.get("scriptpubkey_address") != address:
                    continue
                outspend = await self._api_call(f"tx/{tx['txid']}/outspend/{vout}")
                try:
                    found.append(
                        ExplorerUtxo(
                            outpoint=OutPoint(txid=tx["txid"], vout=vout),
                            amount=output["value"],
                            confirmation_blocktime=blocktime,
                            is_spent=bool(outspend.get("spent", False)),
                        )
                    )
                except (KeyError, ValidationError) as e:
                    raise ConversionError(
                        f"Malformed Esplora output {tx.get('txid')}:{vout}"
                    ) from e

        logger.debug(f"Found {len(found)} outputs for {address}")
        return found

    async def close(self) -> None:
        await self.client.aclose()


async def take_snapshot(
    explorer: ExplorerBackend, addresses: Iterable[str], timestamp: int | None = None
) -> ChainSnapshot:
    """Query every address once and freeze the results."""
    outpoints = {}
    for address in addresses:
        outpoints[address] = tuple(await explorer.find_outpoints(address))
    return ChainSnapshot(
        timestamp=int(time.time()) if timestamp is None else timestamp,
        outpoints=outpoints,
    )
