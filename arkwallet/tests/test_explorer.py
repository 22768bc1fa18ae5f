"""
Tests for the Esplora explorer backend.
"""

import httpx
import pytest
from arkcore.errors import NetworkError

from arkwallet.explorer import EsploraExplorer, take_snapshot

ADDRESS = "bcrt1p" + "q" * 58
TXID = "ab" * 32


def _explorer(handler) -> EsploraExplorer:
    return EsploraExplorer(
        "http://esplora.test/api",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.asyncio
async def test_find_outpoints_filters_by_address_and_checks_spends():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == f"/api/address/{ADDRESS}/txs":
            return httpx.Response(
                200,
                json=[
                    {
                        "txid": TXID,
                        "status": {"confirmed": True, "block_time": 1_699_000_000},
                        "vout": [
                            {"scriptpubkey_address": "bcrt1qother", "value": 1},
                            {"scriptpubkey_address": ADDRESS, "value": 25_000},
                        ],
                    }
                ],
            )
        if path == f"/api/tx/{TXID}/outspend/1":
            return httpx.Response(200, json={"spent": False})
        return httpx.Response(404)

    explorer = _explorer(handler)
    outpoints = await explorer.find_outpoints(ADDRESS)
    await explorer.close()

    assert len(outpoints) == 1
    assert outpoints[0].outpoint.vout == 1
    assert outpoints[0].amount == 25_000
    assert outpoints[0].confirmation_blocktime == 1_699_000_000
    assert not outpoints[0].is_spent


@pytest.mark.asyncio
async def test_unconfirmed_has_no_blocktime():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/txs"):
            return httpx.Response(
                200,
                json=[
                    {
                        "txid": TXID,
                        "status": {"confirmed": False},
                        "vout": [{"scriptpubkey_address": ADDRESS, "value": 5_000}],
                    }
                ],
            )
        return httpx.Response(200, json={"spent": True})

    explorer = _explorer(handler)
    snapshot = await take_snapshot(explorer, [ADDRESS], timestamp=42)
    await explorer.close()

    (utxo,) = snapshot.find_outpoints(ADDRESS)
    assert utxo.confirmation_blocktime is None
    assert utxo.is_spent
    assert snapshot.timestamp == 42


@pytest.mark.asyncio
async def test_http_failure():
    explorer = _explorer(lambda request: httpx.Response(503))
    with pytest.raises(NetworkError):
        await explorer.find_outpoints(ADDRESS)
    await explorer.close()
