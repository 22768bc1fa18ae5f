"""
REST client for the Ark coordinator.

Requests and responses are JSON. The round event stream is newline
delimited JSON, one ``{"result": {<eventName>: {...}}}`` object per line.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from arkcore.errors import ConversionError, NetworkError
from arkcore.events import (
    RoundFailed,
    RoundFinalization,
    RoundFinalized,
    RoundSigning,
    RoundSigningNoncesGenerated,
    RoundStreamEvent,
)
from arkcore.models import (
    NetworkType,
    OutPoint,
    RoundInput,
    RoundOutput,
    ServerInfo,
    VtxoOutPoint,
)
from arkcore.psbt import Psbt
from arkcore.tree import TreeNode, TxTree

HexMatrix = list[list[bytes | None]]


def _require(data: dict[str, Any], key: str) -> Any:
    if key not in data or data[key] is None:
        raise ConversionError(f"Missing field '{key}'")
    return data[key]


def _int_field(data: dict[str, Any], key: str, default: int | None = None) -> int:
    # Numbers may arrive as JSON strings (64-bit safe encoding)
    if default is not None and data.get(key) in (None, ""):
        return default
    value = _require(data, key)
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConversionError(f"Field '{key}' is not an integer: {value!r}") from e


def _hex_field(value: Any, name: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except (TypeError, ValueError) as e:
        raise ConversionError(f"Field '{name}' is not hex: {value!r}") from e


def _outpoint(data: Any) -> OutPoint:
    try:
        if isinstance(data, str):
            return OutPoint.parse(data)
        return OutPoint(txid=_require(data, "txid"), vout=_int_field(data, "vout"))
    except ValidationError as e:
        raise ConversionError(f"Invalid outpoint: {data!r}") from e


def parse_server_info(data: dict[str, Any]) -> ServerInfo:
    try:
        network = NetworkType(_require(data, "network"))
    except ValueError as e:
        raise ConversionError(f"Unknown network: {data.get('network')!r}") from e
    unilateral_exit_delay = _int_field(data, "unilateralExitDelay")
    try:
        return ServerInfo(
            pubkey=_require(data, "pubkey"),
            vtxo_tree_expiry=_int_field(data, "vtxoTreeExpiry"),
            unilateral_exit_delay=unilateral_exit_delay,
            # Coordinators without a separate boarding delay lock boarding
            # outputs with the unilateral exit delay
            boarding_exit_delay=_int_field(
                data, "boardingExitDelay", default=unilateral_exit_delay
            ),
            round_interval=_int_field(data, "roundInterval", default=0),
            network=network,
            dust=_int_field(data, "dust"),
            forfeit_address=_require(data, "forfeitAddress"),
        )
    except ValidationError as e:
        raise ConversionError(f"Invalid server info: {e}") from e


def parse_vtxo(data: dict[str, Any]) -> VtxoOutPoint:
    try:
        return VtxoOutPoint(
            outpoint=_outpoint(_require(data, "outpoint")),
            amount=_int_field(data, "amount"),
            expire_at=_int_field(data, "expireAt"),
            created_at=_int_field(data, "createdAt", default=0),
            round_txid=data.get("roundTxid") or "",
            pubkey=data.get("pubkey") or "",
            is_pending=bool(data.get("isPending", False)),
            spent=bool(data.get("spentBy")) or bool(data.get("spent", False)),
            swept=bool(data.get("swept", False)),
            spent_by=data.get("spentBy") or None,
        )
    except ValidationError as e:
        raise ConversionError(f"Invalid VTXO: {e}") from e


def parse_tree(data: dict[str, Any] | None) -> TxTree:
    levels = []
    for level in (data or {}).get("levels", []):
        nodes = []
        for node in level.get("nodes", []):
            nodes.append(
                TreeNode(
                    txid=_require(node, "txid"),
                    psbt=Psbt.from_base64(_require(node, "tx")),
                    parent_txid=_require(node, "parentTxid"),
                    cosigners=[_hex_field(pk, "cosigners") for pk in node.get("cosigners", [])],
                    leaf=bool(node.get("leaf", False)),
                )
            )
        levels.append(nodes)
    tree = TxTree(levels)
    tree.validate()
    return tree


def _parse_matrix(rows: Any, name: str) -> HexMatrix:
    if not isinstance(rows, list):
        raise ConversionError(f"Field '{name}' must be a list of levels")
    return [[_hex_field(v, name) if v else None for v in row] for row in rows]


def _encode_matrix(matrix: HexMatrix) -> list[list[str | None]]:
    return [[v.hex() if v is not None else None for v in row] for row in matrix]


def parse_event(message: dict[str, Any]) -> RoundStreamEvent | None:
    """
    Convert one stream message to a round event.

    Returns None for keep-alive messages that carry no round event.
    """
    result = message.get("result")
    if not result or "heartbeat" in result:
        return None
    if len(result) != 1:
        raise ConversionError(f"Expected exactly one event, got {sorted(result)}")

    name, body = next(iter(result.items()))
    if name == "roundSigning":
        return RoundSigning(
            id=_require(body, "id"),
            unsigned_tree=parse_tree(_require(body, "unsignedVtxoTree")),
            unsigned_round_tx=Psbt.from_base64(_require(body, "unsignedRoundTx")),
            cosigner_pubkeys=[
                _hex_field(pk, "cosignersPubkeys") for pk in body.get("cosignersPubkeys", [])
            ],
        )
    if name == "roundSigningNoncesGenerated":
        return RoundSigningNoncesGenerated(
            id=_require(body, "id"),
            tree_nonces=_parse_matrix(_require(body, "treeNonces"), "treeNonces"),
        )
    if name == "roundFinalization":
        return RoundFinalization(
            id=_require(body, "id"),
            round_tx=Psbt.from_base64(_require(body, "roundTx")),
            connector_tree=parse_tree(body.get("connectors")),
            connectors_index={
                OutPoint.parse(vtxo): _outpoint(connector)
                for vtxo, connector in (body.get("connectorsIndex") or {}).items()
            },
            min_relay_fee_rate=_int_field(body, "minRelayFeeRate"),
        )
    if name == "roundFinalized":
        return RoundFinalized(id=_require(body, "id"), round_txid=_require(body, "roundTxid"))
    if name == "roundFailed":
        return RoundFailed(id=_require(body, "id"), reason=body.get("reason", ""))
    raise ConversionError(f"Unknown round event '{name}'")


@dataclass
class ListVtxosResult:
    spendable: list[VtxoOutPoint] = field(default_factory=list)
    spent: list[VtxoOutPoint] = field(default_factory=list)


class CoordinatorClient:
    """
    Client for the coordinator's REST API.

    Every transport failure or non-success status is raised as NetworkError.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self.client.aclose()

    async def _api_call(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}/{endpoint}"
        logger.debug(f"Coordinator {method} {endpoint}")

        try:
            if method == "GET":
                response = await self.client.get(url)
            elif method == "POST":
                response = await self.client.post(url, json=data or {})
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")

            response.raise_for_status()
            return response.json() if response.content else {}

        except httpx.HTTPStatusError as e:
            logger.error(f"Coordinator call failed: {endpoint} - {e.response.status_code}")
            raise NetworkError(
                f"Coordinator returned {e.response.status_code} for {endpoint}: "
                f"{e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Coordinator call failed: {endpoint} - {e}")
            raise NetworkError(f"Coordinator request {endpoint} failed: {e}") from e
        except json.JSONDecodeError as e:
            raise ConversionError(f"Coordinator sent invalid JSON for {endpoint}") from e

    async def get_info(self) -> ServerInfo:
        return parse_server_info(await self._api_call("GET", "v1/info"))

    async def list_vtxos(self, address: str) -> ListVtxosResult:
        data = await self._api_call("GET", f"v1/vtxos/{address}")
        return ListVtxosResult(
            spendable=[parse_vtxo(v) for v in data.get("spendableVtxos", [])],
            spent=[parse_vtxo(v) for v in data.get("spentVtxos", [])],
        )

    async def register_inputs_for_next_round(self, inputs: list[RoundInput]) -> str:
        data = await self._api_call(
            "POST",
            "v1/round/registerInputs",
            {
                "inputs": [
                    {
                        "outpoint": {"txid": i.outpoint.txid, "vout": i.outpoint.vout},
                        "tapscripts": {"scripts": i.tapscripts},
                    }
                    for i in inputs
                ]
            },
        )
        return str(_require(data, "requestId"))

    async def register_outputs_for_next_round(
        self,
        payment_id: str,
        outputs: list[RoundOutput],
        cosigner_pubkeys: list[bytes],
        signing_all: bool,
    ) -> None:
        await self._api_call(
            "POST",
            "v1/round/registerOutputs",
            {
                "requestId": payment_id,
                "outputs": [
                    {"address": o.address, "amount": str(o.amount), "isVirtual": o.is_virtual}
                    for o in outputs
                ],
                "musig2": {
                    "cosignersPublicKeys": [pk.hex() for pk in cosigner_pubkeys],
                    "signingAll": signing_all,
                },
            },
        )

    async def ping(self, payment_id: str) -> None:
        await self._api_call("GET", f"v1/round/ping/{payment_id}")

    async def get_event_stream(self) -> AsyncIterator[RoundStreamEvent]:
        """
        Yield round events as they arrive.

        The stream has no read timeout of its own; callers bound each wait.
        """
        url = f"{self.base_url}/v1/events"
        try:
            async with self.client.stream(
                "GET", url, timeout=httpx.Timeout(self.timeout, read=None)
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode(errors="replace")
                    raise NetworkError(f"Event stream returned {response.status_code}: {body}")
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        message = json.loads(line)
                    except json.JSONDecodeError as e:
                        raise ConversionError(f"Invalid event stream line: {line!r}") from e
                    event = parse_event(message)
                    if event is not None:
                        yield event
        except httpx.HTTPError as e:
            logger.error(f"Event stream failed: {e}")
            raise NetworkError(f"Event stream failed: {e}") from e

    async def submit_tree_nonces(
        self, round_id: str, cosigner_pubkey: bytes, nonce_tree: HexMatrix
    ) -> None:
        await self._api_call(
            "POST",
            "v1/round/tree/submitNonces",
            {
                "roundId": round_id,
                "pubkey": cosigner_pubkey.hex(),
                "treeNonces": _encode_matrix(nonce_tree),
            },
        )

    async def submit_tree_signatures(
        self, round_id: str, cosigner_pubkey: bytes, partial_sig_tree: HexMatrix
    ) -> None:
        await self._api_call(
            "POST",
            "v1/round/tree/submitSignatures",
            {
                "roundId": round_id,
                "pubkey": cosigner_pubkey.hex(),
                "treeSignatures": _encode_matrix(partial_sig_tree),
            },
        )

    async def submit_signed_forfeit_txs(
        self, forfeit_txs: list[Psbt], round_psbt: Psbt | None
    ) -> None:
        data: dict[str, Any] = {"signedForfeitTxs": [tx.to_base64() for tx in forfeit_txs]}
        if round_psbt is not None:
            data["signedRoundTx"] = round_psbt.to_base64()
        await self._api_call("POST", "v1/round/submitForfeitTxs", data)

    async def submit_redeem_transaction(self, redeem_psbt: Psbt) -> Psbt:
        """Submit an owner-signed redeem transaction; returns it co-signed by the coordinator."""
        data = await self._api_call("POST", "v1/redeem-tx", {"redeemTx": redeem_psbt.to_base64()})
        signed = Psbt.from_base64(_require(data, "signedRedeemTx"))
        if signed.txid != redeem_psbt.txid:
            raise ConversionError(
                f"Coordinator returned redeem tx {signed.txid}, expected {redeem_psbt.txid}"
            )
        return signed
