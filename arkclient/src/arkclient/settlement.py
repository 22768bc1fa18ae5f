"""
Round settlement: drives one wallet through one coordinator round.

Flow:
1. Register inputs (boarding outputs and VTXOs) -> payment id
2. Register outputs with a fresh cosigner key, ping, open the event stream
3. RoundSigning -> submit tree nonces
4. RoundSigningNoncesGenerated -> submit tree partial signatures
5. RoundFinalization -> submit forfeits (+ signed round tx if boarding)
6. RoundFinalized -> done

Each step waits for exactly one event. Anything else arriving, or an event
for a different round, aborts the round.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from arkcore.coordinator import CoordinatorClient
from arkcore.crypto import KeyPair
from arkcore.errors import (
    BelowDustThreshold,
    EventTimeoutError,
    ProtocolViolation,
    RoundFailedError,
    UnbalancedPlanError,
)
from arkcore.events import (
    RoundFailed,
    RoundFinalization,
    RoundFinalized,
    RoundSigning,
    RoundSigningNoncesGenerated,
    RoundStreamEvent,
)
from arkcore.models import RoundInput, RoundOutput, ServerInfo
from arkwallet.coin_select import select_vtxos
from arkwallet.models import BoardingOutpoints, VirtualTxOutpoints
from loguru import logger

from arkclient.config import RoundConfig
from arkclient.forfeit import VtxoInput, create_and_sign_forfeit_txs
from arkclient.round_psbt import OnchainInput, SignForPk, sign_round_psbt
from arkclient.tree_signer import TreeNonces, generate_nonce_tree, sign_vtxo_tree


class SettlementState(str, Enum):
    """Round settlement states."""

    IDLE = "idle"
    NO_OP = "no_op"
    INPUTS_REGISTERED = "inputs_registered"
    OUTPUTS_REGISTERED = "outputs_registered"
    AWAITING_SIGNING = "awaiting_signing"
    AWAITING_NONCES_AGGREGATED = "awaiting_nonces_aggregated"
    AWAITING_FINALIZATION = "awaiting_finalization"
    AWAITING_FINALIZED = "awaiting_finalized"
    FINALIZED = "finalized"
    FAILED = "failed"


class SettlementOutcome(str, Enum):
    FINALIZED = "finalized"
    NOTHING_TO_SETTLE = "nothing_to_settle"


@dataclass
class SettlementResult:
    outcome: SettlementOutcome
    round_txid: str | None = None
    round_id: str | None = None


@dataclass
class RoundPlan:
    """Inputs and outputs one wallet registers for a round."""

    vtxo_inputs: list[VtxoInput] = field(default_factory=list)
    onchain_inputs: list[OnchainInput] = field(default_factory=list)
    outputs: list[RoundOutput] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.vtxo_inputs and not self.onchain_inputs

    def input_total(self) -> int:
        return sum(i.amount for i in self.vtxo_inputs) + sum(i.amount for i in self.onchain_inputs)

    def output_total(self) -> int:
        return sum(o.amount for o in self.outputs)

    def round_inputs(self) -> list[RoundInput]:
        inputs = [
            RoundInput(outpoint=i.outpoint, tapscripts=i.boarding_output.tapscripts())
            for i in self.onchain_inputs
        ]
        inputs.extend(
            RoundInput(outpoint=i.outpoint, tapscripts=i.vtxo.tapscripts())
            for i in self.vtxo_inputs
        )
        return inputs


def plan_round(
    virtual: VirtualTxOutpoints,
    boarding: BoardingOutpoints,
    to_address: str,
    change_address: str,
    dust: int,
    amount: int | None = None,
    drop_dust_change: bool = False,
) -> RoundPlan:
    """
    Decide what to register.

    Without ``amount`` everything spendable (VTXOs and boarding outputs)
    goes to ``to_address``. With ``amount`` VTXOs are coin-selected and any
    change goes to ``change_address``; a dropped sub-dust change is added to
    the destination output so inputs and outputs still balance.
    """
    if amount is None:
        plan = RoundPlan(
            vtxo_inputs=[
                VtxoInput(e.vtxo, e.outpoint.outpoint, e.amount) for e in virtual.spendable
            ],
            onchain_inputs=[
                OnchainInput(u.boarding_output, u.outpoint, u.amount) for u in boarding.spendable
            ],
        )
        total = plan.input_total()
        if total == 0:
            return RoundPlan()
        if total < dust:
            raise BelowDustThreshold(total, dust)
        plan.outputs = [RoundOutput.new_virtual(to_address, total)]
        return plan

    if amount < dust:
        raise BelowDustThreshold(amount, dust)
    selection = select_vtxos(
        [e.outpoint for e in virtual.spendable], amount, dust, drop_dust_change
    )
    entries = {e.outpoint.outpoint: e for e in virtual.spendable}
    plan = RoundPlan(
        vtxo_inputs=[
            VtxoInput(entries[v.outpoint].vtxo, v.outpoint, v.amount) for v in selection.selected
        ],
        outputs=[
            RoundOutput.new_virtual(to_address, selection.total_value - selection.change_value)
        ],
    )
    if selection.change_value:
        plan.outputs.append(RoundOutput.new_virtual(change_address, selection.change_value))
    return plan


class RoundSettlement:
    """
    State machine for one round.

    Not reusable: a failed or finished settlement cannot be run again; the
    caller starts over with fresh state.
    """

    def __init__(
        self,
        coordinator: CoordinatorClient,
        server_info: ServerInfo,
        keypair: KeyPair,
        plan: RoundPlan,
        sign_for_pk: SignForPk,
        config: RoundConfig | None = None,
    ):
        self.coordinator = coordinator
        self.server_info = server_info
        self.keypair = keypair
        self.plan = plan
        self.sign_for_pk = sign_for_pk
        self.config = config or RoundConfig()

        self.state = SettlementState.IDLE
        self.payment_id: str | None = None
        self.round_id: str | None = None
        self.round_txid: str | None = None

        # Disposable per-round key so tree signatures cannot be linked across rounds
        self.cosigner = KeyPair()
        self._signing: RoundSigning | None = None
        self._nonces: TreeNonces | None = None

        self._transitions: dict[
            SettlementState, tuple[type, Callable[[Any], Awaitable[None]]]
        ] = {
            SettlementState.AWAITING_SIGNING: (RoundSigning, self._on_round_signing),
            SettlementState.AWAITING_NONCES_AGGREGATED: (
                RoundSigningNoncesGenerated,
                self._on_nonces_generated,
            ),
            SettlementState.AWAITING_FINALIZATION: (RoundFinalization, self._on_finalization),
            SettlementState.AWAITING_FINALIZED: (RoundFinalized, self._on_finalized),
        }

    def _transition(self, state: SettlementState) -> None:
        logger.info(f"Round settlement: {self.state.value} -> {state.value}")
        self.state = state

    async def run(self) -> SettlementResult:
        if self.state != SettlementState.IDLE:
            raise RuntimeError(f"Settlement already ran (state: {self.state.value})")

        if self.plan.is_empty():
            self._transition(SettlementState.NO_OP)
            logger.info("No spendable inputs, nothing to settle")
            return SettlementResult(SettlementOutcome.NOTHING_TO_SETTLE)

        if self.plan.input_total() != self.plan.output_total():
            raise UnbalancedPlanError(self.plan.input_total(), self.plan.output_total())

        try:
            await self._register()
            stream = self.coordinator.get_event_stream()
            try:
                self._transition(SettlementState.AWAITING_SIGNING)
                while self.state != SettlementState.FINALIZED:
                    expected, handler = self._transitions[self.state]
                    event = await self._next_event(stream, expected)
                    await handler(event)
            finally:
                await stream.aclose()
        except Exception as e:
            logger.error(f"Round settlement failed while {self.state.value}: {e}")
            raise
        finally:
            if self.state != SettlementState.FINALIZED:
                self._transition(SettlementState.FAILED)

        return SettlementResult(SettlementOutcome.FINALIZED, self.round_txid, self.round_id)

    async def _register(self) -> None:
        round_inputs = self.plan.round_inputs()
        logger.info(
            f"Registering {len(self.plan.onchain_inputs)} boarding and "
            f"{len(self.plan.vtxo_inputs)} VTXO inputs ({self.plan.input_total():,} sats)"
        )
        self.payment_id = await self.coordinator.register_inputs_for_next_round(round_inputs)
        self._transition(SettlementState.INPUTS_REGISTERED)

        logger.debug(f"Registering {len(self.plan.outputs)} outputs for {self.payment_id}")
        await self.coordinator.register_outputs_for_next_round(
            self.payment_id, self.plan.outputs, [self.cosigner.public_key_bytes()], False
        )
        self._transition(SettlementState.OUTPUTS_REGISTERED)

        await self.coordinator.ping(self.payment_id)

    async def _next_event(
        self, stream: AsyncIterator[RoundStreamEvent], expected: type
    ) -> RoundStreamEvent:
        try:
            event = await asyncio.wait_for(anext(stream), timeout=self.config.event_timeout_sec)
        except StopAsyncIteration as e:
            raise ProtocolViolation(f"Event stream ended while {self.state.value}") from e
        except asyncio.TimeoutError as e:
            raise EventTimeoutError(
                f"No round event within {self.config.event_timeout_sec}s while {self.state.value}"
            ) from e

        if self.round_id is not None and event.id != self.round_id:
            raise ProtocolViolation(
                f"Event {event.kind.value} is for round {event.id}, expected {self.round_id}"
            )
        if isinstance(event, RoundFailed):
            raise RoundFailedError(event.id, event.reason)
        if not isinstance(event, expected):
            raise ProtocolViolation(f"Unexpected {event.kind.value} while {self.state.value}")
        return event

    async def _on_round_signing(self, event: RoundSigning) -> None:
        self.round_id = event.id
        self._signing = event
        logger.info(f"Round {event.id}: signing {len(event.unsigned_tree)} tree nodes")

        self._nonces = generate_nonce_tree(
            self.cosigner, event.unsigned_tree, event.cosigner_pubkeys
        )
        logger.debug(f"Submitting tree nonces for round {event.id}")
        await self.coordinator.submit_tree_nonces(
            event.id, self.cosigner.public_key_bytes(), self._nonces.public
        )
        self._transition(SettlementState.AWAITING_NONCES_AGGREGATED)

    async def _on_nonces_generated(self, event: RoundSigningNoncesGenerated) -> None:
        if self._signing is None or self._nonces is None:
            raise ProtocolViolation(f"Nonces for round {event.id} arrived before signing started")

        signatures = sign_vtxo_tree(
            self.server_info.vtxo_tree_expiry,
            self.server_info.xonly_pubkey,
            self.cosigner,
            self._signing.unsigned_tree,
            self._signing.unsigned_round_tx,
            self._signing.cosigner_pubkeys,
            self._nonces,
            event.tree_nonces,
        )
        logger.debug(f"Submitting tree signatures for round {event.id}")
        await self.coordinator.submit_tree_signatures(
            event.id, self.cosigner.public_key_bytes(), signatures
        )
        self._transition(SettlementState.AWAITING_FINALIZATION)

    async def _on_finalization(self, event: RoundFinalization) -> None:
        forfeits = create_and_sign_forfeit_txs(
            self.keypair,
            self.plan.vtxo_inputs,
            event.round_tx,
            event.connector_tree,
            event.connectors_index,
            event.min_relay_fee_rate,
            self.server_info.forfeit_address,
            self.server_info.dust,
        )

        round_psbt = None
        if self.plan.onchain_inputs:
            round_psbt = sign_round_psbt(self.sign_for_pk, event.round_tx, self.plan.onchain_inputs)

        logger.debug(
            f"Submitting {len(forfeits)} forfeits"
            + (" and signed round tx" if round_psbt is not None else "")
        )
        await self.coordinator.submit_signed_forfeit_txs(forfeits, round_psbt)
        self._transition(SettlementState.AWAITING_FINALIZED)

    async def _on_finalized(self, event: RoundFinalized) -> None:
        self.round_txid = event.round_txid
        logger.info(f"Round {event.id} finalized: {event.round_txid}")
        self._transition(SettlementState.FINALIZED)
