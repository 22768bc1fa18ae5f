"""
Exception hierarchy shared by the Ark client components.

Every failure that aborts a round surfaces as one of these types. Library
exceptions (httpx, coincurve, pydantic) are wrapped with ``raise ... from e``
so the original cause stays on the traceback.
"""

from __future__ import annotations


class ArkError(Exception):
    """Base class for all Ark client errors."""


class ConversionError(ArkError):
    """A coordinator or explorer response field could not be converted."""


class ProtocolViolation(ArkError):
    """An event arrived that does not fit the state the round is waiting in."""


class RoundFailedError(ProtocolViolation):
    """The coordinator announced that the round failed."""

    def __init__(self, round_id: str, reason: str):
        super().__init__(f"Round {round_id} failed: {reason}")
        self.round_id = round_id
        self.reason = reason


class CoinSelectionError(ArkError):
    pass


class InsufficientFunds(CoinSelectionError):
    def __init__(self, required: int, available: int):
        super().__init__(f"Insufficient funds: need {required} sats, have {available} sats")
        self.required = required
        self.available = available


class BelowDustThreshold(CoinSelectionError):
    def __init__(self, amount: int, dust: int):
        super().__init__(f"Amount {amount} sats is below dust threshold {dust} sats")
        self.amount = amount
        self.dust = dust


class SigningError(ArkError):
    pass


class NetworkError(ArkError):
    pass


class EventTimeoutError(NetworkError):
    """No event arrived on the round stream within the configured wait."""


class WalletNotFoundError(ArkError):
    pass


class UnbalancedPlanError(ArkError):
    """Outputs registered for a round or transfer do not add up to its inputs."""

    def __init__(self, inputs: int, outputs: int):
        super().__init__(f"Outputs ({outputs} sats) do not match inputs ({inputs} sats)")
        self.inputs = inputs
        self.outputs = outputs
