"""
arkclient - Ark round participant: tree signing, forfeits and settlement.
"""

__version__ = "0.1.0"

from arkclient.client import ArkClient
from arkclient.config import RoundConfig, Settings, get_settings
from arkclient.settlement import (
    RoundPlan,
    RoundSettlement,
    SettlementOutcome,
    SettlementResult,
    SettlementState,
    plan_round,
)

__all__ = [
    "ArkClient",
    "RoundConfig",
    "RoundPlan",
    "RoundSettlement",
    "Settings",
    "SettlementOutcome",
    "SettlementResult",
    "SettlementState",
    "get_settings",
    "plan_round",
]
