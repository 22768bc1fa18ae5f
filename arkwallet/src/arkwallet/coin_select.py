"""
Coin selection over spendable VTXOs.
"""

from __future__ import annotations

from collections.abc import Sequence

from arkcore.errors import BelowDustThreshold, InsufficientFunds
from arkcore.models import VtxoOutPoint

from arkwallet.models import CoinSelection

# Upper bound on branches visited while looking for an exact-amount subset
EXACT_MATCH_MAX_TRIES = 100_000


def _selection_order(vtxo: VtxoOutPoint) -> tuple[int, int, tuple[str, int]]:
    # Largest first; among equals spend the one expiring soonest
    return (-vtxo.amount, vtxo.expire_at, vtxo.outpoint.sort_key())


def _find_exact_match(
    ordered: list[VtxoOutPoint], amount: int, max_tries: int = EXACT_MATCH_MAX_TRIES
) -> list[VtxoOutPoint] | None:
    """
    Depth-first search for a subset summing to exactly ``amount``.

    Branches that include a candidate are explored before those that skip
    it, so the first match found is the same for any permutation of the
    candidates. Gives up after ``max_tries`` branches.
    """
    # suffix[i] = sum of ordered[i:]
    suffix = [0] * (len(ordered) + 1)
    for i in range(len(ordered) - 1, -1, -1):
        suffix[i] = suffix[i + 1] + ordered[i].amount

    included: list[int] = []
    index = total = 0
    for _ in range(max_tries):
        if total == amount:
            return [ordered[i] for i in included]
        if index < len(ordered) and total + suffix[index] >= amount:
            if total + ordered[index].amount <= amount:
                included.append(index)
                total += ordered[index].amount
            index += 1
            continue
        # Dead end: drop the last included candidate and try without it
        if not included:
            return None
        last = included.pop()
        total -= ordered[last].amount
        index = last + 1
    return None


def select_vtxos(
    candidates: Sequence[VtxoOutPoint],
    amount: int,
    dust: int,
    drop_dust_change: bool = False,
) -> CoinSelection:
    """
    Select VTXOs covering ``amount``.

    Greedy largest-first: the first covering prefix uses as few inputs as
    possible. If its change is positive but below ``dust`` more inputs are
    added until it is not; when even every candidate leaves sub-dust change
    a subset paying ``amount`` exactly (no change) is used instead. With
    ``drop_dust_change`` the sub-dust change is given up and reported as zero.

    Raises:
        InsufficientFunds: the candidates together cannot cover ``amount``
        BelowDustThreshold: no selection has zero change or change of at least dust
    """
    if amount < 0:
        raise ValueError(f"Amount must not be negative: {amount}")

    available = sum(v.amount for v in candidates)
    if available < amount:
        raise InsufficientFunds(amount, available)
    if amount == 0:
        return CoinSelection([], 0, 0, 0)

    ordered = sorted(candidates, key=_selection_order)

    selected: list[VtxoOutPoint] = []
    total = 0
    remaining = iter(ordered)
    for vtxo in remaining:
        selected.append(vtxo)
        total += vtxo.amount
        if total >= amount:
            break

    change = total - amount
    if 0 < change < dust:
        if drop_dust_change:
            return CoinSelection(selected, total, amount, 0)
        for vtxo in remaining:
            selected.append(vtxo)
            total += vtxo.amount
            change = total - amount
            if change >= dust:
                break
        else:
            exact = _find_exact_match(ordered, amount)
            if exact is None:
                raise BelowDustThreshold(change, dust)
            return CoinSelection(exact, amount, amount, 0)

    return CoinSelection(selected, total, amount, change)
