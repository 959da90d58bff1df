"""
Coin selection for transfers.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable

from loguru import logger

from btcadaptor.errors import InsufficientFunds, InvalidAmount
from btcadaptor.models import OutputRef, SelectionRequest, SelectionResult, SpendableOutput


def check_amount(amount: int) -> None:
    """Raise InvalidAmount unless amount is a positive int (bool excluded)."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"Amount must be an integer, got {amount!r}")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount}")


def select_coins(
    utxos: Iterable[SpendableOutput],
    target_amount: int,
    excluded: Collection[OutputRef] = frozenset(),
) -> SelectionResult:
    """
    Select spendable outputs covering ``target_amount``.

    Tiers, first match wins:
    1. A single output worth exactly the target. When several qualify the
       choice among them is arbitrary; callers must not depend on which.
    2. Below-target outputs, largest first, until the running sum reaches
       the target.
    3. The smallest single output at or above the target.

    This is a greedy heuristic that prefers few large inputs; it does not
    minimise change.

    Raises:
        InvalidAmount: If target_amount is not a positive integer
        InsufficientFunds: If no tier yields a covering selection
    """
    check_amount(target_amount)

    candidates = sorted(
        (utxo for utxo in utxos if utxo.ref not in excluded), key=lambda u: u.ref
    )
    available = sum(utxo.value for utxo in candidates)

    for utxo in candidates:
        if utxo.value == target_amount:
            logger.debug(f"Exact match: {utxo.ref}")
            return SelectionResult(outputs=[utxo], total_value=utxo.value)

    below = [utxo for utxo in candidates if utxo.value < target_amount]
    at_or_above = [utxo for utxo in candidates if utxo.value >= target_amount]

    # sort() is stable, so equal values keep OutputRef order
    below.sort(key=lambda u: u.value, reverse=True)

    selected: list[SpendableOutput] = []
    total = 0
    for utxo in below:
        selected.append(utxo)
        total += utxo.value
        if total >= target_amount:
            logger.debug(f"Greedy selection: {len(selected)} inputs, total {total}")
            return SelectionResult(outputs=selected, total_value=total)

    if not at_or_above:
        raise InsufficientFunds(required=target_amount, available=available)

    smallest = min(at_or_above, key=lambda u: u.value)
    logger.debug(f"Minimal cover: {smallest.ref} ({smallest.value})")
    return SelectionResult(outputs=[smallest], total_value=smallest.value)


def select_for_request(
    utxos: Iterable[SpendableOutput], request: SelectionRequest
) -> SelectionResult:
    """Select coins belonging to the request's address."""
    owned = [utxo for utxo in utxos if utxo.address == request.address]
    return select_coins(owned, request.target_amount, request.excluded)
