"""
Refund allocation across a checkout batch.

One processor charge can pay for several registrations (siblings checked
out together). When the charge is refunded, the refunded amount is split
across the registrations proportionally to their `total_price_cents` using
the largest-remainder method, so the shares are whole cents and always sum
exactly to the refunded amount.
"""

from collections.abc import Sequence


def distribute_proportionally(amount_cents: int, weights: Sequence[int]) -> list[int]:
    """
    Split `amount_cents` into integer shares proportional to `weights`.

    - Each share starts at floor(amount * weight / total).
    - Leftover cents go one each to the largest fractional remainders;
      ties go to the earlier position.
    - All-zero weights split the amount evenly.

    Example:
        distribute_proportionally(100, [1, 1, 1]) == [34, 33, 33]
    """
    if not weights:
        return []
    if amount_cents < 0:
        raise ValueError("amount_cents must not be negative")
    if any(w < 0 for w in weights):
        raise ValueError("weights must not be negative")

    total = sum(weights)
    if total == 0:
        weights = [1] * len(weights)
        total = len(weights)

    shares = []
    remainders = []
    for index, weight in enumerate(weights):
        numerator = amount_cents * weight
        shares.append(numerator // total)
        remainders.append((numerator % total, -index))

    leftover = amount_cents - sum(shares)
    for _, neg_index in sorted(remainders, reverse=True)[:leftover]:
        shares[-neg_index] += 1

    return shares


def allocate_refund(
    amount_refunded_cents: int,
    registration_totals: dict[int, int],
) -> dict[int, int]:
    """
    Allocate a refunded amount to registrations keyed by id.

    Iteration order of `registration_totals` decides tie-breaks, callers pass
    registrations ordered by id.
    """
    ids = list(registration_totals)
    shares = distribute_proportionally(
        amount_refunded_cents, [registration_totals[i] for i in ids]
    )
    return dict(zip(ids, shares))
