"""
Money helpers. Amounts are integer cents, rates are basis points.
"""


def format_cents(cents: int) -> str:
    """Format cents as a dollar string: 123456 -> "$1,234.56"."""
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}${cents // 100:,}.{cents % 100:02d}"


def apply_bps(amount_cents: int, rate_bps: int) -> int:
    """
    Apply a basis-point rate, rounding half up to the nearest cent.

    Integer arithmetic keeps the result exact for any amount.
    """
    return (amount_cents * rate_bps + 5000) // 10000


def percent_of(amount_cents: int, percent: int) -> int:
    """Whole-percent share of an amount, rounded half up."""
    return (amount_cents * percent + 50) // 100
