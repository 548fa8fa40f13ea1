"""
Fixed-point money handling.

Amounts are stored as integer subunits: 1 unit = 10,000,000 subunits.
Decimal is used only at the edges, to parse and display human amounts.
"""

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Union

UNIT_DECIMALS = 7
UNIT_SCALE = 10 ** UNIT_DECIMALS

# Fee percentage is expressed in basis points (200 = 2.00%)
BASIS_POINTS = 10_000
MIN_FEE_PERCENTAGE = 100
MAX_FEE_PERCENTAGE = 500
DEFAULT_FEE_PERCENTAGE = 200


def to_subunits(amount: Union[str, int, Decimal]) -> int:
    """Convert a human amount in units to integer subunits.

    Args:
        amount: Amount in units, e.g. "12.50"

    Returns:
        Amount in subunits

    Raises:
        ValueError: If the amount is not a number or has more precision
            than the subunit allows
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Not a valid amount: {amount!r}")

    if not value.is_finite():
        raise ValueError(f"Not a valid amount: {amount!r}")

    scaled = value * UNIT_SCALE
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {UNIT_DECIMALS} decimal places")
    return int(scaled)


def to_units(subunits: int) -> Decimal:
    """Convert integer subunits back to an exact Decimal amount in units."""
    return Decimal(subunits) / UNIT_SCALE


def format_amount(subunits: int) -> str:
    """Format subunits for display, truncated to 2 decimal places."""
    units = to_units(subunits).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    return f"{units:,.2f}"


def calculate_fee(amount: int, fee_percentage: int) -> int:
    """Operating fee for a deposit; integer division rounds toward zero."""
    return amount * fee_percentage // BASIS_POINTS
