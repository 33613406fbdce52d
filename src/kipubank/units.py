"""Conversion between ether and wei.

All ledger amounts are integers in wei; ether strings only exist at the edges
(scripts, logs).
"""

from decimal import Decimal, InvalidOperation, localcontext
from typing import Union

WEI_PER_ETHER = 10**18
ETHER_DECIMALS = 18
UINT256_MAX = 2**256 - 1


def parse_ether(value: Union[str, int, Decimal]) -> int:
    """Convert an ether amount to wei.

    Raises:
        ValueError: on malformed, negative or over-precise input
    """
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid ether amount: {value!r}")

    if not amount.is_finite():
        raise ValueError(f"Invalid ether amount: {value!r}")
    if amount < 0:
        raise ValueError(f"Ether amount must not be negative: {value}")

    with localcontext() as ctx:
        ctx.prec = 100
        wei = amount * WEI_PER_ETHER
    if wei != wei.to_integral_value():
        raise ValueError(f"Too many decimals (max {ETHER_DECIMALS}): {value}")
    return int(wei)


def format_ether(wei: int) -> str:
    """Format a wei amount as an ether string without trailing zeros."""
    if wei < 0:
        raise ValueError(f"Wei amount must not be negative: {wei}")
    whole, frac = divmod(wei, WEI_PER_ETHER)
    if not frac:
        return f"{whole}.0"
    return f"{whole}.{frac:018d}".rstrip("0")


def check_uint256(value: int, name: str = "amount") -> int:
    """Validate that value is an unsigned 256-bit integer."""
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"{name} out of uint256 range: {value}")
    return value
