from __future__ import annotations

from decimal import ROUND_DOWN, Context, Decimal

EPSILON = Decimal("0.00005")

# Wide enough for 18-decimal token amounts with large integer parts.
_EXACT = Context(prec=78, rounding=ROUND_DOWN)


def divide_down(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    return _EXACT.divide(numerator, denominator)


def round_down(value: Decimal, decimals: int) -> Decimal:
    """
    Truncate toward zero at `decimals` places:
      round_down(Decimal("1.239"), 2) == Decimal("1.23")
    """
    if decimals < 0:
        raise ValueError("decimals must be >= 0")
    quantum = Decimal(1).scaleb(-decimals)
    return value.quantize(quantum, rounding=ROUND_DOWN, context=_EXACT)


def token_amount_for_ether(ether_amount: Decimal, price: Decimal, decimals: int) -> Decimal:
    return round_down(divide_down(ether_amount, price), decimals)


def to_base_units(amount: Decimal, decimals: int) -> int:
    return int(round_down(amount, decimals).scaleb(decimals, context=_EXACT))


def is_exhausted(value: Decimal, epsilon: Decimal = EPSILON) -> bool:
    return value <= epsilon
