# backend/services/pricing.py
"""Suggested asking amounts. Display only; the protocol never relies on them."""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from models.offer import ItemLine, PriceQuoteLine, PriceQuoteResponse

CENTS = Decimal("0.01")


def to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def _total(pairs: Iterable[tuple[Optional[Decimal], int]]) -> Decimal:
    return to_cents(sum(((price or Decimal("0")) * qty for price, qty in pairs), Decimal("0")))


def lines_total(lines: Iterable[ItemLine]) -> Decimal:
    """Sum of unit price hint times quantity over offer lines."""
    return _total((line.unit_price_hint, line.quantity) for line in lines)


def quote(lines: list[PriceQuoteLine]) -> PriceQuoteResponse:
    return PriceQuoteResponse(
        trend_total=_total((line.trend_price, line.quantity) for line in lines),
        low_total=_total((line.low_price, line.quantity) for line in lines),
    )
