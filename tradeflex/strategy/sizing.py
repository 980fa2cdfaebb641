from __future__ import annotations

from decimal import ROUND_DOWN, Decimal

QTY_STEP = Decimal("1e-8")


def quantity_for_cash(cash: Decimal, fraction: Decimal, price: Decimal) -> Decimal:
    """Units purchasable with ``fraction`` of ``cash`` at ``price``, floored to the quantity step."""
    if price <= 0 or cash <= 0 or fraction <= 0:
        return Decimal("0")
    return (cash * fraction / price).quantize(QTY_STEP, rounding=ROUND_DOWN)
