from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from trade_reconciler.services.tick_reference import TickReference
from trade_reconciler.services.types import TickResult

_ONE = Decimal("1")
_CENT = Decimal("0.01")


def _as_decimal(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    try:
        return Decimal(str(x))
    except InvalidOperation:
        return Decimal("NaN")


def ticks_for(pnl, quantity, tick_value) -> int:
    """round(pnl / quantity / tick_value), half away from zero; 0 instead of NaN."""
    pnl = _as_decimal(pnl)
    quantity = _as_decimal(quantity)
    tick_value = _as_decimal(tick_value)

    if pnl.is_nan() or quantity.is_nan() or tick_value.is_nan():
        return 0
    if quantity == 0 or tick_value == 0:
        return 0

    pnl_per_contract = pnl / quantity
    return int((pnl_per_contract / tick_value).quantize(_ONE, rounding=ROUND_HALF_UP))


def points_for(ticks: int, tick_size) -> Decimal:
    tick_size = _as_decimal(tick_size)
    if tick_size.is_nan():
        return Decimal("0.00")
    return (Decimal(ticks) * tick_size).quantize(_CENT, rounding=ROUND_HALF_UP)


def calculate(trade, tick_reference: TickReference) -> TickResult:
    """Ticks and points captured per contract by one trade."""
    spec = tick_reference.lookup(trade.instrument)
    ticks = ticks_for(trade.pnl, trade.quantity, spec.tick_value)
    return TickResult(
        ticks=ticks,
        points=points_for(ticks, spec.tick_size),
        tick_value=spec.tick_value,
        tick_size=spec.tick_size,
    )


def aggregate(results: Iterable[TickResult]) -> TickResult:
    """
    Grouped trades display the arithmetic sum of their constituents.
    tick_value/tick_size are taken from the first constituent.
    """
    results = list(results)
    if not results:
        return TickResult()
    return TickResult(
        ticks=sum(r.ticks for r in results),
        points=sum((r.points for r in results), Decimal("0.00")),
        tick_value=results[0].tick_value,
        tick_size=results[0].tick_size,
    )
