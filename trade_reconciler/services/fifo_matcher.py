# trade_reconciler/services/fifo_matcher.py

from __future__ import annotations

import logging
from collections import defaultdict, deque
from decimal import Decimal
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from trade_reconciler.exceptions import MatchingInconsistency
from trade_reconciler.services.tick_reference import TickReference
from trade_reconciler.services.types import (
    MatchResult,
    NormalizedFill,
    OpenLot,
    Trade,
    TradeSide,
)

logger = logging.getLogger(__name__)

GroupKey = Tuple[str, str]


def group_fills(fills: Iterable[NormalizedFill]) -> Dict[GroupKey, List[NormalizedFill]]:
    """
    Group by (account, instrument) and order each group by (timestamp, source id).

    The instrument is the base symbol, so MESZ5 from one broker and MESZ25
    from another are the same position.
    """
    groups: Dict[GroupKey, List[NormalizedFill]] = defaultdict(list)
    for f in fills:
        groups[(f.account_number, f.base_symbol)].append(f)

    return {key: sorted(groups[key], key=lambda f: f.sort_key) for key in sorted(groups)}


def match(fills: Iterable[NormalizedFill], tick_reference: Optional[TickReference] = None) -> MatchResult:
    """
    Deterministic FIFO matching over every (account, instrument) group.

    - Groups share no state and can be matched in any order
    - Remaining open lots are returned, never emitted as trades
    """
    result = MatchResult()
    for fills_in_group in group_fills(fills).values():
        result.extend(match_group(fills_in_group, tick_reference))
    return result


def match_group(fills: Iterable[NormalizedFill], tick_reference: Optional[TickReference] = None) -> MatchResult:
    """Sequential FIFO fold over one (account, instrument) group."""
    tick_reference = tick_reference or TickReference()
    result = MatchResult()
    lots: Deque[OpenLot] = deque()

    for fill in sorted(fills, key=lambda f: f.sort_key):
        if fill.quantity <= 0:
            # the normalizer rejects these; never let one open a phantom lot
            continue

        resting_sign = _sign(lots[0].quantity_remaining) if lots else 0

        # OPEN / ADD
        if resting_sign == 0 or resting_sign == fill.side.sign:
            lots.append(
                OpenLot(
                    quantity_remaining=fill.side.sign * fill.quantity,
                    entry_price=fill.price,
                    entry_timestamp=fill.timestamp,
                    entry_fill_ref=fill.source_order_id,
                    accumulated_entry_commission=fill.commission,
                )
            )
            continue

        # CLOSE / REDUCE
        trade, leftover = _close_against_lots(lots, fill, tick_reference.point_value(fill.contract_symbol))
        result.trades.append(trade)

        # FLIP: excess opens a fresh position in the fill's direction
        if leftover > 0:
            commission_share = fill.commission * leftover / fill.quantity
            lots.append(
                OpenLot(
                    quantity_remaining=fill.side.sign * leftover,
                    entry_price=fill.price,
                    entry_timestamp=fill.timestamp,
                    entry_fill_ref=fill.source_order_id,
                    accumulated_entry_commission=commission_share,
                )
            )
            inconsistency = MatchingInconsistency(
                account_number=fill.account_number,
                instrument=fill.contract_symbol,
                fill_ref=fill.source_order_id,
                reason="closing fill exceeded resting position; flipped",
                excess_quantity=leftover,
            )
            result.inconsistencies.append(inconsistency)
            logger.info(
                "position flip on %s fill %s: %s contracts carried into new %s lot",
                fill.contract_symbol,
                fill.source_order_id,
                leftover,
                fill.side.value,
            )

    result.unmatched_lots.extend(lots)
    return result


def _sign(q: Decimal) -> int:
    if q > 0:
        return 1
    if q < 0:
        return -1
    return 0


def _close_against_lots(lots: Deque[OpenLot], fill: NormalizedFill, point_value: Decimal) -> Tuple[Trade, Decimal]:
    """
    Consume resting lots oldest-first with one closing fill.

    Returns one Trade for everything this fill closed, plus the quantity
    left over once the resting position is exhausted.
    """
    remaining = fill.quantity
    direction = _sign(lots[0].quantity_remaining)

    consumed: List[Tuple[OpenLot, Decimal, Decimal]] = []  # (lot, qty, entry commission share)

    while remaining > 0 and lots:
        lot = lots[0]
        available = abs(lot.quantity_remaining)
        take = min(available, remaining)

        # Guard against dust
        if take <= 0:
            lots.popleft()
            continue

        if take == available:
            commission_share = lot.accumulated_entry_commission
        else:
            commission_share = lot.accumulated_entry_commission * take / available

        consumed.append((lot, take, commission_share))

        lot.accumulated_entry_commission -= commission_share
        lot.quantity_remaining -= direction * take
        remaining -= take

        if lot.quantity_remaining == 0:
            lots.popleft()

    closed_qty = fill.quantity - remaining

    entry_cost = sum((lot.entry_price * qty for lot, qty, _ in consumed), Decimal("0"))
    entry_price = entry_cost / closed_qty
    entry_date = min(lot.entry_timestamp for lot, _, _ in consumed)

    price_move = sum(((fill.price - lot.entry_price) * qty for lot, qty, _ in consumed), Decimal("0"))
    pnl = price_move * direction * point_value

    entry_commission = sum((c for _, _, c in consumed), Decimal("0"))
    if remaining == 0:
        close_commission = fill.commission
    else:
        close_commission = fill.commission * closed_qty / fill.quantity

    entry_refs: List[str] = []
    for lot, _, _ in consumed:
        if lot.entry_fill_ref not in entry_refs:
            entry_refs.append(lot.entry_fill_ref)

    trade = Trade(
        account_number=fill.account_number,
        instrument=fill.base_symbol,
        side=TradeSide.LONG if direction > 0 else TradeSide.SHORT,
        quantity=closed_qty,
        entry_price=entry_price,
        close_price=fill.price,
        entry_date=entry_date,
        close_date=fill.timestamp,
        time_in_position_seconds=int((fill.timestamp - entry_date).total_seconds()),
        pnl=pnl,
        commission=entry_commission + close_commission,
        entry_id="-".join(entry_refs),
        close_id=fill.source_order_id,
    )
    return trade, remaining
