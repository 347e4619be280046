import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from trade_reconciler.services.fifo_matcher import group_fills, match, match_group
from trade_reconciler.services.types import TradeSide

T0 = datetime(2024, 12, 2, 14, 30, tzinfo=timezone.utc)


def test_fifo_partial_close_uses_weighted_entry(make_fill):
    fills = [
        make_fill("BUY", 2, 100, minute=0, fill_id="f1"),
        make_fill("BUY", 3, 101, minute=1, fill_id="f2"),
        make_fill("SELL", 4, 105, minute=2, fill_id="f3"),
    ]

    result = match(fills)

    assert len(result.trades) == 1
    t = result.trades[0]
    assert t.side == TradeSide.LONG
    assert t.quantity == Decimal("4")
    assert t.entry_price == Decimal("100.5")
    assert t.close_price == Decimal("105")
    assert t.entry_date == T0
    assert t.close_date == T0 + timedelta(minutes=2)
    assert t.pnl == Decimal("18")
    assert t.entry_id == "f1-f2"
    assert t.close_id == "f3"
    assert t.time_in_position_seconds == 120

    # one contract of the second lot is still open
    assert len(result.unmatched_lots) == 1
    lot = result.unmatched_lots[0]
    assert lot.quantity_remaining == Decimal("1")
    assert lot.entry_price == Decimal("101")
    assert lot.entry_fill_ref == "f2"


def test_close_exceeding_position_flips(make_fill):
    fills = [
        make_fill("BUY", 5, 100, minute=0, fill_id="f1"),
        make_fill("SELL", 8, 110, minute=1, fill_id="f2"),
    ]

    result = match(fills)

    assert len(result.trades) == 1
    t = result.trades[0]
    assert t.side == TradeSide.LONG
    assert t.quantity == Decimal("5")
    assert t.pnl == Decimal("50")

    assert len(result.unmatched_lots) == 1
    lot = result.unmatched_lots[0]
    assert lot.side == TradeSide.SHORT
    assert lot.quantity_remaining == Decimal("-3")
    assert lot.entry_price == Decimal("110")

    assert len(result.inconsistencies) == 1
    assert result.inconsistencies[0].excess_quantity == Decimal("3")
    assert result.inconsistencies[0].fill_ref == "f2"


def test_short_round_trip(make_fill):
    result = match(
        [
            make_fill("SELL", 1, 110, minute=0),
            make_fill("BUY", 1, 100, minute=5),
        ]
    )

    assert len(result.trades) == 1
    assert result.trades[0].side == TradeSide.SHORT
    assert result.trades[0].pnl == Decimal("10")
    assert result.unmatched_lots == []


def test_empty_input():
    result = match([])
    assert result.trades == []
    assert result.unmatched_lots == []
    assert result.inconsistencies == []


def test_only_opening_fills_produce_no_trades(make_fill):
    result = match([make_fill("BUY", 1, 100), make_fill("BUY", 2, 101, minute=1)])
    assert result.trades == []
    assert len(result.unmatched_lots) == 2


def test_accounts_never_close_each_other(make_fill):
    result = match(
        [
            make_fill("BUY", 1, 100, account="A"),
            make_fill("SELL", 1, 105, minute=1, account="B"),
        ]
    )

    assert result.trades == []
    sides = sorted(lot.side.value for lot in result.unmatched_lots)
    assert sides == ["long", "short"]


def test_expiry_spellings_net_against_each_other(make_fill):
    # one broker writes MESZ5, another MESZ25
    result = match(
        [
            make_fill("BUY", 1, 5000, symbol="MESZ5"),
            make_fill("SELL", 1, 5010, minute=1, symbol="MESZ25"),
        ]
    )

    assert len(result.trades) == 1
    assert result.trades[0].instrument == "MES"
    assert result.unmatched_lots == []


def test_exchange_suffix_does_not_split_groups(make_fill):
    groups = group_fills(
        [
            make_fill("BUY", 1, 5000, symbol="MESZ4@CME"),
            make_fill("SELL", 1, 5010, minute=1, symbol="MESZ4"),
        ]
    )
    assert list(groups) == [("ACC-1", "MES")]


def test_matching_is_order_independent(make_fill):
    fills = [
        make_fill("BUY", 1, 100, minute=0, fill_id="a"),
        make_fill("BUY", 1, 102, minute=0, fill_id="b"),  # same timestamp, tie broken by id
        make_fill("SELL", 1, 105, minute=1, fill_id="c"),
        make_fill("SELL", 1, 99, minute=2, fill_id="d"),
    ]
    expected = match(fills)

    shuffled = fills[:]
    random.Random(7).shuffle(shuffled)
    again = match(shuffled)

    assert [(t.entry_id, t.close_id, t.pnl) for t in again.trades] == [
        (t.entry_id, t.close_id, t.pnl) for t in expected.trades
    ]
    assert [t.entry_id for t in expected.trades] == ["a", "b"]


def test_point_value_from_tick_reference(make_fill, tick_reference):
    result = match(
        [
            make_fill("BUY", 2, "5000.00", symbol="MESZ4"),
            make_fill("SELL", 2, "5001.25", minute=3, symbol="MESZ4"),
        ],
        tick_reference,
    )

    t = result.trades[0]
    # 1.25 points x 2 contracts x $5/point
    assert t.pnl == Decimal("12.50")
    assert t.instrument == "MES"


def test_commission_is_split_pro_rata(make_fill):
    result = match_group(
        [
            make_fill("BUY", 2, 100, minute=0, commission="1.00"),
            make_fill("SELL", 1, 101, minute=1, commission="0.50"),
        ]
    )

    t = result.trades[0]
    assert t.commission == Decimal("1.00")
    assert t.net_pnl == Decimal("0")
    assert result.unmatched_lots[0].accumulated_entry_commission == Decimal("0.50")


def test_one_closing_fill_spanning_lots_is_one_trade(make_fill):
    result = match(
        [
            make_fill("SELL", 1, 200, minute=0, fill_id="s1"),
            make_fill("SELL", 1, 202, minute=1, fill_id="s2"),
            make_fill("SELL", 1, 204, minute=2, fill_id="s3"),
            make_fill("BUY", 3, 201, minute=3, fill_id="b1"),
        ]
    )

    assert len(result.trades) == 1
    t = result.trades[0]
    assert t.quantity == Decimal("3")
    assert t.entry_price == Decimal("202")
    assert t.entry_id == "s1-s2-s3"
    # (200-201) + (202-201) + (204-201), short
    assert t.pnl == Decimal("3")
    assert result.unmatched_lots == []
