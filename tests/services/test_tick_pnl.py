from decimal import Decimal
from types import SimpleNamespace

from hypothesis import given
from hypothesis import strategies as st

from trade_reconciler.services import tick_pnl
from trade_reconciler.services.tick_reference import TickReference
from trade_reconciler.services.types import TickResult


def _trade(instrument, pnl, quantity):
    return SimpleNamespace(instrument=instrument, pnl=pnl, quantity=quantity)


def test_mes_scenario(tick_reference):
    result = tick_pnl.calculate(_trade("MES", Decimal("12.50"), Decimal("2")), tick_reference)

    assert result.ticks == 5
    assert result.points == Decimal("1.25")
    assert result.tick_value == Decimal("1.25")
    assert result.tick_size == Decimal("0.25")


def test_longest_prefix_wins(tick_reference):
    # "MNQ" must not resolve to "NQ" or anything shorter
    assert tick_reference.lookup("MNQZ4").ticker == "MNQ"
    assert tick_reference.lookup("NQZ4").ticker == "NQ"


def test_unknown_instrument_uses_defaults():
    result = tick_pnl.calculate(_trade("ZZZ", Decimal("12.50"), Decimal("2")), TickReference())

    # 6.25 per contract / 1.00 -> 6 ticks of 0.01
    assert result.ticks == 6
    assert result.points == Decimal("0.06")
    assert result.tick_value == Decimal("1")
    assert result.tick_size == Decimal("0.01")


def test_rounds_half_away_from_zero():
    assert tick_pnl.ticks_for(Decimal("2.5"), 1, 1) == 3
    assert tick_pnl.ticks_for(Decimal("-2.5"), 1, 1) == -3
    assert tick_pnl.ticks_for(Decimal("2.49"), 1, 1) == 2


def test_nan_and_zero_quantity_are_zero_ticks():
    assert tick_pnl.ticks_for(float("nan"), 1, 1) == 0
    assert tick_pnl.ticks_for(Decimal("10"), 0, 1) == 0
    assert tick_pnl.ticks_for(Decimal("10"), 1, 0) == 0


def test_tick_details_from_orm_like_rows():
    ref = TickReference.from_rows([SimpleNamespace(ticker="ES", tick_value=12.5, tick_size=0.25)])
    assert ref.point_value("ESZ4") == Decimal("50")
    assert ref.point_value("CL") == Decimal("1")


def test_aggregate_sums_ticks_and_points():
    combined = tick_pnl.aggregate(
        [
            TickResult(ticks=5, points=Decimal("1.25"), tick_value=Decimal("1.25"), tick_size=Decimal("0.25")),
            TickResult(ticks=-2, points=Decimal("-0.50"), tick_value=Decimal("1.25"), tick_size=Decimal("0.25")),
        ]
    )
    assert combined.ticks == 3
    assert combined.points == Decimal("0.75")
    assert tick_pnl.aggregate([]).ticks == 0


REFERENCE = TickReference.from_rows(
    [
        ("MES", "1.25", "0.25"),
        ("ES", "12.50", "0.25"),
        ("MNQ", "0.50", "0.25"),
        ("NQ", "5.00", "0.25"),
    ]
)

pnls = st.decimals(min_value=-50000, max_value=50000, places=2, allow_nan=False, allow_infinity=False)


@given(
    instrument=st.sampled_from(["MES", "ES", "MNQ", "NQ"]),
    trades=st.lists(st.tuples(pnls, st.integers(min_value=1, max_value=10)), min_size=1, max_size=20),
)
def test_grouped_trade_is_the_sum_of_its_parts(instrument, trades):
    results = [tick_pnl.calculate(_trade(instrument, pnl, Decimal(qty)), REFERENCE) for pnl, qty in trades]
    combined = tick_pnl.aggregate(results)

    assert combined.ticks == sum(r.ticks for r in results)
    assert combined.points == sum((r.points for r in results), Decimal("0"))
    # one instrument, so the summed points are still whole ticks
    assert combined.points == tick_pnl.points_for(combined.ticks, combined.tick_size)

    for (pnl, qty), r in zip(trades, results):
        exact = pnl / qty / r.tick_value
        assert abs(Decimal(r.ticks) - exact) <= Decimal("0.5")


@given(
    first=pnls,
    second=pnls,
    quantity=st.integers(min_value=1, max_value=10),
    tick_value=st.sampled_from([Decimal("0.5"), Decimal("1.25"), Decimal("5"), Decimal("12.5")]),
)
def test_ticks_of_a_pair_are_within_one_tick_of_the_combined_pnl(first, second, quantity, tick_value):
    separate = tick_pnl.ticks_for(first, quantity, tick_value) + tick_pnl.ticks_for(second, quantity, tick_value)
    combined = tick_pnl.ticks_for(first + second, quantity, tick_value)

    assert abs(separate - combined) <= 1
