import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from trade_reconciler.services.trade_identity import (
    assign_trade_ids,
    dedupe_trades,
    derive_trade_id,
    synthesize_fill_id,
)
from trade_reconciler.services.types import FillSide, Trade, TradeSide

UUID_LIKE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


def _trade(**overrides):
    base = dict(
        account_number="ACC-1",
        instrument="MES",
        side=TradeSide.LONG,
        quantity=Decimal("2"),
        entry_price=Decimal("5000.25"),
        close_price=Decimal("5001.50"),
        entry_date=datetime(2024, 12, 2, 14, 30, tzinfo=timezone.utc),
        close_date=datetime(2024, 12, 2, 14, 45, tzinfo=timezone.utc),
        pnl=Decimal("12.50"),
        commission=Decimal("1.24"),
        entry_id="R1",
        close_id="R2",
        user_id="user-1",
    )
    base.update(overrides)
    return Trade(**base)


def test_id_is_stable_and_uuid_shaped():
    a = derive_trade_id(_trade())
    b = derive_trade_id(_trade())
    assert a == b
    assert UUID_LIKE.match(a)


def test_equivalent_values_hash_the_same():
    plain = _trade()
    padded = _trade(entry_price=Decimal("5000.2500"), quantity=Decimal("2.0"))
    assert derive_trade_id(plain) == derive_trade_id(padded)

    eastern = timezone(timedelta(hours=-5))
    shifted = _trade(entry_date=datetime(2024, 12, 2, 9, 30, tzinfo=eastern))
    assert derive_trade_id(plain) == derive_trade_id(shifted)


def test_pnl_and_commission_are_not_identity():
    # a tick table change re-prices a trade, it does not make it a new one
    assert derive_trade_id(_trade()) == derive_trade_id(_trade(pnl=Decimal("99"), commission=Decimal("0")))


@pytest.mark.parametrize(
    "field,value",
    [
        ("user_id", "user-2"),
        ("account_number", "ACC-2"),
        ("close_id", "R3"),
        ("side", TradeSide.SHORT),
        ("quantity", Decimal("3")),
    ],
)
def test_identity_fields_change_the_id(field, value):
    assert derive_trade_id(_trade()) != derive_trade_id(_trade(**{field: value}))


def test_assign_trade_ids_sets_user_and_id():
    trades = assign_trade_ids([_trade(user_id=None)], "user-9")
    assert trades[0].user_id == "user-9"
    assert trades[0].id == derive_trade_id(trades[0])


def test_dedupe_collapses_repeats():
    trades = assign_trade_ids([_trade(), _trade()], "user-1")
    unique, collisions = dedupe_trades(trades)
    assert len(unique) == 1
    assert collisions == []


def test_dedupe_reports_collision_and_keeps_first():
    first, other = assign_trade_ids([_trade(), _trade(close_id="R9")], "user-1")
    other = replace(other, id=first.id)  # force a hash clash

    unique, collisions = dedupe_trades([first, other])

    assert unique == [first]
    assert len(collisions) == 1
    assert collisions[0].trade_id == first.id
    assert collisions[0].existing["close_id"] == "R2"
    assert collisions[0].incoming["close_id"] == "R9"


def test_dedupe_requires_ids():
    with pytest.raises(ValueError):
        dedupe_trades([_trade()])


def test_synthesized_fill_id_is_stable():
    ts = datetime(2024, 12, 2, 14, 30, tzinfo=timezone.utc)
    a = synthesize_fill_id(ts, Decimal("100.50"), Decimal("1"), FillSide.BUY)
    b = synthesize_fill_id(ts, Decimal("100.5"), Decimal("1"), FillSide.BUY)
    c = synthesize_fill_id(ts, Decimal("100.5"), Decimal("1"), FillSide.SELL)
    assert a == b
    assert a != c
    assert a.startswith("syn-")
