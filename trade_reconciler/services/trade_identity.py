from __future__ import annotations

import hashlib
import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, List, Tuple

from trade_reconciler.exceptions import IdentityCollisionError
from trade_reconciler.services.types import Trade
from trade_reconciler.utils.parsing import as_utc

logger = logging.getLogger(__name__)

# Fields that make two trades "the same trade". Order matters for the hash.
IDENTITY_FIELDS = (
    "user_id",
    "account_number",
    "entry_id",
    "close_id",
    "instrument",
    "entry_price",
    "close_price",
    "entry_date",
    "close_date",
    "quantity",
    "side",
)

_SEP = "\x1f"


def _canonical(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        # 100.50 and 100.5 must hash the same
        normalized = value.normalize()
        return format(normalized, "f") if normalized != 0 else "0"
    if isinstance(value, float):
        return _canonical(Decimal(str(value)))
    if isinstance(value, datetime):
        return as_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    if isinstance(value, Enum):
        return str(value.value)
    return str(value).strip()


def _format_uuid_like(hexdigest: str) -> str:
    h = hexdigest[:32]
    return f"{h[0:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"


def identity_values(trade) -> Tuple[str, ...]:
    """Canonical string form of the identity fields of a trade-like object."""
    return tuple(_canonical(getattr(trade, f)) for f in IDENTITY_FIELDS)


def derive_trade_id(trade) -> str:
    """
    SHA-256 over the ordered identity fields, grouped like a UUID.

    Re-importing overlapping fill history reproduces the same id for the
    same trade, which is what makes upserts idempotent.
    """
    payload = _SEP.join(identity_values(trade))
    return _format_uuid_like(hashlib.sha256(payload.encode("utf-8")).hexdigest())


def synthesize_fill_id(timestamp, price, quantity, side, order_id=None) -> str:
    """
    Stable fill id for sources that do not supply one.

    An order-level id alone is not enough: every partial execution of the
    order would share it. Pass it as ``order_id`` and it becomes part of
    the hash instead.
    """
    values = (timestamp, price, quantity, side)
    if order_id is not None:
        values = (order_id,) + values
    payload = _SEP.join(_canonical(v) for v in values)
    return "syn-" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def assign_trade_ids(trades: Iterable[Trade], user_id: str) -> List[Trade]:
    trades = list(trades)
    for t in trades:
        t.user_id = user_id
        t.id = derive_trade_id(t)
    return trades


def dedupe_trades(trades: Iterable[Trade]) -> Tuple[List[Trade], List[IdentityCollisionError]]:
    """
    Collapse repeated trades by id.

    Exact repeats are dropped quietly. Same id with different identity
    fields is a data-integrity alarm: the later trade is not kept and the
    collision is returned for an operator to look at.
    """
    seen: dict = {}
    unique: List[Trade] = []
    collisions: List[IdentityCollisionError] = []

    for t in trades:
        if t.id is None:
            raise ValueError("trade has no id; call assign_trade_ids first")

        existing = seen.get(t.id)
        if existing is None:
            seen[t.id] = t
            unique.append(t)
            continue

        if identity_values(existing) == identity_values(t):
            continue

        err = IdentityCollisionError(
            t.id,
            existing=dict(zip(IDENTITY_FIELDS, identity_values(existing))),
            incoming=dict(zip(IDENTITY_FIELDS, identity_values(t))),
        )
        logger.error("identity collision on trade %s", t.id)
        collisions.append(err)

    return unique, collisions
