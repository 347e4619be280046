from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from trade_reconciler.models.tick_details import TickDetails
from trade_reconciler.services.types import TickSpec
from trade_reconciler.utils.symbols import base_symbol

logger = logging.getLogger(__name__)

DEFAULT_TICK_VALUE = Decimal("1")
DEFAULT_TICK_SIZE = Decimal("0.01")


def _dec(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


class TickReference:
    """
    Read-only lookup of instrument prefix -> tick size/value.

    Longest matching prefix wins ("MNQZ5" resolves to "MNQ", not "M").
    Unknown instruments get the default spec instead of an error.
    """

    def __init__(self, specs: Iterable[TickSpec] = ()):
        self._specs = {s.ticker.upper(): s for s in specs}
        # longest first so the first hit is the longest prefix
        self._ordered = sorted(self._specs, key=len, reverse=True)

    @classmethod
    def from_rows(cls, rows: Iterable) -> "TickReference":
        specs = []
        for row in rows:
            if isinstance(row, TickSpec):
                specs.append(row)
            elif isinstance(row, Mapping):
                specs.append(
                    TickSpec(
                        ticker=str(row["ticker"]),
                        tick_value=_dec(row.get("tick_value", row.get("tickValue"))),
                        tick_size=_dec(row.get("tick_size", row.get("tickSize"))),
                    )
                )
            elif isinstance(row, (tuple, list)):
                ticker, tick_value, tick_size = row
                specs.append(TickSpec(str(ticker), _dec(tick_value), _dec(tick_size)))
            else:
                specs.append(TickSpec(str(row.ticker), _dec(row.tick_value), _dec(row.tick_size)))
        return cls(specs)

    def __len__(self) -> int:
        return len(self._specs)

    def find(self, instrument: str) -> TickSpec | None:
        symbol = (instrument or "").strip().upper()
        for ticker in self._ordered:
            if symbol.startswith(ticker):
                return self._specs[ticker]
        return None

    def lookup(self, instrument: str) -> TickSpec:
        spec = self.find(instrument)
        if spec is None:
            return TickSpec(ticker=base_symbol(instrument), tick_value=DEFAULT_TICK_VALUE, tick_size=DEFAULT_TICK_SIZE)
        return spec

    def point_value(self, instrument: str) -> Decimal:
        """Currency value of a one-point move for one contract; 1 when unknown."""
        spec = self.find(instrument)
        if spec is None:
            return Decimal("1")
        return spec.point_value


def load_tick_reference(session: Session) -> TickReference:
    rows = session.execute(select(TickDetails).order_by(TickDetails.ticker)).scalars().all()
    logger.debug("loaded %d tick details", len(rows))
    return TickReference.from_rows(rows)
