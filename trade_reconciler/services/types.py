from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from trade_reconciler.utils.symbols import base_symbol, contract_symbol


class SourceSystem(str, Enum):
    RITHMIC = "rithmic"
    TRADOVATE = "tradovate"
    IBKR = "ibkr"
    PHOENIX = "phoenix"
    CSV = "csv"


class FillSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def sign(self) -> int:
        return 1 if self is FillSide.BUY else -1


class TradeSide(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def direction(self) -> int:
        return 1 if self is TradeSide.LONG else -1


@dataclass(frozen=True)
class NormalizedFill:
    account_number: str
    instrument_raw_symbol: str
    side: FillSide
    signed_quantity: Decimal
    price: Decimal
    timestamp: datetime
    source_order_id: str
    source_system: SourceSystem
    commission: Decimal = Decimal("0")

    @property
    def quantity(self) -> Decimal:
        return abs(self.signed_quantity)

    @property
    def contract_symbol(self) -> str:
        return contract_symbol(self.instrument_raw_symbol)

    @property
    def base_symbol(self) -> str:
        return base_symbol(self.instrument_raw_symbol)

    @property
    def sort_key(self):
        return (self.timestamp, self.source_order_id)


@dataclass
class OpenLot:
    quantity_remaining: Decimal  # signed, same sign as the opening side
    entry_price: Decimal
    entry_timestamp: datetime
    entry_fill_ref: str
    accumulated_entry_commission: Decimal = Decimal("0")

    @property
    def side(self) -> TradeSide:
        return TradeSide.LONG if self.quantity_remaining > 0 else TradeSide.SHORT


@dataclass
class Trade:
    account_number: str
    instrument: str
    side: TradeSide
    quantity: Decimal
    entry_price: Decimal
    close_price: Decimal
    entry_date: datetime
    close_date: datetime
    pnl: Decimal
    commission: Decimal
    entry_id: str
    close_id: str
    time_in_position_seconds: int = 0
    user_id: Optional[str] = None
    id: Optional[str] = None

    @property
    def net_pnl(self) -> Decimal:
        return self.pnl - self.commission


@dataclass(frozen=True)
class TickSpec:
    ticker: str
    tick_value: Decimal
    tick_size: Decimal

    @property
    def point_value(self) -> Decimal:
        if not self.tick_size:
            return Decimal("1")
        return self.tick_value / self.tick_size


@dataclass
class TickResult:
    ticks: int = 0
    points: Decimal = Decimal("0")
    tick_value: Decimal = Decimal("1")
    tick_size: Decimal = Decimal("0.01")


@dataclass
class MatchResult:
    trades: list = field(default_factory=list)
    unmatched_lots: list = field(default_factory=list)
    inconsistencies: list = field(default_factory=list)

    def extend(self, other: "MatchResult") -> None:
        self.trades.extend(other.trades)
        self.unmatched_lots.extend(other.unmatched_lots)
        self.inconsistencies.extend(other.inconsistencies)
