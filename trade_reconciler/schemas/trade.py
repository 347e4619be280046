from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class TradeOut(BaseModel):
    id: str
    account_number: str
    instrument: str
    side: str  # long / short
    quantity: Decimal
    entry_price: Decimal
    close_price: Decimal
    entry_date: datetime
    close_date: datetime
    time_in_position: int
    pnl: Decimal
    commission: Decimal
    net_pnl: Decimal
    entry_id: str
    close_id: str

    # Computed per contract from tick details
    ticks: int = 0
    points: Decimal = Decimal("0")
    tick_value: Optional[Decimal] = None
    tick_size: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True)


class TradeTotals(BaseModel):
    count: int = 0
    pnl: Decimal = Decimal("0")
    commission: Decimal = Decimal("0")
    ticks: int = 0
    points: Decimal = Decimal("0")


class TradeListOut(BaseModel):
    trades: List[TradeOut]
    totals: TradeTotals


class AccountDeleteOut(BaseModel):
    account_number: str
    trades_deleted: int
    executions_deleted: int
