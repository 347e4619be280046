"""
Raw broker payload shapes.

Each variant keeps the broker's own field names (as aliases) and carries a
``source_system`` discriminant, so a batch is a tagged union rather than a
loose dict. Values stay loosely typed here; the normalizer owns parsing.
"""

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class _RawRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RithmicOrder(_RawRecord):
    """One row of a Rithmic (R|Trader) order history export."""

    source_system: Literal["rithmic"] = "rithmic"

    account: Optional[Any] = Field(None, alias="Account")
    symbol: Optional[Any] = Field(None, alias="Symbol")
    buy_sell: Optional[Any] = Field(None, alias="Buy/Sell")
    qty_filled: Optional[Any] = Field(None, alias="Qty Filled")
    avg_fill_price: Optional[Any] = Field(None, alias="Avg Fill Price")
    update_time: Optional[Any] = None
    commission_fill_rate: Optional[Any] = Field(None, alias="Commission Fill Rate")
    order_number: Optional[Any] = Field(None, alias="Order Number")
    status: Optional[Any] = Field(None, alias="Status")

    @model_validator(mode="before")
    @classmethod
    def _find_update_time(cls, data: Any) -> Any:
        # header varies: "Update Time (RDT)", "Update Time (CST)", ...
        if isinstance(data, dict) and "update_time" not in data:
            for key, value in data.items():
                if "update time" in str(key).lower():
                    data = {**data, "update_time": value}
                    break
        return data


class TradovateFill(_RawRecord):
    """A fill from the Tradovate /fill/list API."""

    source_system: Literal["tradovate"] = "tradovate"

    id: Optional[Any] = None
    order_id: Optional[Any] = Field(None, alias="orderId")
    account_id: Optional[Any] = Field(None, alias="accountId")
    account_spec: Optional[Any] = Field(None, alias="accountSpec")
    contract_id: Optional[Any] = Field(None, alias="contractId")
    contract_name: Optional[Any] = Field(None, alias="contractName")
    instrument: Optional[Dict[str, Any]] = None
    timestamp: Optional[Any] = None
    action: Optional[Any] = None
    qty: Optional[Any] = None
    price: Optional[Any] = None
    commission: Optional[Any] = None
    active: Optional[bool] = True


class IbkrExecution(_RawRecord):
    """An execution extracted from an IBKR statement (OCR or CSV)."""

    source_system: Literal["ibkr"] = "ibkr"

    account_id: Optional[Any] = Field(None, alias="accountId")
    symbol: Optional[Any] = None
    side: Optional[Any] = None
    quantity: Optional[Any] = None
    price: Optional[Any] = None
    timestamp: Optional[Any] = None
    commission: Optional[Any] = None
    fee: Optional[Any] = None
    order_id: Optional[Any] = Field(None, alias="orderId")
    # per-execution ids; one order can have several partial executions
    exec_id: Optional[Any] = Field(None, alias="execId")
    trade_id: Optional[Any] = Field(None, alias="tradeId")


# Positional layout of a Phoenix order table row
PHOENIX_ROW_COLUMNS = (
    "orderNumber",
    "symbol",
    "insertTime",
    "executeTime",
    "cancelTime",
    "orderType",
    "status",
    "reason",
    "insertPrice",
    "executePrice",
    "totalQty",
    "filledQty",
    "source",
    "platform",
    "ip",
    "accountNumber",
)


def phoenix_row_to_dict(row) -> Dict[str, Any]:
    out = {col: (row[i] if i < len(row) else None) for i, col in enumerate(PHOENIX_ROW_COLUMNS)}
    # the table has no separate id column; the order number doubles as one
    out["orderId"] = out["orderNumber"]
    return out


class PhoenixOrder(_RawRecord):
    """
    A Phoenix order log entry. Quantities are signed: positive = BUY,
    negative = SELL.
    """

    source_system: Literal["phoenix"] = "phoenix"

    order_number: Optional[Any] = Field(None, alias="orderNumber")
    order_id: Optional[Any] = Field(None, alias="orderId")
    symbol: Optional[Any] = None
    insert_time: Optional[Any] = Field(None, alias="insertTime")
    execute_time: Optional[Any] = Field(None, alias="executeTime")
    cancel_time: Optional[Any] = Field(None, alias="cancelTime")
    order_type: Optional[Any] = Field(None, alias="orderType")
    status: Optional[Any] = None
    reason: Optional[Any] = None
    insert_price: Optional[Any] = Field(None, alias="insertPrice")
    execute_price: Optional[Any] = Field(None, alias="executePrice")
    total_qty: Optional[Any] = Field(None, alias="totalQty")
    filled_qty: Optional[Any] = Field(None, alias="filledQty")
    source: Optional[Any] = None
    platform: Optional[Any] = None
    ip: Optional[Any] = None
    account_number: Optional[Any] = Field(None, alias="accountNumber")


class MappedCsvRow(_RawRecord):
    """A generic CSV row after the external column mapping was applied."""

    source_system: Literal["csv"] = "csv"

    account_number: Optional[Any] = None
    symbol: Optional[Any] = None
    side: Optional[Any] = None
    quantity: Optional[Any] = None
    price: Optional[Any] = None
    timestamp: Optional[Any] = None
    commission: Optional[Any] = None
    fill_id: Optional[Any] = None


RawBrokerRecord = Annotated[
    Union[RithmicOrder, TradovateFill, IbkrExecution, PhoenixOrder, MappedCsvRow],
    Field(discriminator="source_system"),
]

raw_record_adapter = TypeAdapter(RawBrokerRecord)
