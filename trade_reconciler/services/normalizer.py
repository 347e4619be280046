from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ValidationError

from trade_reconciler.exceptions import NormalizationError, OrderNotFilled
from trade_reconciler.schemas.raw_orders import (
    IbkrExecution,
    MappedCsvRow,
    PhoenixOrder,
    RithmicOrder,
    TradovateFill,
    phoenix_row_to_dict,
    raw_record_adapter,
)
from trade_reconciler.services.trade_identity import synthesize_fill_id
from trade_reconciler.services.types import FillSide, NormalizedFill, SourceSystem
from trade_reconciler.utils.column_mapping import apply_column_mapping
from trade_reconciler.utils.parsing import is_blank, parse_decimal, parse_timestamp
from trade_reconciler.utils.side_parser import parse_side, side_from_signed_quantity

logger = logging.getLogger(__name__)


@dataclass
class NormalizationResult:
    fills: List[NormalizedFill] = field(default_factory=list)
    errors: List[NormalizationError] = field(default_factory=list)
    dropped: List[OrderNotFilled] = field(default_factory=list)
    received: int = 0


def _text(value: Any) -> Optional[str]:
    if is_blank(value):
        return None
    return str(value).strip()


def _build_fill(
    ref: Any,
    source: SourceSystem,
    *,
    account: Any,
    symbol: Any,
    side: Optional[FillSide],
    quantity: Optional[Decimal],
    price: Optional[Decimal],
    timestamp: Any,
    commission: Optional[Decimal] = None,
    fill_id: Any = None,
    order_ref: Any = None,
) -> NormalizedFill:
    """Shared validation for every source; raises NormalizationError."""
    account = _text(account)
    symbol = _text(symbol)

    if symbol is None:
        raise NormalizationError(ref, "missing symbol")
    if account is None:
        raise NormalizationError(ref, "missing account number")

    ts = parse_timestamp(timestamp)
    if ts is None:
        raise NormalizationError(ref, f"malformed timestamp: {timestamp!r}")
    if price is None:
        raise NormalizationError(ref, "missing price")
    if quantity is None:
        raise NormalizationError(ref, "missing quantity")
    if quantity == 0:
        raise NormalizationError(ref, "zero quantity")
    if side is None:
        raise NormalizationError(ref, "unknown side")

    quantity = abs(quantity)
    fill_id = _text(fill_id) or synthesize_fill_id(ts, price, quantity, side, order_id=_text(order_ref))

    return NormalizedFill(
        account_number=account,
        instrument_raw_symbol=symbol,
        side=side,
        signed_quantity=side.sign * quantity,
        price=price,
        timestamp=ts,
        commission=abs(commission) if commission is not None else Decimal("0"),
        source_order_id=fill_id,
        source_system=source,
    )


# -------------------------------------------------
# Per-source normalization
# -------------------------------------------------
def _normalize_rithmic(rec: RithmicOrder, ref: Any, default_account: Optional[str]) -> NormalizedFill:
    status = (_text(rec.status) or "").lower()
    if status and status not in ("filled", "complete", "completed"):
        raise OrderNotFilled(ref, f"status {rec.status}")

    qty = parse_decimal(rec.qty_filled)
    if qty == 0:
        raise OrderNotFilled(ref, "nothing filled")

    rate = parse_decimal(rec.commission_fill_rate) or Decimal("0")
    commission = rate * abs(qty) if qty is not None else Decimal("0")

    return _build_fill(
        ref,
        SourceSystem.RITHMIC,
        account=rec.account or default_account,
        symbol=rec.symbol,
        side=parse_side(rec.buy_sell),
        quantity=qty,
        price=parse_decimal(rec.avg_fill_price),
        timestamp=rec.update_time,
        commission=commission,
        fill_id=rec.order_number,
    )


def _normalize_tradovate(rec: TradovateFill, ref: Any, default_account: Optional[str]) -> NormalizedFill:
    if rec.active is False:
        raise OrderNotFilled(ref, "inactive fill")

    instrument = rec.instrument or {}
    master = instrument.get("masterInstrument") or {}
    symbol = instrument.get("name") or rec.contract_name or master.get("name") or rec.contract_id

    account = rec.account_spec or rec.account_id or default_account

    return _build_fill(
        ref,
        SourceSystem.TRADOVATE,
        account=account,
        symbol=symbol,
        side=parse_side(rec.action),
        quantity=parse_decimal(rec.qty),
        price=parse_decimal(rec.price),
        timestamp=rec.timestamp,
        commission=parse_decimal(rec.commission),
        fill_id=rec.id,
    )


def _normalize_ibkr(rec: IbkrExecution, ref: Any, default_account: Optional[str]) -> NormalizedFill:
    commission = abs(parse_decimal(rec.commission) or Decimal("0")) + abs(parse_decimal(rec.fee) or Decimal("0"))
    qty = parse_decimal(rec.quantity)

    return _build_fill(
        ref,
        SourceSystem.IBKR,
        account=rec.account_id or default_account,
        symbol=rec.symbol,
        side=parse_side(rec.side) or side_from_signed_quantity(qty),
        quantity=qty,
        price=parse_decimal(rec.price),
        timestamp=rec.timestamp,
        commission=commission,
        fill_id=_text(rec.exec_id) or _text(rec.trade_id),
        # orderId is shared by every partial execution of the order
        order_ref=rec.order_id,
    )


def phoenix_status(rec: PhoenixOrder) -> str:
    """
    Phoenix rules: a cancel time means Canceled, an execute time means
    Filled, otherwise trust the reported status.
    """
    if not is_blank(rec.cancel_time):
        return "Canceled"
    if not is_blank(rec.execute_time):
        return "Filled"

    status = (_text(rec.status) or "").lower()
    return {
        "filled": "Filled",
        "working": "Working",
        "modified": "Modified",
        "canceled": "Canceled",
        "cancelled": "Canceled",
        "rejected": "Rejected",
    }.get(status, "Working")


def _normalize_phoenix(rec: PhoenixOrder, ref: Any, default_account: Optional[str]) -> NormalizedFill:
    status = phoenix_status(rec)
    if status in ("Canceled", "Rejected"):
        raise OrderNotFilled(ref, status.lower())

    total = parse_decimal(rec.total_qty)
    filled = parse_decimal(rec.filled_qty)

    if status == "Filled":
        qty = filled if filled else total
    elif filled:
        # partially filled working order
        qty = filled
    else:
        raise OrderNotFilled(ref, f"{status.lower()} order with no filled quantity")

    return _build_fill(
        ref,
        SourceSystem.PHOENIX,
        account=rec.account_number or default_account,
        symbol=rec.symbol,
        side=side_from_signed_quantity(total, filled),
        quantity=qty,
        price=parse_decimal(rec.execute_price),
        timestamp=rec.execute_time if not is_blank(rec.execute_time) else rec.insert_time,
        commission=Decimal("0"),
        fill_id=rec.order_id if not is_blank(rec.order_id) else rec.order_number,
    )


def _normalize_csv(rec: MappedCsvRow, ref: Any, default_account: Optional[str]) -> NormalizedFill:
    qty = parse_decimal(rec.quantity)
    return _build_fill(
        ref,
        SourceSystem.CSV,
        account=rec.account_number or default_account,
        symbol=rec.symbol,
        side=parse_side(rec.side) or side_from_signed_quantity(qty),
        quantity=qty,
        price=parse_decimal(rec.price),
        timestamp=rec.timestamp,
        commission=parse_decimal(rec.commission),
        fill_id=rec.fill_id,
    )


_NORMALIZERS: Dict[SourceSystem, Callable[[Any, Any, Optional[str]], NormalizedFill]] = {
    SourceSystem.RITHMIC: _normalize_rithmic,
    SourceSystem.TRADOVATE: _normalize_tradovate,
    SourceSystem.IBKR: _normalize_ibkr,
    SourceSystem.PHOENIX: _normalize_phoenix,
    SourceSystem.CSV: _normalize_csv,
}


def _as_payload(raw: Any, source: SourceSystem) -> Dict[str, Any]:
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True)
    if source is SourceSystem.PHOENIX and isinstance(raw, (list, tuple)):
        raw = phoenix_row_to_dict(raw)
    if not isinstance(raw, Mapping):
        raise NormalizationError(None, f"unsupported record type {type(raw).__name__}")
    return {**raw, "source_system": source.value}


def normalize(
    raw: Any,
    source_system: SourceSystem | str,
    *,
    ref: Any = None,
    default_account: Optional[str] = None,
) -> NormalizedFill:
    """
    Turn one raw broker record into a NormalizedFill.

    Raises NormalizationError for a bad record and OrderNotFilled for an
    order that never executed.
    """
    source = SourceSystem(source_system)
    try:
        payload = _as_payload(raw, source)
        record = raw_record_adapter.validate_python(payload)
    except ValidationError as exc:
        raise NormalizationError(ref, f"invalid {source.value} record: {exc.errors()[0]['msg']}") from exc
    except NormalizationError as exc:
        raise NormalizationError(ref, exc.reason) from exc

    return _NORMALIZERS[source](record, ref, default_account)


def resolve_phoenix_modifications(records: List[Any]) -> List[Any]:
    """
    Collapse repeated rows for one Phoenix orderId to its final state.

    In insert-time order the first Filled or Canceled row wins; otherwise
    the latest Working/Modified row. Rows without an orderId pass through.
    """
    groups: Dict[str, List[PhoenixOrder]] = {}
    order: List[Any] = []

    for raw in records:
        try:
            rec = raw_record_adapter.validate_python(_as_payload(raw, SourceSystem.PHOENIX))
        except (ValidationError, NormalizationError):
            order.append(raw)  # let normalize() report it
            continue

        key = _text(rec.order_id) or _text(rec.order_number)
        if key is None:
            order.append(raw)
            continue
        if key not in groups:
            groups[key] = []
            order.append(key)
        groups[key].append(rec)

    resolved: List[Any] = []
    for item in order:
        if not isinstance(item, str) or item not in groups:
            resolved.append(item)
            continue

        versions = sorted(
            groups[item],
            key=lambda r: (parse_timestamp(r.insert_time) is None, parse_timestamp(r.insert_time) or 0),
        )
        final = None
        for v in versions:
            final = v
            if phoenix_status(v) in ("Filled", "Canceled"):
                break
        resolved.append(final)

    return resolved


def normalize_batch(
    records: Iterable[Any],
    source_system: SourceSystem | str,
    *,
    column_mapping: Optional[Mapping[str, str]] = None,
    default_account: Optional[str] = None,
) -> NormalizationResult:
    """
    Normalize a whole import batch. One bad record never aborts the batch:
    failures land in ``errors``, never-filled orders in ``dropped``.
    """
    source = SourceSystem(source_system)
    records = list(records)
    result = NormalizationResult(received=len(records))

    if source is SourceSystem.CSV:
        try:
            records = [apply_column_mapping(r, column_mapping) for r in records]
        except ValueError as exc:
            result.errors.append(NormalizationError("column_mapping", str(exc)))
            return result
    elif source is SourceSystem.PHOENIX:
        records = resolve_phoenix_modifications(records)

    for i, raw in enumerate(records):
        try:
            fill = normalize(raw, source, ref=i, default_account=default_account)
        except OrderNotFilled as exc:
            result.dropped.append(exc)
            logger.debug("dropped %s record %s: %s", source.value, i, exc.reason)
            continue
        except NormalizationError as exc:
            result.errors.append(exc)
            logger.warning("skipping %s record %s: %s", source.value, i, exc.reason)
            continue
        result.fills.append(fill)

    logger.info(
        "normalized %s batch: %d received, %d fills, %d dropped, %d failed",
        source.value,
        result.received,
        len(result.fills),
        len(result.dropped),
        len(result.errors),
    )
    return result
