from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from trade_reconciler.api.deps import get_cipher, get_db
from trade_reconciler.models.synchronization import Synchronization
from trade_reconciler.schemas.imports import ImportReport
from trade_reconciler.schemas.trade import AccountDeleteOut, TradeListOut, TradeOut, TradeTotals
from trade_reconciler.services import tick_pnl
from trade_reconciler.services.encryption import FieldCipher
from trade_reconciler.services.import_pipeline import ImportPipeline, account_lock
from trade_reconciler.services.repositories import ExecutionRepository, TradeRepository
from trade_reconciler.services.tick_reference import load_tick_reference
from trade_reconciler.services.types import TickResult, Trade

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trades", tags=["trades"])


# =================================================
# Helpers
# =================================================
def _trade_out(t: Trade, ticks: TickResult) -> TradeOut:
    return TradeOut(
        id=t.id,
        account_number=t.account_number,
        instrument=t.instrument,
        side=t.side.value,
        quantity=t.quantity,
        entry_price=t.entry_price,
        close_price=t.close_price,
        entry_date=t.entry_date,
        close_date=t.close_date,
        time_in_position=t.time_in_position_seconds,
        pnl=t.pnl,
        commission=t.commission,
        net_pnl=t.net_pnl,
        entry_id=t.entry_id,
        close_id=t.close_id,
        ticks=ticks.ticks,
        points=ticks.points,
        tick_value=ticks.tick_value,
        tick_size=ticks.tick_size,
    )


def _purge_account(db: Session, cipher: FieldCipher, user_id: str, account_number: str) -> AccountDeleteOut:
    # caller holds the account lock and commits
    return AccountDeleteOut(
        account_number=account_number,
        trades_deleted=TradeRepository(db, cipher).delete_account(user_id, account_number),
        executions_deleted=ExecutionRepository(db, cipher).delete_account(user_id, account_number),
    )


# =================================================
# Routes
# =================================================
@router.get("", response_model=TradeListOut)
def list_trades(
    user_id: str = Query(..., min_length=1),
    account_number: Optional[str] = None,
    db: Session = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    """Closed trades, decrypted, with ticks/points per contract."""
    trades = TradeRepository(db, cipher).list_for_user(user_id, account_number)
    reference = load_tick_reference(db)

    results: List[TickResult] = [tick_pnl.calculate(t, reference) for t in trades]
    combined = tick_pnl.aggregate(results)

    return TradeListOut(
        trades=[_trade_out(t, r) for t, r in zip(trades, results)],
        totals=TradeTotals(
            count=len(trades),
            pnl=sum((t.pnl for t in trades), Decimal("0")),
            commission=sum((t.commission for t in trades), Decimal("0")),
            ticks=combined.ticks,
            points=combined.points,
        ),
    )


@router.post("/rebuild", response_model=ImportReport)
def rebuild_trades(
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    """Re-match every stored fill of a user (e.g. after tick details changed)."""
    return ImportPipeline(db, cipher).rebuild(user_id)


@router.delete("/accounts/{account_number}", response_model=AccountDeleteOut)
def delete_account(
    account_number: str,
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    """
    Delete every trade and stored fill of one account.
    The account column is encrypted, so rows are found by fingerprint.
    """
    with account_lock(user_id, cipher.fingerprint(account_number)):
        out = _purge_account(db, cipher, user_id, account_number)
        db.commit()
    return out


@router.delete("/synchronizations/{synchronization_id}", response_model=AccountDeleteOut)
def delete_synchronization(
    synchronization_id: int,
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    """Disconnect a broker account and drop everything imported through it."""
    sync = db.get(Synchronization, synchronization_id)
    if sync is None or sync.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Synchronization not found")

    with account_lock(user_id, cipher.fingerprint(sync.account_id)):
        out = _purge_account(db, cipher, user_id, sync.account_id)
        db.delete(sync)
        db.commit()

    logger.info("removed synchronization %s and %d trades", synchronization_id, out.trades_deleted)
    return out
