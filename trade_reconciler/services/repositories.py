# trade_reconciler/services/repositories.py
#
# The persistence boundary. Everything above this module works on plaintext
# domain objects; everything below it is encrypted rows.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from trade_reconciler.exceptions import IdentityCollisionError
from trade_reconciler.models.execution import Execution
from trade_reconciler.models.synchronization import Synchronization
from trade_reconciler.models.trade import Trade as TradeRow
from trade_reconciler.services.encryption import FieldCipher
from trade_reconciler.services.trade_identity import IDENTITY_FIELDS, identity_values
from trade_reconciler.services.types import (
    FillSide,
    NormalizedFill,
    SourceSystem,
    Trade,
    TradeSide,
)
from trade_reconciler.utils.parsing import as_utc

logger = logging.getLogger(__name__)

_NUMERIC_SCALE = Decimal("0.00000001")


def _q(value: Decimal) -> Decimal:
    # pnl/commission columns are Numeric(18, 8)
    return Decimal(value).quantize(_NUMERIC_SCALE)


@dataclass
class UpsertResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    collisions: List[IdentityCollisionError] = field(default_factory=list)


class ExecutionRepository:
    """Stored fill history, keyed by (user, source, account, source fill id)."""

    def __init__(self, session: Session, cipher: FieldCipher):
        self.session = session
        self.cipher = cipher

    def save_fills(self, user_id: str, fills: Iterable[NormalizedFill]) -> Tuple[int, int]:
        """Idempotent insert. Returns (inserted, already_present)."""
        inserted = 0
        existing = 0
        pending = set()

        for f in fills:
            fingerprint = self.cipher.fingerprint(f.account_number)
            key = (f.source_system.value, fingerprint, f.source_order_id)
            if key in pending:
                existing += 1
                continue

            found = self.session.execute(
                select(Execution.id).where(
                    Execution.user_id == user_id,
                    Execution.source_system == f.source_system.value,
                    Execution.account_fingerprint == fingerprint,
                    Execution.source_order_id == f.source_order_id,
                )
            ).first()
            if found:
                existing += 1
                continue

            self.session.add(
                Execution(
                    user_id=user_id,
                    source_system=f.source_system.value,
                    account_number=self.cipher.encrypt(f.account_number),
                    account_fingerprint=fingerprint,
                    instrument_raw_symbol=f.instrument_raw_symbol,
                    contract_symbol=f.contract_symbol,
                    instrument=f.base_symbol,
                    side=f.side.value,
                    signed_quantity=f.signed_quantity,
                    price=f.price,
                    commission=f.commission,
                    timestamp=f.timestamp,
                    source_order_id=f.source_order_id,
                )
            )
            pending.add(key)
            inserted += 1

        self.session.flush()
        return inserted, existing

    def load_group(self, user_id: str, account_number: str, instrument: str) -> List[NormalizedFill]:
        """Full fill history of one (account, instrument) group, in FIFO order."""
        rows = self.session.execute(
            select(Execution)
            .where(
                Execution.user_id == user_id,
                Execution.account_fingerprint == self.cipher.fingerprint(account_number),
                Execution.instrument == instrument,
            )
            .order_by(Execution.timestamp.asc(), Execution.source_order_id.asc(), Execution.id.asc())
        ).scalars().all()
        return [self._to_fill(r) for r in rows]

    def load_all(self, user_id: str) -> List[NormalizedFill]:
        rows = self.session.execute(
            select(Execution)
            .where(Execution.user_id == user_id)
            .order_by(Execution.timestamp.asc(), Execution.source_order_id.asc(), Execution.id.asc())
        ).scalars().all()
        return [self._to_fill(r) for r in rows]

    def delete_account(self, user_id: str, account_number: str) -> int:
        result = self.session.execute(
            delete(Execution).where(
                Execution.user_id == user_id,
                Execution.account_fingerprint == self.cipher.fingerprint(account_number),
            )
        )
        return result.rowcount or 0

    def _to_fill(self, row: Execution) -> NormalizedFill:
        return NormalizedFill(
            account_number=self.cipher.decrypt(row.account_number),
            instrument_raw_symbol=row.instrument_raw_symbol,
            side=FillSide(row.side),
            signed_quantity=Decimal(row.signed_quantity),
            price=Decimal(row.price),
            timestamp=as_utc(row.timestamp),
            commission=Decimal(row.commission or 0),
            source_order_id=row.source_order_id,
            source_system=SourceSystem(row.source_system),
        )


class TradeRepository:
    """Encrypted trade rows, upserted by deterministic id."""

    def __init__(self, session: Session, cipher: FieldCipher):
        self.session = session
        self.cipher = cipher

    def upsert_many(self, trades: Iterable[Trade]) -> UpsertResult:
        result = UpsertResult()
        for t in trades:
            if t.id is None:
                raise ValueError("trade has no id")

            row = self.session.get(TradeRow, t.id)
            if row is None:
                self.session.add(self._to_row(t))
                result.created += 1
                continue

            stored = self._to_trade(row)
            if identity_values(stored) != identity_values(t):
                err = IdentityCollisionError(
                    t.id,
                    existing=dict(zip(IDENTITY_FIELDS, identity_values(stored))),
                    incoming=dict(zip(IDENTITY_FIELDS, identity_values(t))),
                )
                # never overwrite a different trade; an operator has to look at it
                logger.error("trade id collision on %s; stored row left untouched", t.id)
                result.collisions.append(err)
                continue

            if (
                Decimal(row.pnl) == _q(t.pnl)
                and Decimal(row.commission) == _q(t.commission)
                and row.time_in_position == t.time_in_position_seconds
            ):
                result.unchanged += 1
                continue

            row.pnl = _q(t.pnl)
            row.commission = _q(t.commission)
            row.time_in_position = t.time_in_position_seconds
            result.updated += 1

        self.session.flush()
        return result

    def list_for_user(self, user_id: str, account_number: Optional[str] = None) -> List[Trade]:
        stmt = select(TradeRow).where(TradeRow.user_id == user_id)
        if account_number is not None:
            stmt = stmt.where(TradeRow.account_fingerprint == self.cipher.fingerprint(account_number))
        stmt = stmt.order_by(TradeRow.close_date.asc(), TradeRow.id.asc())
        return [self._to_trade(r) for r in self.session.execute(stmt).scalars().all()]

    def ids_for_account(self, user_id: str, account_number: str) -> List[str]:
        return list(
            self.session.execute(
                select(TradeRow.id).where(
                    TradeRow.user_id == user_id,
                    TradeRow.account_fingerprint == self.cipher.fingerprint(account_number),
                )
            ).scalars()
        )

    def stale_ids(self, user_id: str, account_number: str, close_ids: Iterable[str], keep_ids: Iterable[str]) -> List[str]:
        """Stored trades closed by these fills that a re-match no longer produces."""
        close_ids = list(close_ids)
        if not close_ids:
            return []
        keep = set(keep_ids)
        found = self.session.execute(
            select(TradeRow.id).where(
                TradeRow.user_id == user_id,
                TradeRow.account_fingerprint == self.cipher.fingerprint(account_number),
                TradeRow.close_id.in_(close_ids),
            )
        ).scalars()
        return [i for i in found if i not in keep]

    def delete_ids(self, ids: Iterable[str]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        result = self.session.execute(delete(TradeRow).where(TradeRow.id.in_(ids)))
        return result.rowcount or 0

    def delete_account(self, user_id: str, account_number: str) -> int:
        return self.delete_ids(self.ids_for_account(user_id, account_number))

    def _to_row(self, t: Trade) -> TradeRow:
        return TradeRow(
            id=t.id,
            user_id=t.user_id,
            account_number=self.cipher.encrypt(t.account_number),
            account_fingerprint=self.cipher.fingerprint(t.account_number),
            instrument=t.instrument,
            side=t.side.value,
            quantity=t.quantity,
            entry_price=self.cipher.encrypt(str(t.entry_price)),
            close_price=self.cipher.encrypt(str(t.close_price)),
            entry_date=t.entry_date,
            close_date=t.close_date,
            time_in_position=t.time_in_position_seconds,
            pnl=_q(t.pnl),
            commission=_q(t.commission),
            entry_id=t.entry_id,
            close_id=t.close_id,
        )

    def _to_trade(self, row: TradeRow) -> Trade:
        return Trade(
            id=row.id,
            user_id=row.user_id,
            account_number=self.cipher.decrypt(row.account_number),
            instrument=row.instrument,
            side=TradeSide(row.side),
            quantity=Decimal(row.quantity),
            entry_price=Decimal(self.cipher.decrypt(row.entry_price)),
            close_price=Decimal(self.cipher.decrypt(row.close_price)),
            entry_date=as_utc(row.entry_date),
            close_date=as_utc(row.close_date),
            time_in_position_seconds=row.time_in_position or 0,
            pnl=Decimal(row.pnl),
            commission=Decimal(row.commission),
            entry_id=row.entry_id,
            close_id=row.close_id,
        )


class SynchronizationStore:
    """SQLAlchemy-backed token store for the sync/token lifecycle manager."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def list_connected(self, service: Optional[str] = None) -> List[Synchronization]:
        with self.session_factory() as session:
            stmt = select(Synchronization).where(Synchronization.token.is_not(None))
            if service:
                stmt = stmt.where(Synchronization.service == service)
            rows = session.execute(stmt.order_by(Synchronization.id)).scalars().all()
            session.expunge_all()
            return list(rows)

    def get(self, synchronization_id) -> Optional[Synchronization]:
        with self.session_factory() as session:
            row = session.get(Synchronization, synchronization_id)
            if row is not None:
                session.expunge(row)
            return row

    def _update(self, synchronization_id, **values) -> None:
        with self.session_factory() as session:
            row = session.get(Synchronization, synchronization_id)
            if row is None:
                return
            for k, v in values.items():
                setattr(row, k, v)
            session.commit()

    def save_token(self, synchronization_id, token: str, expires_at: datetime) -> None:
        self._update(synchronization_id, token=token, token_expires_at=expires_at)

    def clear_token(self, synchronization_id) -> None:
        self._update(synchronization_id, token=None, token_expires_at=None)

    def mark_synced(self, synchronization_id, when: datetime) -> None:
        self._update(synchronization_id, last_synced_at=when)
