# trade_reconciler/services/import_pipeline.py

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from sqlalchemy.orm import Session

from trade_reconciler.schemas.imports import ImportReport, RecordError
from trade_reconciler.services.encryption import FieldCipher
from trade_reconciler.services.fifo_matcher import group_fills, match_group
from trade_reconciler.services.normalizer import normalize_batch
from trade_reconciler.services.repositories import ExecutionRepository, TradeRepository
from trade_reconciler.services.tick_reference import TickReference, load_tick_reference
from trade_reconciler.services.trade_identity import assign_trade_ids, dedupe_trades
from trade_reconciler.services.types import NormalizedFill, SourceSystem

logger = logging.getLogger(__name__)


# -------------------------------------------------
# Per-account write serialization
# -------------------------------------------------
_account_locks: Dict[Tuple[str, str], threading.Lock] = {}
_registry_lock = threading.Lock()


def account_lock(user_id: str, account_key: str) -> threading.Lock:
    """One lock per (user, account). Different accounts never wait on each other."""
    with _registry_lock:
        lock = _account_locks.get((user_id, account_key))
        if lock is None:
            lock = threading.Lock()
            _account_locks[(user_id, account_key)] = lock
        return lock


# -------------------------------------------------
# Report helpers
# -------------------------------------------------
_COUNT_FIELDS = (
    "executions_inserted",
    "executions_existing",
    "trades_created",
    "trades_updated",
    "trades_unchanged",
    "trades_removed",
    "collisions",
    "inconsistencies",
    "open_positions",
)


def _merge_counts(report: ImportReport, part: ImportReport) -> None:
    # only committed accounts are added to the batch report
    for name in _COUNT_FIELDS:
        setattr(report, name, getattr(report, name) + getattr(part, name))
    report.collision_ids.extend(part.collision_ids)


def _record_account_failure(report: ImportReport, account_number: str, fill_count: int, exc: Exception) -> None:
    report.failed_accounts += 1
    report.errors.append(
        RecordError(
            record={"account_number": account_number, "fills": fill_count},
            reason=f"account rolled back: {exc.__class__.__name__}: {exc}",
        )
    )


class ImportPipeline:
    """
    normalize -> persist fills -> re-match touched groups -> ids -> upsert.

    Matching always runs over the full stored history of a group, so
    overlapping or re-sent broker exports reproduce the same trades and
    the same ids.
    """

    def __init__(self, session: Session, cipher: FieldCipher, tick_reference: Optional[TickReference] = None):
        self.session = session
        self.cipher = cipher
        self.executions = ExecutionRepository(session, cipher)
        self.trades = TradeRepository(session, cipher)
        self._tick_reference = tick_reference

    @property
    def tick_reference(self) -> TickReference:
        if self._tick_reference is None:
            self._tick_reference = load_tick_reference(self.session)
        return self._tick_reference

    def run(
        self,
        records: Iterable[Any],
        source_system: SourceSystem | str,
        user_id: str,
        column_mapping: Optional[Mapping[str, str]] = None,
        default_account: Optional[str] = None,
    ) -> ImportReport:
        source = SourceSystem(source_system)

        # 1. normalize; bad records are reported, never fatal
        normalized = normalize_batch(
            records,
            source,
            column_mapping=column_mapping,
            default_account=default_account,
        )
        report = ImportReport(
            source_system=source.value,
            received=normalized.received,
            normalized=len(normalized.fills),
            failed=len(normalized.errors),
            errors=[RecordError(**e.as_dict()) for e in normalized.errors],
        )
        report.skipped = report.received - report.normalized - report.failed

        by_account: Dict[str, List[NormalizedFill]] = defaultdict(list)
        for f in normalized.fills:
            by_account[f.account_number].append(f)

        # 2. one account at a time, under that account's lock;
        #    a failing account is rolled back and reported, the rest still import
        for account_number in sorted(by_account):
            fills = by_account[account_number]
            instruments = sorted({f.base_symbol for f in fills})
            part = ImportReport(source_system=source.value)

            with account_lock(user_id, self.cipher.fingerprint(account_number)):
                try:
                    inserted, existing = self.executions.save_fills(user_id, fills)
                    part.executions_inserted = inserted
                    part.executions_existing = existing

                    for instrument in instruments:
                        history = self.executions.load_group(user_id, account_number, instrument)
                        self._reconcile_group(user_id, account_number, history, part)

                    self.session.commit()
                except Exception as exc:
                    self.session.rollback()
                    logger.exception("import of %d %s fills failed for one account; rolled back", len(fills), source.value)
                    _record_account_failure(report, account_number, len(fills), exc)
                    continue

            _merge_counts(report, part)

        logger.info(
            "import %s for user %s: %d received, %d normalized, %d skipped, %d failed, "
            "%d trades created, %d updated, %d collisions, %d accounts failed",
            source.value,
            user_id,
            report.received,
            report.normalized,
            report.skipped,
            report.failed,
            report.trades_created,
            report.trades_updated,
            report.collisions,
            report.failed_accounts,
        )
        return report

    def rebuild(self, user_id: str) -> ImportReport:
        """Re-match every stored (account, instrument) group of a user."""
        report = ImportReport(source_system="rebuild")
        groups = group_fills(self.executions.load_all(user_id))

        accounts: Dict[str, List[List[NormalizedFill]]] = defaultdict(list)
        for (account_number, _), history in groups.items():
            accounts[account_number].append(history)

        for account_number in sorted(accounts):
            part = ImportReport(source_system="rebuild")
            with account_lock(user_id, self.cipher.fingerprint(account_number)):
                try:
                    for history in accounts[account_number]:
                        self._reconcile_group(user_id, account_number, history, part)
                    self.session.commit()
                except Exception as exc:
                    self.session.rollback()
                    logger.exception("rebuild failed for one account of user %s; rolled back", user_id)
                    _record_account_failure(report, account_number, sum(len(h) for h in accounts[account_number]), exc)
                    continue

            _merge_counts(report, part)

        logger.info(
            "rebuild for user %s: %d groups, %d trades created, %d updated, %d removed",
            user_id,
            len(groups),
            report.trades_created,
            report.trades_updated,
            report.trades_removed,
        )
        return report

    def _reconcile_group(
        self,
        user_id: str,
        account_number: str,
        history: List[NormalizedFill],
        report: ImportReport,
    ) -> None:
        result = match_group(history, self.tick_reference)
        trades = assign_trade_ids(result.trades, user_id)
        unique, collisions = dedupe_trades(trades)

        upsert = self.trades.upsert_many(unique)
        collisions.extend(upsert.collisions)

        # trades an earlier, now superseded, match produced for this group
        keep: Set[str] = {t.id for t in trades}
        stale = self.trades.stale_ids(user_id, account_number, [f.source_order_id for f in history], keep)
        if stale:
            report.trades_removed += self.trades.delete_ids(stale)

        report.trades_created += upsert.created
        report.trades_updated += upsert.updated
        report.trades_unchanged += upsert.unchanged
        report.collisions += len(collisions)
        report.collision_ids.extend(c.trade_id for c in collisions)
        report.inconsistencies += len(result.inconsistencies)
        report.open_positions += len(result.unmatched_lots)
