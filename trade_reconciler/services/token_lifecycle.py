# trade_reconciler/services/token_lifecycle.py

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, List, Optional, Protocol

from trade_reconciler.exceptions import TokenRenewalFailure
from trade_reconciler.schemas.sync import SweepReport, SyncOutcome
from trade_reconciler.services.import_pipeline import ImportPipeline
from trade_reconciler.utils.parsing import as_utc

logger = logging.getLogger(__name__)

RENEWAL_WINDOW = timedelta(minutes=15)
DAILY_SYNC_WINDOW_MINUTES = 15


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    expires_at: datetime


class BrokerClient(Protocol):
    async def renew_token(self, synchronization) -> TokenGrant:
        ...

    async def fetch_executions(self, synchronization, token: str) -> List[dict]:
        ...


class TokenStore(Protocol):
    def list_connected(self, service: Optional[str] = None) -> list:
        ...

    def get(self, synchronization_id):
        ...

    def save_token(self, synchronization_id, token: str, expires_at: datetime) -> None:
        ...

    def clear_token(self, synchronization_id) -> None:
        ...

    def mark_synced(self, synchronization_id, when: datetime) -> None:
        ...


# (synchronization, access token) -> number of fills saved
SyncRunner = Callable[[Any, str], Awaitable[int]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def needs_renewal(expires_at: Optional[datetime], now: Optional[datetime] = None, window: timedelta = RENEWAL_WINDOW) -> bool:
    """True once the token is inside the renewal window (or already expired)."""
    if expires_at is None:
        return True
    now = as_utc(now) if now is not None else _utcnow()
    return as_utc(expires_at) - now < window


def should_perform_daily_sync(
    daily_sync_time: Optional[datetime],
    now: Optional[datetime] = None,
    window_minutes: int = DAILY_SYNC_WINDOW_MINUTES,
) -> bool:
    """
    Only the UTC time of day of ``daily_sync_time`` matters. Within
    ``window_minutes`` either side counts, across midnight too.
    """
    if daily_sync_time is None:
        return False
    sync_at = as_utc(daily_sync_time)
    now = as_utc(now) if now is not None else _utcnow()

    diff = abs((now.hour * 60 + now.minute) - (sync_at.hour * 60 + sync_at.minute))
    return diff <= window_minutes or diff >= 24 * 60 - window_minutes


class TokenLifecycleManager:
    """
    Keeps broker tokens alive and runs the scheduled daily syncs.

    A failure on one synchronization clears that token and is reported;
    it never stops the rest of the sweep. Store calls block on the database,
    so they run in worker threads.
    """

    def __init__(
        self,
        store: TokenStore,
        broker: BrokerClient,
        sync_runner: Optional[SyncRunner] = None,
        renewal_window: timedelta = RENEWAL_WINDOW,
        timeout: float = 30.0,
        service: Optional[str] = None,
    ):
        self.store = store
        self.broker = broker
        self.sync_runner = sync_runner
        self.renewal_window = renewal_window
        self.timeout = timeout
        self.service = service

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = as_utc(now) if now is not None else _utcnow()
        connected = await asyncio.to_thread(self.store.list_connected, self.service)
        report = SweepReport(processed=len(connected))

        # a token without an expiry can't be scheduled for renewal
        missing = [s for s in connected if s.token_expires_at is None]
        for s in missing:
            await asyncio.to_thread(self.store.clear_token, s.id)
        if missing:
            logger.warning("clearing %d tokens missing token_expires_at", len(missing))
        report.cleared_missing_expiry = len(missing)

        valid = [s for s in connected if s.token_expires_at is not None]
        results = await asyncio.gather(*(self._process(s, now) for s in valid), return_exceptions=True)

        for s, result in zip(valid, results):
            if isinstance(result, BaseException):
                # _process handles its own failures; this is a bug, not a broker error
                logger.error("sweep task for synchronization %s crashed: %r", s.id, result)
                result = SyncOutcome(synchronization_id=s.id, account_id=s.account_id, error=repr(result))
            report.outcomes.append(result)
            if result.renewed:
                report.renewed += 1
            if result.synced:
                report.daily_syncs += 1
            if result.failed_stage == "sync":
                report.sync_failures += 1
            elif result.error is not None:
                report.renewal_failures += 1

        logger.info(
            "token sweep: %d processed, %d renewed, %d renewal failures, %d daily syncs",
            report.processed,
            report.renewed,
            report.renewal_failures,
            report.daily_syncs,
        )
        return report

    async def sync_now(self, synchronization_id) -> SyncOutcome:
        """On-demand sync, outside the daily schedule."""
        s = await asyncio.to_thread(self.store.get, synchronization_id)
        if s is None or s.token is None:
            return SyncOutcome(synchronization_id=synchronization_id, error="not connected")

        outcome = SyncOutcome(synchronization_id=s.id, account_id=s.account_id)
        await self._run_sync(s, s.token, outcome, _utcnow())
        return outcome

    async def _process(self, s, now: datetime) -> SyncOutcome:
        outcome = SyncOutcome(synchronization_id=s.id, account_id=s.account_id)
        token = s.token

        if needs_renewal(s.token_expires_at, now, self.renewal_window):
            try:
                grant = await self._renew(s)
            except TokenRenewalFailure as exc:
                logger.error("%s; token cleared", exc)
                await asyncio.to_thread(self.store.clear_token, s.id)
                outcome.error = exc.reason
                outcome.failed_stage = "renewal"
                return outcome

            await asyncio.to_thread(self.store.save_token, s.id, grant.access_token, grant.expires_at)
            token = grant.access_token
            outcome.renewed = True
            logger.info("renewed token for account %s", s.account_id)

        if should_perform_daily_sync(s.daily_sync_time, now):
            await self._run_sync(s, token, outcome, now)

        return outcome

    async def _renew(self, s) -> TokenGrant:
        try:
            grant = await asyncio.wait_for(self.broker.renew_token(s), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise TokenRenewalFailure(s.id, f"timed out after {self.timeout}s") from exc
        except TokenRenewalFailure:
            raise
        except Exception as exc:
            raise TokenRenewalFailure(s.id, str(exc) or exc.__class__.__name__) from exc

        if grant is None or not grant.access_token:
            raise TokenRenewalFailure(s.id, "broker returned no token")
        return grant

    async def _run_sync(self, s, token: str, outcome: SyncOutcome, now: datetime) -> None:
        if self.sync_runner is None:
            return
        try:
            saved = await asyncio.wait_for(self.sync_runner(s, token), timeout=self.timeout)
        except Exception as exc:
            logger.error("daily sync failed for account %s: %s", s.account_id, exc)
            outcome.error = f"sync failed: {exc}"
            outcome.failed_stage = "sync"
            return

        await asyncio.to_thread(self.store.mark_synced, s.id, now)
        outcome.synced = True
        outcome.saved = saved or 0
        logger.info("synced %d fills for account %s", outcome.saved, s.account_id)


def pipeline_sync_runner(broker: BrokerClient, session_factory, cipher) -> SyncRunner:
    """Daily sync that feeds broker fills through the regular import pipeline."""
    def _import(s, records):
        with session_factory() as session:
            report = ImportPipeline(session, cipher).run(records, s.service, s.user_id, default_account=s.account_id)
            return report.executions_inserted

    async def run(s, token: str) -> int:
        records = await broker.fetch_executions(s, token)
        return await asyncio.to_thread(_import, s, records)

    return run
