import asyncio
import threading
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from trade_reconciler.models.synchronization import Synchronization
from trade_reconciler.services.repositories import SynchronizationStore
from trade_reconciler.services.token_lifecycle import (
    TokenGrant,
    TokenLifecycleManager,
    needs_renewal,
    should_perform_daily_sync,
)

NOW = datetime(2024, 12, 2, 14, 30, tzinfo=timezone.utc)


class FakeStore:
    def __init__(self, rows):
        self.rows = {r.id: r for r in rows}
        self.cleared = []
        self.saved = {}
        self.synced = []
        self.threads = set()

    def _seen(self):
        self.threads.add(threading.get_ident())

    def list_connected(self, service=None):
        self._seen()
        return [r for r in self.rows.values() if r.token is not None]

    def get(self, synchronization_id):
        self._seen()
        return self.rows.get(synchronization_id)

    def save_token(self, synchronization_id, token, expires_at):
        self._seen()
        self.saved[synchronization_id] = (token, expires_at)

    def clear_token(self, synchronization_id):
        self._seen()
        self.cleared.append(synchronization_id)

    def mark_synced(self, synchronization_id, when):
        self._seen()
        self.synced.append(synchronization_id)


class FakeBroker:
    """behaviour per account_id: ok / fail / slow / empty"""

    def __init__(self, behaviour):
        self.behaviour = behaviour
        self.calls = []

    async def renew_token(self, synchronization):
        self.calls.append(synchronization.id)
        mode = self.behaviour.get(synchronization.account_id, "ok")
        if mode == "fail":
            raise RuntimeError("401 invalid token")
        if mode == "slow":
            await asyncio.sleep(1)
        if mode == "empty":
            return TokenGrant(access_token="", expires_at=NOW)
        return TokenGrant(access_token=f"new-{synchronization.id}", expires_at=NOW + timedelta(minutes=90))

    async def fetch_executions(self, synchronization, token):
        return []


def _sync(id, account_id, expires_in=None, token="tok", daily_sync_time=None):
    return SimpleNamespace(
        id=id,
        user_id="user-1",
        service="tradovate",
        account_id=account_id,
        token=token,
        token_expires_at=None if expires_in is None else NOW + expires_in,
        daily_sync_time=daily_sync_time,
    )


def test_needs_renewal():
    assert needs_renewal(NOW + timedelta(minutes=10), NOW)
    assert needs_renewal(NOW - timedelta(minutes=1), NOW)
    assert not needs_renewal(NOW + timedelta(minutes=15), NOW)
    assert not needs_renewal(NOW + timedelta(hours=1), NOW)
    assert needs_renewal(None, NOW)


@pytest.mark.parametrize(
    "sync_at,now,expected",
    [
        (datetime(2024, 1, 1, 14, 20, tzinfo=timezone.utc), NOW, True),
        (datetime(2024, 1, 1, 14, 45, tzinfo=timezone.utc), NOW, True),
        (datetime(2024, 1, 1, 14, 46, tzinfo=timezone.utc), NOW, False),
        (datetime(2024, 1, 1, 23, 55, tzinfo=timezone.utc), datetime(2024, 12, 2, 0, 5, tzinfo=timezone.utc), True),
        (None, NOW, False),
    ],
)
def test_should_perform_daily_sync(sync_at, now, expected):
    assert should_perform_daily_sync(sync_at, now) is expected


@pytest.mark.asyncio
async def test_sweep_isolates_failures():
    store = FakeStore(
        [
            _sync(1, "missing-expiry"),
            _sync(2, "ok", expires_in=timedelta(minutes=5)),
            _sync(3, "fail", expires_in=timedelta(minutes=5)),
            _sync(4, "far", expires_in=timedelta(hours=2)),
            _sync(5, "slow", expires_in=timedelta(minutes=1)),
            _sync(6, "empty", expires_in=timedelta(minutes=1)),
            _sync(7, "disconnected", token=None, expires_in=timedelta(minutes=1)),
        ]
    )
    broker = FakeBroker({"fail": "fail", "slow": "slow", "empty": "empty"})
    manager = TokenLifecycleManager(store, broker, timeout=0.05)

    report = await manager.sweep(now=NOW)

    assert report.processed == 6
    assert report.cleared_missing_expiry == 1
    assert report.renewed == 1
    assert report.renewal_failures == 3
    assert sorted(store.cleared) == [1, 3, 5, 6]
    assert list(store.saved) == [2]
    assert store.saved[2][0] == "new-2"
    # far-from-expiry token is left alone
    assert 4 not in broker.calls

    by_id = {o.synchronization_id: o for o in report.outcomes}
    assert by_id[5].error.startswith("timed out")
    assert by_id[3].failed_stage == "renewal"


@pytest.mark.asyncio
async def test_daily_sync_runs_with_fresh_token():
    store = FakeStore(
        [
            _sync(1, "due", expires_in=timedelta(minutes=5), daily_sync_time=datetime(2024, 1, 1, 14, 35, tzinfo=timezone.utc)),
            _sync(2, "not-due", expires_in=timedelta(hours=2), daily_sync_time=datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)),
        ]
    )
    seen = []

    async def runner(synchronization, token):
        seen.append((synchronization.id, token))
        return 3

    manager = TokenLifecycleManager(store, FakeBroker({}), sync_runner=runner)
    report = await manager.sweep(now=NOW)

    assert seen == [(1, "new-1")]
    assert report.daily_syncs == 1
    assert store.synced == [1]
    assert report.outcomes[0].saved == 3


@pytest.mark.asyncio
async def test_sync_failure_keeps_token():
    store = FakeStore(
        [_sync(1, "due", expires_in=timedelta(hours=2), daily_sync_time=NOW)]
    )

    async def runner(synchronization, token):
        raise RuntimeError("broker down")

    manager = TokenLifecycleManager(store, FakeBroker({}), sync_runner=runner)
    report = await manager.sweep(now=NOW)

    assert report.sync_failures == 1
    assert report.renewal_failures == 0
    assert store.cleared == []
    assert store.synced == []


@pytest.mark.asyncio
async def test_store_calls_stay_off_the_event_loop():
    store = FakeStore(
        [
            _sync(1, "missing-expiry"),
            _sync(2, "ok", expires_in=timedelta(minutes=5), daily_sync_time=NOW),
            _sync(3, "fail", expires_in=timedelta(minutes=5)),
        ]
    )

    async def runner(synchronization, token):
        return 1

    manager = TokenLifecycleManager(store, FakeBroker({"fail": "fail"}), sync_runner=runner)
    await manager.sweep(now=NOW)
    await manager.sync_now(2)

    # list, clear (x2), save, mark synced (x2), get all happened
    assert store.cleared and store.saved and store.synced
    assert threading.get_ident() not in store.threads


@pytest.mark.asyncio
async def test_sync_now():
    store = FakeStore([_sync(1, "a", expires_in=timedelta(hours=2)), _sync(2, "b", token=None)])

    async def runner(synchronization, token):
        return 7

    manager = TokenLifecycleManager(store, FakeBroker({}), sync_runner=runner)

    outcome = await manager.sync_now(1)
    assert outcome.synced is True
    assert outcome.saved == 7

    missing = await manager.sync_now(2)
    assert missing.error == "not connected"


def test_synchronization_store(session_factory):
    with session_factory() as s:
        s.add_all(
            [
                Synchronization(user_id="u1", service="tradovate", account_id="A1", token="t1", token_expires_at=NOW),
                Synchronization(user_id="u1", service="tradovate", account_id="A2", token=None),
                Synchronization(user_id="u2", service="rithmic", account_id="R1", token="t3", token_expires_at=NOW),
            ]
        )
        s.commit()

    store = SynchronizationStore(session_factory)
    connected = store.list_connected()
    assert [c.account_id for c in connected] == ["A1", "R1"]
    assert [c.account_id for c in store.list_connected("tradovate")] == ["A1"]

    a1 = connected[0]
    store.save_token(a1.id, "t1-renewed", NOW + timedelta(hours=1))
    assert store.get(a1.id).token == "t1-renewed"

    store.mark_synced(a1.id, NOW)
    assert store.get(a1.id).last_synced_at is not None

    store.clear_token(a1.id)
    cleared = store.get(a1.id)
    assert cleared.token is None
    assert cleared.token_expires_at is None
    assert [c.account_id for c in store.list_connected()] == ["R1"]
