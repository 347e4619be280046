from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, status

from trade_reconciler.api.deps import require_cron_secret
from trade_reconciler.schemas.sync import SweepReport, SyncOutcome
from trade_reconciler.services.repositories import SynchronizationStore
from trade_reconciler.services.token_lifecycle import TokenLifecycleManager, pipeline_sync_runner

router = APIRouter(prefix="/api/sync", tags=["sync"], dependencies=[Depends(require_cron_secret)])


def get_manager(request: Request) -> TokenLifecycleManager:
    state = request.app.state
    broker = getattr(state, "broker_client", None)
    if broker is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No broker client configured")

    return TokenLifecycleManager(
        store=SynchronizationStore(state.session_factory),
        broker=broker,
        sync_runner=pipeline_sync_runner(broker, state.session_factory, state.cipher),
        renewal_window=timedelta(minutes=state.settings.token_renewal_window_minutes),
        timeout=state.settings.broker_timeout_seconds,
    )


@router.post("/sweep", response_model=SweepReport)
async def sweep(manager: TokenLifecycleManager = Depends(get_manager)):
    """Scheduled job: renew expiring tokens and run due daily syncs."""
    return await manager.sweep()


@router.post("/{synchronization_id}", response_model=SyncOutcome)
async def sync_now(synchronization_id: int, manager: TokenLifecycleManager = Depends(get_manager)):
    return await manager.sync_now(synchronization_id)
