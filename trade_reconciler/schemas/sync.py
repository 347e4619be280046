from typing import Any, List, Optional

from pydantic import BaseModel, Field


class SyncOutcome(BaseModel):
    synchronization_id: Any
    account_id: Optional[str] = None
    renewed: bool = False
    synced: bool = False
    saved: int = 0
    error: Optional[str] = None
    failed_stage: Optional[str] = None  # renewal / sync


class SweepReport(BaseModel):
    processed: int = 0
    cleared_missing_expiry: int = 0
    renewed: int = 0
    renewal_failures: int = 0
    daily_syncs: int = 0
    sync_failures: int = 0
    outcomes: List[SyncOutcome] = Field(default_factory=list)
