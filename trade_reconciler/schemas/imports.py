from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ImportRequest(BaseModel):
    """
    Body of POST /api/imports/{source_system}.

    records: raw broker payloads in the broker's own shape (dicts, or
    positional rows for the Phoenix table)
    column_mapping: canonical field -> CSV header, required for "csv"
    """

    user_id: str = Field(..., min_length=1)
    records: List[Any]
    column_mapping: Optional[Dict[str, str]] = None
    default_account: Optional[str] = None


class RecordError(BaseModel):
    record: Any = None
    reason: str


class ImportReport(BaseModel):
    source_system: str
    received: int = 0
    normalized: int = 0
    skipped: int = 0
    failed: int = 0

    executions_inserted: int = 0
    executions_existing: int = 0

    trades_created: int = 0
    trades_updated: int = 0
    trades_unchanged: int = 0
    trades_removed: int = 0
    collisions: int = 0
    inconsistencies: int = 0
    open_positions: int = 0
    # accounts whose writes were rolled back; details are in errors
    failed_accounts: int = 0

    errors: List[RecordError] = Field(default_factory=list)
    collision_ids: List[str] = Field(default_factory=list)
