from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


class ReconcilerError(Exception):
    """Base class for reconciliation failures."""


class NormalizationError(ReconcilerError):
    """A single raw broker record could not be turned into a fill.

    Record-level: the batch skips the record, logs it and carries on.
    """

    def __init__(self, raw_record_ref: Any, reason: str):
        super().__init__(f"record {raw_record_ref!r}: {reason}")
        self.raw_record_ref = raw_record_ref
        self.reason = reason

    def as_dict(self) -> dict:
        return {"record": self.raw_record_ref, "reason": self.reason}


class OrderNotFilled(NormalizationError):
    """Cancelled, rejected or zero-fill order. Dropped, not failed."""


@dataclass(frozen=True)
class MatchingInconsistency:
    """
    Audit record emitted by the matcher. Never raised: a close that exceeds
    the resting position is resolved by flipping.
    """

    account_number: str
    instrument: str
    fill_ref: str
    reason: str
    excess_quantity: Any = None


class IdentityCollisionError(ReconcilerError):
    """Two logically different trades hashed to the same id."""

    def __init__(self, trade_id: str, existing: Optional[dict] = None, incoming: Optional[dict] = None):
        super().__init__(f"trade id collision on {trade_id}")
        self.trade_id = trade_id
        self.existing = existing or {}
        self.incoming = incoming or {}


class EncryptionConfigError(ReconcilerError):
    """The field encryption key is missing or has the wrong length."""


class TokenRenewalFailure(ReconcilerError):
    """Renewing a broker token failed for one synchronization."""

    def __init__(self, synchronization_id: Any, reason: str):
        super().__init__(f"token renewal failed for {synchronization_id}: {reason}")
        self.synchronization_id = synchronization_id
        self.reason = reason
