"""Ledger Entry — one lifecycle event in the decision ledger."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class LedgerEvent(str, Enum):
    CREATED = "created"
    APPROVED = "approved"
    DECLINED = "declined"
    RESOLVED = "resolved"
    EXPIRED = "expired"
    SUBMITTED = "submitted"
    SUBMISSION_FAILED = "submission_failed"


class LedgerEntry(BaseModel):
    """
    Append-only record of something that happened to a pending action.
    Chained to its predecessor by signature.
    """

    id: str
    action_id: str
    event: LedgerEvent
    principal: Optional[str] = None
    detail: dict = {}
    recorded_at: datetime

    # INTEGRITY
    signature: str = ""
    prior_entry_hash: Optional[str] = None
