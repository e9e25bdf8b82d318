"""Pending Action — a proposed batch of commands awaiting multi-party approval."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Command(BaseModel):
    """An opaque chain command. Only its authority matters to the kernel."""

    name: str                               # e.g., "create_project", "transfer_asset"
    params: dict = {}
    authority: Optional[str] = None         # Principal the command acts on behalf of


class PendingAction(BaseModel):
    """A proposed batch plus everything an approval is bound to."""

    id: str
    creator: str
    required_weight: int = Field(ge=0)      # Batch weight from the chain
    expiration_time: datetime
    proposed_commands: List[Command]
    required_approvers: List[str]           # Ordered, distinct
    created_at: datetime
    snapshot_version: int = 0


class Decision(str, Enum):
    APPROVE = "approve"
    DECLINE = "decline"


class ApprovalProof(BaseModel):
    """A signature over an approval payload, produced by one individual key."""

    signer: str                             # Individual whose key signed
    signature: str                          # Hex DER signature


class Discharge(BaseModel):
    """One authority level discharged by a proof."""

    principal: str
    proof: ApprovalProof


class ApprovalRecord(BaseModel):
    """Append-only entry in a session's history."""

    action_id: str
    principal: str
    signer: str
    decision: Decision = Decision.APPROVE
    recorded_at: datetime


class SubmissionReceipt(BaseModel):
    """What the chain hands back for a submitted batch."""

    receipt_id: str
    action_id: str
    submitted_at: datetime
