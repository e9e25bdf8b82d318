"""Multisig kernel data models."""

from multisig_kernel.models.action import (
    ApprovalProof,
    ApprovalRecord,
    Command,
    Decision,
    Discharge,
    PendingAction,
    SubmissionReceipt,
)
from multisig_kernel.models.config import CoordinatorConfig
from multisig_kernel.models.ledger import LedgerEntry, LedgerEvent
from multisig_kernel.models.principal import AuthorityEntry, Principal, PrincipalKind
from multisig_kernel.models.session import SessionState

__all__ = [
    "ApprovalProof",
    "ApprovalRecord",
    "AuthorityEntry",
    "Command",
    "CoordinatorConfig",
    "Decision",
    "Discharge",
    "LedgerEntry",
    "LedgerEvent",
    "PendingAction",
    "Principal",
    "PrincipalKind",
    "SessionState",
    "SubmissionReceipt",
]
