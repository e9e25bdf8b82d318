"""
Chain Gateway — the narrow surface the kernel needs from a chain SDK.

The kernel consumes these operations and never reimplements them:
weight estimation, submission, inclusion tracking, read-model queries and
key-holding signers. InMemoryChainGateway stands in for a node in tests and
in the default API app, the way mock executors stand in for real tools.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable
from uuid import uuid4

from multisig_kernel.models.action import ApprovalProof, Command, PendingAction, SubmissionReceipt

logger = logging.getLogger(__name__)


class ChainError(Exception):
    """Raised by a gateway when the chain refuses or loses a batch."""
    pass


@runtime_checkable
class ChainGateway(Protocol):
    """Protocol for the chain-side collaborator. Pluggable backend."""

    def compute_batch_weight(self, commands: Sequence[Command]) -> int: ...

    def submit(self, action: PendingAction) -> SubmissionReceipt: ...

    def wait_for_inclusion(self, receipt: SubmissionReceipt, timeout: float) -> None: ...

    def query_entity(self, kind: str, entity_id: str) -> Optional[dict]: ...


@runtime_checkable
class Signer(Protocol):
    """Protocol for an external keyring. Keys are opaque to the kernel."""

    def sign(self, payload: bytes, key: Any) -> ApprovalProof: ...


class InMemoryChainGateway:
    """
    A single-process chain double.

    Weights are deterministic per batch, submitted actions are recorded as
    executed proposals, and failures can be injected for tests.
    """

    BASE_COMMAND_WEIGHT = 10_000

    def __init__(self, inclusion_delay_seconds: float = 0.0):
        self.inclusion_delay_seconds = inclusion_delay_seconds
        self.fail_next_submissions = 0
        self.never_include = False
        self._lock = threading.Lock()
        self._entities: Dict[str, Dict[str, dict]] = {}
        self._receipts: Dict[str, float] = {}
        self.submitted: List[PendingAction] = []

    def compute_batch_weight(self, commands: Sequence[Command]) -> int:
        weight = 0
        for command in commands:
            encoded = json.dumps(command.model_dump(mode="json"), sort_keys=True, default=str)
            weight += self.BASE_COMMAND_WEIGHT + len(encoded)
        return weight

    def submit(self, action: PendingAction) -> SubmissionReceipt:
        with self._lock:
            if self.fail_next_submissions > 0:
                self.fail_next_submissions -= 1
                raise ChainError(f"Node rejected batch for {action.id}")
            receipt = SubmissionReceipt(
                receipt_id=f"rcpt_{uuid4().hex[:12]}",
                action_id=action.id,
                submitted_at=datetime.utcnow(),
            )
            self.submitted.append(action)
            self._receipts[receipt.receipt_id] = time.monotonic() + self.inclusion_delay_seconds
            self.put_entity("proposal", action.id, {
                "id": action.id,
                "creator": action.creator,
                "status": "executed",
                "batch_weight": action.required_weight,
                "commands": [c.model_dump(mode="json") for c in action.proposed_commands],
                "receipt_id": receipt.receipt_id,
            })
        logger.info(f"Submitted {action.id} as {receipt.receipt_id}")
        return receipt

    def wait_for_inclusion(self, receipt: SubmissionReceipt, timeout: float) -> None:
        with self._lock:
            included_at = self._receipts.get(receipt.receipt_id)
        if included_at is None:
            raise ChainError(f"Unknown receipt {receipt.receipt_id}")
        if self.never_include:
            time.sleep(timeout)
            raise TimeoutError(f"{receipt.receipt_id} not included within {timeout}s")
        remaining = included_at - time.monotonic()
        if remaining > timeout:
            time.sleep(timeout)
            raise TimeoutError(f"{receipt.receipt_id} not included within {timeout}s")
        if remaining > 0:
            time.sleep(remaining)

    def query_entity(self, kind: str, entity_id: str) -> Optional[dict]:
        return self._entities.get(kind, {}).get(entity_id)

    def put_entity(self, kind: str, entity_id: str, record: dict) -> None:
        """Seed or overwrite a read-model record."""
        self._entities.setdefault(kind, {})[entity_id] = record

    @property
    def submission_count(self) -> int:
        return len(self.submitted)
