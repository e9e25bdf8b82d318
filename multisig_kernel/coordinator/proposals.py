"""
Proposal Coordinator — the public entry point of the kernel.

Ties the AuthorityRegistry and ApprovalSessions to the submission workflow:
  create_proposal → approve* | decline → (RESOLVED → submit) | EXPIRED | DECLINED

Behavioral Contract:
- All approve/decline calls for one action go through that action's lock
- The decision to submit is taken under the lock, by flipping a one-shot
  submitted flag; the chain call itself happens after the lock is released
- A resolved action is submitted exactly once
- Gateway failures are surfaced with the action id and operation; never retried
- Different actions share no mutable state and can be driven in parallel
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Union
from uuid import uuid4

from multisig_kernel.authority.graph import AuthorityRegistry
from multisig_kernel.crypto.proofs import ProofVerifier, approval_payload
from multisig_kernel.errors import (
    GatewayError,
    InclusionTimeout,
    SessionError,
    SessionNotOpen,
    SubmissionError,
    UnknownAction,
)
from multisig_kernel.gateway.chain import ChainGateway, Signer
from multisig_kernel.ledger.store import DecisionLedger
from multisig_kernel.models.action import (
    ApprovalProof,
    Command,
    Discharge,
    PendingAction,
    SubmissionReceipt,
)
from multisig_kernel.models.config import CoordinatorConfig
from multisig_kernel.models.ledger import LedgerEvent
from multisig_kernel.models.session import SessionState
from multisig_kernel.session.approval import ApprovalSession

logger = logging.getLogger(__name__)


class _ActionSlot:
    """Everything the coordinator owns for one pending action."""

    def __init__(self, session: ApprovalSession):
        self.session = session
        self.lock = threading.Lock()
        self.submitted = False
        self.expiry_recorded = False
        self.receipt: Optional[SubmissionReceipt] = None
        self.submission_error: Optional[str] = None


def _required_approvers(creator: str, commands: Sequence[Command]) -> List[str]:
    """Distinct command authorities in batch order, or the creator alone."""
    required: List[str] = []
    for command in commands:
        if command.authority and command.authority not in required:
            required.append(command.authority)
    return required or [creator]


def _naive_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Sessions compare against naive UTC; aware timestamps are converted."""
    if moment is not None and moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


class ProposalCoordinator:
    """
    Creates proposals, routes approvals to their sessions and submits
    resolved batches through the ChainGateway.
    """

    def __init__(
        self,
        registry: AuthorityRegistry,
        gateway: ChainGateway,
        signer: Optional[Signer] = None,
        verifier: Optional[ProofVerifier] = None,
        ledger: Optional[DecisionLedger] = None,
        config: Optional[CoordinatorConfig] = None,
    ):
        self.registry = registry
        self.gateway = gateway
        self.signer = signer
        self.verifier = verifier or ProofVerifier()
        self.config = config or CoordinatorConfig()
        self.ledger = ledger or DecisionLedger(self.config.ledger_path)

        self._lock = threading.Lock()
        self._slots: Dict[str, _ActionSlot] = {}

    # === CREATION ===

    def create_proposal(
        self,
        creator: str,
        commands: Sequence[Command],
        expiration_time: Optional[datetime] = None,
        key: Any = None,
        on_behalf_of: Optional[Sequence[str]] = None,
        action_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PendingAction:
        """
        Propose a batch of commands.

        When a key is given, the creator's own approval chain (on_behalf_of,
        innermost first, defaulting to the creator alone) is signed and
        recorded in the same step that creates the action.
        """
        now = _naive_utc(now) or datetime.utcnow()
        if expiration_time is None:
            expiration_time = now + timedelta(seconds=self.config.default_ttl_seconds)
        expiration_time = _naive_utc(expiration_time)
        if expiration_time <= now:
            raise ValueError("Expiration time must be in the future")
        if not commands:
            raise ValueError("A proposal needs at least one command")

        graph = self.registry.snapshot()
        graph.principal(creator)
        required = _required_approvers(creator, commands)
        for principal_id in required:
            graph.principal(principal_id)

        action_id = action_id or f"prop_{uuid4().hex[:12]}"
        with self._lock:
            if action_id in self._slots:
                raise ValueError(f"Action {action_id} already exists")

        try:
            weight = self.gateway.compute_batch_weight(list(commands))
        except Exception as exc:
            logger.error(f"Weight estimation failed for {action_id}: {exc}")
            raise GatewayError(action_id, "compute_batch_weight", str(exc)) from exc

        action = PendingAction(
            id=action_id,
            creator=creator,
            required_weight=weight,
            expiration_time=expiration_time,
            proposed_commands=list(commands),
            required_approvers=required,
            created_at=now,
            snapshot_version=graph.version,
        )
        session = ApprovalSession(action, graph, self.verifier)
        slot = _ActionSlot(session)

        discharges: List[Discharge] = []
        if key is not None:
            if self.signer is None:
                raise ValueError("Self-approval on create needs a signer")
            for principal_id in (on_behalf_of or [creator]):
                payload = approval_payload(action.id, weight, principal_id)
                discharges.append(Discharge(
                    principal=principal_id, proof=self.signer.sign(payload, key)
                ))
            session.record_discharges(discharges, now=now)

        # Held until the creation entries are in the ledger
        with slot.lock:
            with self._lock:
                if action_id in self._slots:
                    raise ValueError(f"Action {action_id} already exists")
                self._slots[action_id] = slot
            should_submit = self._claim_submission(slot)

            logger.info(
                f"Created {action_id} by {creator}: {len(commands)} command(s), "
                f"weight {weight}, approvers {required}"
            )
            self.ledger.append(action_id, LedgerEvent.CREATED, creator, {
                "required_weight": weight,
                "required_approvers": required,
                "expiration_time": expiration_time.isoformat(),
                "snapshot_version": graph.version,
            }, recorded_at=now)
            self._record_approvals(slot, discharges, now)

        if should_submit:
            self._submit(slot)
        return action

    # === DECISIONS ===

    def approve(
        self,
        action_id: str,
        discharges: Union[Discharge, Sequence[Discharge]],
        now: Optional[datetime] = None,
    ) -> SessionState:
        """
        Record one signature chain for an action.

        A list of discharges is recorded bottom-up in one atomic step.
        Submits the batch if this approval resolves the action.
        """
        if isinstance(discharges, Discharge):
            discharges = [discharges]
        now = _naive_utc(now) or datetime.utcnow()
        slot = self._slot(action_id)

        with slot.lock:
            try:
                state = slot.session.record_discharges(discharges, now=now)
            except SessionNotOpen:
                self._record_expiry(slot, now)
                raise
            should_submit = self._claim_submission(slot)
            self._record_approvals(slot, discharges, now)

        if should_submit:
            self._submit(slot)
        return state

    def decline(
        self,
        action_id: str,
        principal_id: str,
        proof: ApprovalProof,
        now: Optional[datetime] = None,
    ) -> SessionState:
        now = _naive_utc(now) or datetime.utcnow()
        slot = self._slot(action_id)
        with slot.lock:
            try:
                state = slot.session.decline(principal_id, proof, now=now)
            except SessionNotOpen:
                self._record_expiry(slot, now)
                raise
            self.ledger.append(
                action_id, LedgerEvent.DECLINED, principal_id,
                {"signer": proof.signer}, recorded_at=now,
            )
        return state

    # === SUBMISSION ===

    def _claim_submission(self, slot: _ActionSlot) -> bool:
        """Flip the one-shot submitted flag. Caller holds the slot's lock."""
        if slot.session.state == SessionState.RESOLVED and not slot.submitted:
            slot.submitted = True
            return True
        return False

    def _submit(self, slot: _ActionSlot) -> SubmissionReceipt:
        action = slot.session.action
        self.ledger.append(action.id, LedgerEvent.RESOLVED, detail={
            "approved": sorted(slot.session.approved),
        })
        try:
            receipt = self.gateway.submit(action)
        except Exception as exc:
            slot.submission_error = str(exc)
            logger.error(f"Submission of {action.id} failed: {exc}")
            self.ledger.append(
                action.id, LedgerEvent.SUBMISSION_FAILED, detail={"error": str(exc)}
            )
            raise SubmissionError(action.id, "submit", str(exc)) from exc

        slot.receipt = receipt
        self.ledger.append(
            action.id, LedgerEvent.SUBMITTED, detail={"receipt_id": receipt.receipt_id}
        )
        logger.info(f"Submitted {action.id} ({receipt.receipt_id})")

        if self.config.wait_for_inclusion:
            self._wait_for_inclusion(action.id, receipt)
        return receipt

    def _wait_for_inclusion(
        self, action_id: str, receipt: SubmissionReceipt, timeout: Optional[float] = None
    ) -> None:
        if timeout is None:
            timeout = self.config.inclusion_timeout_seconds
        try:
            self.gateway.wait_for_inclusion(receipt, timeout)
        except TimeoutError as exc:
            logger.error(f"{action_id} not included within {timeout}s")
            raise InclusionTimeout(action_id, "wait_for_inclusion", str(exc)) from exc
        except Exception as exc:
            logger.error(f"Waiting for {action_id} failed: {exc}")
            raise SubmissionError(action_id, "wait_for_inclusion", str(exc)) from exc

    def confirm(self, action_id: str, timeout: Optional[float] = None) -> Optional[dict]:
        """Wait for the submitted batch to land and read the proposal back."""
        slot = self._slot(action_id)
        if slot.receipt is None:
            raise SessionError(action_id, "has not been submitted")
        self._wait_for_inclusion(action_id, slot.receipt, timeout)
        try:
            return self.gateway.query_entity("proposal", action_id)
        except Exception as exc:
            raise GatewayError(action_id, "query_entity", str(exc)) from exc

    # === QUERIES & HOUSEKEEPING ===

    def _slot(self, action_id: str) -> _ActionSlot:
        with self._lock:
            slot = self._slots.get(action_id)
        if slot is None:
            raise UnknownAction(action_id)
        return slot

    def get_action(self, action_id: str) -> PendingAction:
        return self._slot(action_id).session.action

    def get_session(self, action_id: str) -> ApprovalSession:
        return self._slot(action_id).session

    def get_receipt(self, action_id: str) -> Optional[SubmissionReceipt]:
        return self._slot(action_id).receipt

    def get_submission_error(self, action_id: str) -> Optional[str]:
        """Why the chain refused the batch, if it did. Never retried."""
        return self._slot(action_id).submission_error

    def get_state(self, action_id: str, now: Optional[datetime] = None) -> SessionState:
        """Current state, expiring the session first if it is overdue."""
        now = _naive_utc(now)
        slot = self._slot(action_id)
        with slot.lock:
            state = slot.session.check_expiry(now)
            if state == SessionState.EXPIRED:
                self._record_expiry(slot, now)
        return state

    def list_actions(self, state: Optional[SessionState] = None) -> List[PendingAction]:
        with self._lock:
            slots = list(self._slots.values())
        return [
            s.session.action for s in slots
            if state is None or s.session.state == state
        ]

    def sweep_expired(self, now: Optional[datetime] = None) -> List[str]:
        """Expire every overdue open session. Returns the ids that expired."""
        now = _naive_utc(now) or datetime.utcnow()
        with self._lock:
            slots = list(self._slots.values())
        expired = []
        for slot in slots:
            with slot.lock:
                if slot.session.state != SessionState.OPEN:
                    continue
                if slot.session.check_expiry(now) == SessionState.EXPIRED:
                    self._record_expiry(slot, now)
                    expired.append(slot.session.action.id)
        if expired:
            logger.info(f"Sweep expired {len(expired)} action(s)")
        return expired

    def forget(self, action_id: str) -> None:
        """Drop a terminal action and its approval records."""
        slot = self._slot(action_id)
        with slot.lock:
            if slot.session.state == SessionState.OPEN:
                raise SessionError(action_id, "is still open")
        with self._lock:
            self._slots.pop(action_id, None)

    # === LEDGER HELPERS ===

    def _record_approvals(
        self, slot: _ActionSlot, discharges: Sequence[Discharge], now: datetime
    ) -> None:
        for discharge in discharges:
            self.ledger.append(
                slot.session.action.id, LedgerEvent.APPROVED, discharge.principal,
                {"signer": discharge.proof.signer}, recorded_at=now,
            )

    def _record_expiry(self, slot: _ActionSlot, now: Optional[datetime]) -> None:
        if slot.session.state == SessionState.EXPIRED and not slot.expiry_recorded:
            slot.expiry_recorded = True
            self.ledger.append(
                slot.session.action.id, LedgerEvent.EXPIRED,
                detail={"pending_approvers": slot.session.pending_approvers()},
                recorded_at=now or datetime.utcnow(),
            )
