"""
Approval Session — accumulates decisions for one Pending Action.

States:
  OPEN → RESOLVED | EXPIRED | DECLINED

Behavioral Contract:
- Evaluates against the AuthorityGraph snapshot captured when it was opened
- Re-checks resolution after every recorded approval
- Checks expiry before every mutation
- A rejected call never changes the session
- Never talks to the chain. The coordinator submits on RESOLVED.

Not thread-safe on its own: the coordinator serializes calls per action.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Set

from multisig_kernel.authority.graph import AuthorityGraph
from multisig_kernel.crypto.proofs import ProofVerifier, approval_payload
from multisig_kernel.errors import (
    DuplicateApproval,
    InvalidProof,
    NotAnApprover,
    SessionNotOpen,
    UnsatisfiedAuthority,
)
from multisig_kernel.models.action import (
    ApprovalProof,
    ApprovalRecord,
    Decision,
    Discharge,
    PendingAction,
)
from multisig_kernel.models.session import SessionState

logger = logging.getLogger(__name__)


class ApprovalSession:

    def __init__(
        self,
        action: PendingAction,
        graph: AuthorityGraph,
        verifier: Optional[ProofVerifier] = None,
    ):
        self.action = action
        self.graph = graph
        self.verifier = verifier or ProofVerifier()
        self._state = SessionState.OPEN
        self._approved: Set[str] = set()
        self._declined_by: Optional[str] = None
        self._records: List[ApprovalRecord] = []
        self.closed_at: Optional[datetime] = None

    # --- Read side ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def approved(self) -> frozenset:
        return frozenset(self._approved)

    @property
    def records(self) -> List[ApprovalRecord]:
        return list(self._records)

    @property
    def declined_by(self) -> Optional[str]:
        return self._declined_by

    def approved_weight(self, principal_id: str) -> int:
        return self.graph.resolve_weight(principal_id, self._approved)

    def pending_approvers(self) -> List[str]:
        """Required approvers whose authority is not yet satisfied."""
        return [
            p for p in self.action.required_approvers
            if not self.graph.is_satisfied(p, self._approved)
        ]

    def is_eligible(self, principal_id: str) -> bool:
        """A principal may decide if it is, or sits below, a required approver."""
        return any(
            self.graph.contains(required, principal_id)
            for required in self.action.required_approvers
        )

    # --- Transitions ---

    def check_expiry(self, now: Optional[datetime] = None) -> SessionState:
        """Expire an open session whose deadline has passed."""
        now = now or datetime.utcnow()
        if self._state == SessionState.OPEN and now > self.action.expiration_time:
            self._close(SessionState.EXPIRED, now)
            logger.warning(
                f"Action {self.action.id} expired with "
                f"{len(self.pending_approvers())} approver(s) outstanding"
            )
        return self._state

    def record_approval(
        self,
        principal_id: str,
        proof: ApprovalProof,
        now: Optional[datetime] = None,
    ) -> SessionState:
        return self.record_discharges(
            [Discharge(principal=principal_id, proof=proof)], now=now
        )

    def record_discharges(
        self,
        discharges: Iterable[Discharge],
        now: Optional[datetime] = None,
    ) -> SessionState:
        """
        Record one signature chain, innermost authority first.

        All discharges are validated against a scratch copy of the approved
        set; nothing is committed unless every one of them is valid.
        """
        now = now or datetime.utcnow()
        self._require_open(now)

        batch = list(discharges)
        if not batch:
            raise ValueError("At least one discharge is required")

        scratch = set(self._approved)
        for discharge in batch:
            self._validate(discharge.principal, discharge.proof, Decision.APPROVE, scratch)
            if self.graph.is_group(discharge.principal) and not self.graph.is_satisfied(
                discharge.principal, scratch
            ):
                raise UnsatisfiedAuthority(self.action.id, discharge.principal)
            scratch.add(discharge.principal)

        # Commit
        self._approved = scratch
        for discharge in batch:
            self._records.append(ApprovalRecord(
                action_id=self.action.id,
                principal=discharge.principal,
                signer=discharge.proof.signer,
                decision=Decision.APPROVE,
                recorded_at=now,
            ))
        logger.info(
            f"Action {self.action.id}: recorded "
            f"{[d.principal for d in batch]} signed by {batch[0].proof.signer}"
        )

        if all(
            self.graph.is_satisfied(p, self._approved)
            for p in self.action.required_approvers
        ):
            self._close(SessionState.RESOLVED, now)
            logger.info(f"Action {self.action.id} resolved")
        return self._state

    def decline(
        self,
        principal_id: str,
        proof: ApprovalProof,
        now: Optional[datetime] = None,
    ) -> SessionState:
        """A single valid decline is terminal."""
        now = now or datetime.utcnow()
        self._require_open(now)
        self._validate(principal_id, proof, Decision.DECLINE, self._approved)

        self._records.append(ApprovalRecord(
            action_id=self.action.id,
            principal=principal_id,
            signer=proof.signer,
            decision=Decision.DECLINE,
            recorded_at=now,
        ))
        self._declined_by = principal_id
        self._close(SessionState.DECLINED, now)
        logger.info(f"Action {self.action.id} declined by {principal_id}")
        return self._state

    # --- Internals ---

    def _require_open(self, now: datetime) -> None:
        if self.check_expiry(now) != SessionState.OPEN:
            raise SessionNotOpen(self.action.id, self._state.value)

    def _validate(
        self,
        principal_id: str,
        proof: ApprovalProof,
        decision: Decision,
        approved: Set[str],
    ) -> None:
        action_id = self.action.id
        self.graph.principal(principal_id)

        if not self.is_eligible(principal_id):
            raise NotAnApprover(action_id, principal_id)
        if principal_id in approved:
            raise DuplicateApproval(action_id, principal_id)
        if proof.signer not in self.graph.flatten(principal_id):
            raise InvalidProof(
                action_id, principal_id, f"{proof.signer} cannot sign for {principal_id}"
            )

        payload = approval_payload(
            action_id, self.action.required_weight, principal_id, decision
        )
        if not self.verifier.verify(self.graph.principal(proof.signer), payload, proof):
            logger.warning(
                f"Action {action_id}: bad signature from {proof.signer} for {principal_id}"
            )
            raise InvalidProof(action_id, principal_id, "signature does not verify")

    def _close(self, state: SessionState, now: datetime) -> None:
        self._state = state
        self.closed_at = now

    def to_dict(self) -> dict:
        return {
            "action": self.action.model_dump(mode="json"),
            "state": self._state.value,
            "approved": sorted(self._approved),
            "pending_approvers": self.pending_approvers(),
            "declined_by": self._declined_by,
            "records": [r.model_dump(mode="json") for r in self._records],
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
        }
