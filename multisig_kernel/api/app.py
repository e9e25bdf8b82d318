"""
Multisig Kernel API — FastAPI endpoints.

Exposes the kernel's functionality via a REST API for:
- Principal and group authority management
- Proposal creation and inspection
- Approvals and declines
- Expiry sweeps
- Ledger queries
"""

from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from multisig_kernel.authority.graph import AuthorityRegistry
from multisig_kernel.coordinator.proposals import ProposalCoordinator
from multisig_kernel.crypto.proofs import approval_payload
from multisig_kernel.errors import (
    AuthorityConfigError,
    DuplicateApproval,
    GatewayError,
    InvalidProof,
    MultisigError,
    SessionError,
    SessionNotOpen,
    UnknownAction,
    UnknownPrincipal,
)
from multisig_kernel.gateway.chain import InMemoryChainGateway
from multisig_kernel.ledger.store import DecisionLedger
from multisig_kernel.models.action import ApprovalProof, Command, Decision, Discharge
from multisig_kernel.models.config import CoordinatorConfig
from multisig_kernel.models.principal import AuthorityEntry
from multisig_kernel.models.session import SessionState


# --- Request/Response Models ---

class IndividualRegisterRequest(BaseModel):
    id: str
    public_key: str


class GroupRegisterRequest(BaseModel):
    id: str
    entries: List[AuthorityEntry]
    threshold: int = Field(ge=1)


class MemberAddRequest(BaseModel):
    signer: str
    weight: int = Field(ge=1, default=1)


class ThresholdRequest(BaseModel):
    threshold: int = Field(ge=1)


class ProposalCreateRequest(BaseModel):
    creator: str
    commands: List[Command]
    expiration_time: Optional[datetime] = None
    action_id: Optional[str] = None


class ApproveRequest(BaseModel):
    discharges: List[Discharge]


class DeclineRequest(BaseModel):
    principal: str
    proof: ApprovalProof


def _http_error(exc: MultisigError) -> HTTPException:
    """Map kernel errors onto HTTP status codes."""
    if isinstance(exc, (UnknownAction, UnknownPrincipal)):
        return HTTPException(404, str(exc))
    if isinstance(exc, AuthorityConfigError):
        return HTTPException(400, str(exc))
    if isinstance(exc, InvalidProof):
        return HTTPException(403, str(exc))
    if isinstance(exc, (SessionNotOpen, DuplicateApproval, SessionError)):
        return HTTPException(409, str(exc))
    if isinstance(exc, GatewayError):
        return HTTPException(502, str(exc))
    return HTTPException(500, str(exc))


# --- Application Factory ---

def create_app(
    coordinator: Optional[ProposalCoordinator] = None,
    config: Optional[CoordinatorConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Multisig Kernel API",
        description="Nested multi-party approval coordinator",
        version="0.1.0",
    )

    if coordinator is None:
        config = config or CoordinatorConfig()
        coordinator = ProposalCoordinator(
            registry=AuthorityRegistry(),
            gateway=InMemoryChainGateway(),
            ledger=DecisionLedger(config.ledger_path),
            config=config,
        )
    registry = coordinator.registry
    ledger = coordinator.ledger

    app.state.coordinator = coordinator

    # === PRINCIPALS ===

    @app.post("/principals/individuals")
    def register_individual(req: IndividualRegisterRequest):
        """Register a key-owning principal."""
        try:
            principal = registry.register_individual(req.id, req.public_key)
        except MultisigError as e:
            raise _http_error(e) from e
        return principal.model_dump(mode="json")

    @app.post("/principals/groups")
    def register_group(req: GroupRegisterRequest):
        """Register or replace a group authority."""
        try:
            authority = registry.register_group(req.id, req.entries, req.threshold)
        except MultisigError as e:
            raise _http_error(e) from e
        return {"version": registry.graph.version, **authority.to_dict()}

    @app.post("/principals/groups/{group_id}/members")
    def add_member(group_id: str, req: MemberAddRequest):
        try:
            authority = registry.add_member(group_id, req.signer, req.weight)
        except MultisigError as e:
            raise _http_error(e) from e
        return {"version": registry.graph.version, **authority.to_dict()}

    @app.delete("/principals/groups/{group_id}/members/{signer}")
    def remove_member(group_id: str, signer: str):
        try:
            authority = registry.remove_member(group_id, signer)
        except MultisigError as e:
            raise _http_error(e) from e
        return {"version": registry.graph.version, **authority.to_dict()}

    @app.put("/principals/groups/{group_id}/threshold")
    def alter_threshold(group_id: str, req: ThresholdRequest):
        try:
            authority = registry.alter_threshold(group_id, req.threshold)
        except MultisigError as e:
            raise _http_error(e) from e
        return {"version": registry.graph.version, **authority.to_dict()}

    @app.get("/principals/graph")
    def get_graph():
        """Current authority snapshot."""
        return registry.graph.to_dict()

    @app.get("/principals/{principal_id}/signers")
    def get_flattened_signers(principal_id: str):
        """Every individual that can sign for a principal."""
        try:
            signers = registry.graph.flatten(principal_id)
        except MultisigError as e:
            raise _http_error(e) from e
        return {"principal": principal_id, "signers": sorted(signers)}

    # === PROPOSALS ===

    @app.post("/proposals")
    def create_proposal(req: ProposalCreateRequest):
        """Propose a batch. Approvals are submitted separately."""
        try:
            action = coordinator.create_proposal(
                creator=req.creator,
                commands=req.commands,
                expiration_time=req.expiration_time,
                action_id=req.action_id,
            )
        except MultisigError as e:
            raise _http_error(e) from e
        except ValueError as e:
            raise HTTPException(400, str(e)) from e
        return action.model_dump(mode="json")

    @app.get("/proposals")
    def list_proposals(state: Optional[SessionState] = None):
        return [a.model_dump(mode="json") for a in coordinator.list_actions(state)]

    @app.get("/proposals/{action_id}")
    def get_proposal(action_id: str):
        """Session view of a proposal, expiring it first if overdue."""
        try:
            coordinator.get_state(action_id)
            session = coordinator.get_session(action_id)
        except MultisigError as e:
            raise _http_error(e) from e
        receipt = coordinator.get_receipt(action_id)
        return {
            **session.to_dict(),
            "receipt": receipt.model_dump(mode="json") if receipt else None,
            "submission_error": coordinator.get_submission_error(action_id),
        }

    @app.get("/proposals/{action_id}/payload")
    def get_signing_payload(
        action_id: str, principal: str, decision: Decision = Decision.APPROVE
    ):
        """The exact bytes (hex) a signer must sign to decide for a principal."""
        try:
            action = coordinator.get_action(action_id)
        except MultisigError as e:
            raise _http_error(e) from e
        payload = approval_payload(action.id, action.required_weight, principal, decision)
        return {"payload": payload.hex()}

    @app.post("/proposals/{action_id}/approve")
    def approve_proposal(action_id: str, req: ApproveRequest):
        try:
            state = coordinator.approve(action_id, req.discharges)
        except MultisigError as e:
            raise _http_error(e) from e
        except ValueError as e:
            raise HTTPException(400, str(e)) from e
        return {"action_id": action_id, "state": state.value}

    @app.post("/proposals/{action_id}/decline")
    def decline_proposal(action_id: str, req: DeclineRequest):
        try:
            state = coordinator.decline(action_id, req.principal, req.proof)
        except MultisigError as e:
            raise _http_error(e) from e
        return {"action_id": action_id, "state": state.value}

    @app.post("/proposals/sweep")
    def sweep_expired():
        """Force an expiry sweep."""
        expired = coordinator.sweep_expired()
        return {"expired": expired, "count": len(expired)}

    # === LEDGER ===

    @app.get("/ledger")
    def get_ledger(limit: int = 50):
        return [e.model_dump(mode="json") for e in ledger.query_recent(limit=limit)]

    @app.get("/ledger/verify")
    def verify_ledger():
        """Verify chain integrity."""
        return {
            "integrity_valid": ledger.verify_chain_integrity(),
            "total_entries": ledger.count(),
        }

    @app.get("/ledger/{action_id}")
    def get_ledger_for_action(action_id: str):
        entries = ledger.get_by_action(action_id)
        if not entries:
            raise HTTPException(404, "No ledger entries for action")
        return [e.model_dump(mode="json") for e in entries]

    return app


# Default application instance
app = create_app(config=CoordinatorConfig.from_env())
