"""
Error taxonomy for the multisig kernel.

Configuration errors (UnknownPrincipal, CyclicAuthority, InvalidAuthority) are
raised at registration time and are fatal to the mutation that caused them.
Session errors (SessionNotOpen, DuplicateApproval, InvalidProof) leave the
session untouched and are safe for the caller to recover from.
Gateway errors (SubmissionError, InclusionTimeout) carry the action id and the
operation that failed. Nothing here is retried automatically.
"""

from typing import Optional


class MultisigError(Exception):
    """Base class for every error raised by the kernel."""
    pass


# --- Configuration errors ---

class AuthorityConfigError(MultisigError):
    """Raised when an authority graph cannot be registered."""
    pass


class UnknownPrincipal(AuthorityConfigError):
    def __init__(self, principal_id: str):
        self.principal_id = principal_id
        super().__init__(f"Unknown principal: {principal_id}")


class CyclicAuthority(AuthorityConfigError):
    def __init__(self, group_id: str, path: Optional[list] = None):
        self.group_id = group_id
        self.path = path or []
        chain = " -> ".join(self.path) if self.path else group_id
        super().__init__(f"Authority of {group_id} would contain itself: {chain}")


class InvalidAuthority(AuthorityConfigError):
    """Threshold out of range, duplicate signers, or a non-positive weight."""
    pass


# --- Session protocol errors ---

class SessionError(MultisigError):
    def __init__(self, action_id: str, message: str):
        self.action_id = action_id
        super().__init__(f"[{action_id}] {message}")


class UnknownAction(SessionError):
    def __init__(self, action_id: str):
        super().__init__(action_id, "no such pending action")


class SessionNotOpen(SessionError):
    def __init__(self, action_id: str, state: str):
        self.state = state
        super().__init__(action_id, f"session is {state}, not open")


class DuplicateApproval(SessionError):
    def __init__(self, action_id: str, principal_id: str):
        self.principal_id = principal_id
        super().__init__(action_id, f"{principal_id} has already decided")


class InvalidProof(SessionError):
    def __init__(self, action_id: str, principal_id: str, reason: str):
        self.principal_id = principal_id
        self.reason = reason
        super().__init__(action_id, f"proof for {principal_id} rejected: {reason}")


class NotAnApprover(InvalidProof):
    def __init__(self, action_id: str, principal_id: str):
        super().__init__(action_id, principal_id, "not an authority for this action")


class UnsatisfiedAuthority(InvalidProof):
    def __init__(self, action_id: str, principal_id: str):
        super().__init__(
            action_id, principal_id, "group threshold not met by recorded approvals"
        )


# --- Chain gateway errors ---

class GatewayError(MultisigError):
    def __init__(self, action_id: str, operation: str, message: str):
        self.action_id = action_id
        self.operation = operation
        super().__init__(f"[{action_id}] {operation} failed: {message}")


class SubmissionError(GatewayError):
    pass


class InclusionTimeout(GatewayError, TimeoutError):
    pass
