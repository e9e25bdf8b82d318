"""
Approval proofs — canonical payloads and signature verification.

A proof binds one decision of one principal to the exact action id and the
exact batch weight. Keys are ECDSA over SECP256K1; public keys travel as
hex-encoded PEM.
"""

import json
import logging
from functools import lru_cache

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import load_pem_public_key

from multisig_kernel.models.action import ApprovalProof, Decision
from multisig_kernel.models.principal import Principal

logger = logging.getLogger(__name__)


def approval_payload(
    action_id: str,
    required_weight: int,
    principal_id: str,
    decision: Decision = Decision.APPROVE,
) -> bytes:
    """Canonical bytes a signer signs to decide on an action for a principal."""
    envelope = {
        "action_id": action_id,
        "required_weight": required_weight,
        "principal": principal_id,
        "decision": Decision(decision).value,
    }
    return json.dumps(envelope, sort_keys=True, separators=(",", ":")).encode()


@lru_cache(maxsize=1024)
def _load_public_key(public_key_hex: str) -> ec.EllipticCurvePublicKey:
    key = load_pem_public_key(bytes.fromhex(public_key_hex))
    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise ValueError("Public key is not an elliptic curve key")
    return key


class ProofVerifier:
    """Checks that a proof's signature was made by the signer's registered key."""

    def verify(self, signer: Principal, payload: bytes, proof: ApprovalProof) -> bool:
        if not signer.public_key or proof.signer != signer.id:
            return False
        try:
            key = _load_public_key(signer.public_key)
            key.verify(bytes.fromhex(proof.signature), payload, ec.ECDSA(hashes.SHA256()))
            return True
        except InvalidSignature:
            return False
        except ValueError as e:
            # Malformed hex or key material is a bad proof, not a crash
            logger.warning(f"Unreadable proof from {proof.signer}: {e}")
            return False
