"""Shared fixtures: real SECP256K1 keys and the DAO layout from the casimir story."""

from datetime import datetime, timedelta
from typing import Dict, List

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from multisig_kernel.authority.graph import AuthorityRegistry
from multisig_kernel.coordinator.proposals import ProposalCoordinator
from multisig_kernel.crypto.proofs import approval_payload
from multisig_kernel.gateway.chain import InMemoryChainGateway
from multisig_kernel.ledger.store import DecisionLedger
from multisig_kernel.models.action import (
    ApprovalProof,
    Decision,
    Discharge,
    PendingAction,
)
from multisig_kernel.models.config import CoordinatorConfig
from multisig_kernel.models.principal import AuthorityEntry


class KeyPair:
    def __init__(self, principal_id: str):
        self.principal_id = principal_id
        self.private_key = ec.generate_private_key(ec.SECP256K1())

    @property
    def public_key_hex(self) -> str:
        pem = self.private_key.public_key().public_bytes(
            Encoding.PEM, PublicFormat.SubjectPublicKeyInfo
        )
        return pem.hex()


class EcdsaSigner:
    """Test keyring signer. Production keyrings live outside the kernel."""

    def sign(self, payload: bytes, key: KeyPair) -> ApprovalProof:
        signature = key.private_key.sign(payload, ec.ECDSA(hashes.SHA256()))
        return ApprovalProof(signer=key.principal_id, signature=signature.hex())


class Keyring:
    def __init__(self):
        self.signer = EcdsaSigner()
        self._keys: Dict[str, KeyPair] = {}

    def key(self, principal_id: str) -> KeyPair:
        if principal_id not in self._keys:
            self._keys[principal_id] = KeyPair(principal_id)
        return self._keys[principal_id]

    def proof(
        self,
        signer_id: str,
        action: PendingAction,
        principal_id: str,
        decision: Decision = Decision.APPROVE,
    ) -> ApprovalProof:
        payload = approval_payload(action.id, action.required_weight, principal_id, decision)
        return self.signer.sign(payload, self.key(signer_id))

    def chain(self, signer_id: str, action: PendingAction, principals: List[str]) -> List[Discharge]:
        """One signature chain, innermost authority first."""
        return [
            Discharge(principal=p, proof=self.proof(signer_id, action, p))
            for p in principals
        ]


PEOPLE = ["alice", "bob", "charlie", "dave", "eve"]


def build_casimir_registry(keyring: Keyring) -> AuthorityRegistry:
    """
    Alice/Bob/Charlie/Dave/Eve each own a single-key DAO.
    alice_bob_dao   (alice_dao, bob_dao)             threshold 1
    eve_charlie_dao (eve_dao, charlie_dao)           threshold 1
    bob_dave_dao    (bob_dao, dave_dao)              threshold 2
    multigroup1     (eve_charlie_dao, bob_dave_dao)  threshold 1
    multigroup2     (eve_charlie_dao, bob_dave_dao)  threshold 2
    """
    registry = AuthorityRegistry()
    for person in PEOPLE:
        registry.register_individual(person, keyring.key(person).public_key_hex)
        registry.register_group(f"{person}_dao", [AuthorityEntry(signer=person)], 1)

    def group(group_id, signers, threshold):
        registry.register_group(
            group_id, [AuthorityEntry(signer=s, weight=1) for s in signers], threshold
        )

    group("alice_bob_dao", ["alice_dao", "bob_dao"], 1)
    group("eve_charlie_dao", ["eve_dao", "charlie_dao"], 1)
    group("bob_dave_dao", ["bob_dao", "dave_dao"], 2)
    group("multigroup1", ["eve_charlie_dao", "bob_dave_dao"], 1)
    group("multigroup2", ["eve_charlie_dao", "bob_dave_dao"], 2)
    return registry


@pytest.fixture
def keyring():
    return Keyring()


@pytest.fixture
def registry(keyring):
    return build_casimir_registry(keyring)


@pytest.fixture
def gateway():
    return InMemoryChainGateway()


@pytest.fixture
def ledger():
    store = DecisionLedger(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def coordinator(registry, gateway, keyring, ledger):
    return ProposalCoordinator(
        registry=registry,
        gateway=gateway,
        signer=keyring.signer,
        ledger=ledger,
        config=CoordinatorConfig(),
    )


@pytest.fixture
def in_an_hour():
    return datetime.utcnow() + timedelta(hours=1)
