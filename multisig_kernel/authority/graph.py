"""
Authority Graph — who must sign for an action, through nested groups.

A group principal (DAO) authorizes through a weighted set of signers and a
threshold. A signer may itself be a group, so authorities form a DAG.

Behavioral Contract:
- Registration is the only mutation and happens on the AuthorityRegistry
- Every mutation is validated in full and either publishes a new immutable
  AuthorityGraph snapshot or raises, leaving the previous snapshot in place
- Cycles are rejected at registration, so resolution is total and pure
- Sessions hold on to the snapshot they were opened against
"""

import logging
import threading
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from multisig_kernel.errors import CyclicAuthority, InvalidAuthority, UnknownPrincipal
from multisig_kernel.models.principal import AuthorityEntry, Principal, PrincipalKind

logger = logging.getLogger(__name__)


class GroupAuthority:
    """The entries and threshold of one group. Immutable."""

    __slots__ = ("group_id", "entries", "threshold")

    def __init__(self, group_id: str, entries: Iterable[AuthorityEntry], threshold: int):
        self.group_id = group_id
        self.entries: Tuple[AuthorityEntry, ...] = tuple(
            AuthorityEntry(signer=e.signer, weight=e.weight) for e in entries
        )
        self.threshold = threshold

    @property
    def total_weight(self) -> int:
        return sum(e.weight for e in self.entries)

    def signer_ids(self) -> List[str]:
        return [e.signer for e in self.entries]

    def to_dict(self) -> dict:
        return {
            "group_id": self.group_id,
            "threshold": self.threshold,
            "entries": [e.model_dump() for e in self.entries],
        }


class AuthorityGraph:
    """
    An immutable snapshot of every registered principal and group authority.

    All queries are side-effect free and safe to call from any thread.
    """

    def __init__(
        self,
        principals: Mapping[str, Principal],
        groups: Mapping[str, GroupAuthority],
        version: int = 0,
    ):
        self._principals = MappingProxyType(dict(principals))
        self._groups = MappingProxyType(dict(groups))
        self.version = version

    # --- Lookup ---

    def __contains__(self, principal_id: str) -> bool:
        return principal_id in self._principals

    def principal(self, principal_id: str) -> Principal:
        found = self._principals.get(principal_id)
        if found is None:
            raise UnknownPrincipal(principal_id)
        return found

    def principals(self) -> List[Principal]:
        return list(self._principals.values())

    def principals_map(self) -> Mapping[str, Principal]:
        return self._principals

    def groups_map(self) -> Mapping[str, GroupAuthority]:
        return self._groups

    def is_group(self, principal_id: str) -> bool:
        return self.principal(principal_id).kind == PrincipalKind.GROUP

    def authority(self, group_id: str) -> GroupAuthority:
        """The authority of a group principal."""
        if not self.is_group(group_id):
            raise UnknownPrincipal(group_id)
        return self._groups[group_id]

    def threshold(self, principal_id: str) -> int:
        """Individuals behave as a threshold of one over themselves."""
        if self.is_group(principal_id):
            return self._groups[principal_id].threshold
        return 1

    def members(self, group_id: str) -> List[str]:
        """Direct signers of a group, in registration order."""
        return self.authority(group_id).signer_ids()

    # --- Resolution ---

    def resolve_weight(self, principal_id: str, approved: Iterable[str]) -> int:
        """
        Weight a principal's authority collects from an approved set.

        An entry counts when its signer approved directly, or when its signer
        is a group whose own authority is satisfied by the same set.
        Individuals collect 1 if they approved themselves, else 0.
        """
        approved_set = approved if isinstance(approved, (set, frozenset)) else set(approved)
        return self._resolve(principal_id, approved_set, {})

    def is_satisfied(self, principal_id: str, approved: Iterable[str]) -> bool:
        approved_set = approved if isinstance(approved, (set, frozenset)) else set(approved)
        return self._satisfied(principal_id, approved_set, {})

    def _resolve(self, principal_id: str, approved: Set[str], memo: Dict[str, bool]) -> int:
        if not self.is_group(principal_id):
            return 1 if principal_id in approved else 0
        weight = 0
        for entry in self._groups[principal_id].entries:
            if entry.signer in approved or (
                self.is_group(entry.signer) and self._satisfied(entry.signer, approved, memo)
            ):
                weight += entry.weight
        return weight

    def _satisfied(self, principal_id: str, approved: Set[str], memo: Dict[str, bool]) -> bool:
        if principal_id in memo:
            return memo[principal_id]
        result = self._resolve(principal_id, approved, memo) >= self.threshold(principal_id)
        memo[principal_id] = result
        return result

    def flatten(self, principal_id: str) -> FrozenSet[str]:
        """Every individual that can sign, directly or transitively, for a principal."""
        if not self.is_group(principal_id):
            self.principal(principal_id)
            return frozenset([principal_id])
        found: Set[str] = set()
        stack = [principal_id]
        seen: Set[str] = set()
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            for signer in self._groups[current].signer_ids():
                if self.is_group(signer):
                    stack.append(signer)
                else:
                    found.add(signer)
        return frozenset(found)

    def contains(self, ancestor: str, descendant: str) -> bool:
        """True if descendant is the ancestor itself or sits somewhere below it."""
        return self._path(ancestor, descendant) is not None

    def _path(self, start: str, target: str) -> Optional[List[str]]:
        if start == target:
            return [start]
        if start not in self._groups:
            return None
        stack: List[Tuple[str, List[str]]] = [(start, [start])]
        seen: Set[str] = set()
        while stack:
            current, path = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            for signer in self._groups[current].signer_ids():
                if signer == target:
                    return path + [signer]
                if signer in self._groups:
                    stack.append((signer, path + [signer]))
        return None

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "principals": [p.model_dump(mode="json") for p in self._principals.values()],
            "groups": [g.to_dict() for g in self._groups.values()],
        }


class AuthorityRegistry:
    """
    Owns the current AuthorityGraph snapshot and every change to it.

    Mutations build a candidate snapshot, validate it, and swap it in under a
    lock, so readers always see either the old or the new graph in full.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._graph = AuthorityGraph({}, {}, version=0)

    @property
    def graph(self) -> AuthorityGraph:
        """The current snapshot."""
        return self._graph

    def snapshot(self) -> AuthorityGraph:
        return self._graph

    def register_individual(self, principal_id: str, public_key: str) -> Principal:
        """Register a key-owning principal."""
        if not public_key:
            raise InvalidAuthority(f"Individual {principal_id} needs a public key")
        principal = Principal(
            id=principal_id, kind=PrincipalKind.INDIVIDUAL, public_key=public_key
        )
        with self._lock:
            current = self._graph.principals_map()
            existing = current.get(principal_id)
            if existing is not None and existing.kind == PrincipalKind.GROUP:
                raise InvalidAuthority(f"{principal_id} is already registered as a group")
            principals = dict(current)
            principals[principal_id] = principal
            self._publish(principals, self._graph.groups_map())
        logger.info(f"Registered individual {principal_id}")
        return principal

    def register_group(
        self,
        group_id: str,
        entries: Iterable[AuthorityEntry],
        threshold: int,
    ) -> GroupAuthority:
        """Register a group, or replace its authority if it already exists."""
        with self._lock:
            existing = self._graph.principals_map().get(group_id)
            if existing is not None and existing.kind == PrincipalKind.INDIVIDUAL:
                raise InvalidAuthority(f"{group_id} is already registered as an individual")
            authority = GroupAuthority(group_id, entries, threshold)
            self._apply(authority)
        logger.info(
            f"Registered group {group_id} with {len(authority.entries)} signers, "
            f"threshold {threshold} (snapshot v{self._graph.version})"
        )
        return authority

    def add_member(self, group_id: str, signer: str, weight: int = 1) -> GroupAuthority:
        """Add a signer to an existing group, keeping its threshold."""
        with self._lock:
            current = self._graph.authority(group_id)
            if signer in current.signer_ids():
                raise InvalidAuthority(f"{signer} is already a member of {group_id}")
            entries = list(current.entries) + [AuthorityEntry(signer=signer, weight=weight)]
            authority = GroupAuthority(group_id, entries, current.threshold)
            self._apply(authority)
        logger.info(f"Added {signer} to {group_id} (snapshot v{self._graph.version})")
        return authority

    def remove_member(self, group_id: str, signer: str) -> GroupAuthority:
        """Remove a signer. Fails if the threshold would become unreachable."""
        with self._lock:
            current = self._graph.authority(group_id)
            if signer not in current.signer_ids():
                raise InvalidAuthority(f"{signer} is not a member of {group_id}")
            entries = [e for e in current.entries if e.signer != signer]
            authority = GroupAuthority(group_id, entries, current.threshold)
            self._apply(authority)
        logger.info(f"Removed {signer} from {group_id} (snapshot v{self._graph.version})")
        return authority

    def alter_threshold(self, group_id: str, threshold: int) -> GroupAuthority:
        with self._lock:
            current = self._graph.authority(group_id)
            authority = GroupAuthority(group_id, current.entries, threshold)
            self._apply(authority)
        logger.info(
            f"Altered threshold of {group_id} to {threshold} (snapshot v{self._graph.version})"
        )
        return authority

    # --- Internals (caller holds the lock) ---

    def _apply(self, authority: GroupAuthority) -> None:
        principals = dict(self._graph.principals_map())
        groups = dict(self._graph.groups_map())
        self._validate(authority, principals, groups)
        principals[authority.group_id] = Principal(
            id=authority.group_id, kind=PrincipalKind.GROUP
        )
        groups[authority.group_id] = authority
        self._publish(principals, groups)

    def _validate(
        self,
        authority: GroupAuthority,
        principals: Dict[str, Principal],
        groups: Dict[str, GroupAuthority],
    ) -> None:
        group_id = authority.group_id
        signers = authority.signer_ids()
        if not signers:
            raise InvalidAuthority(f"Group {group_id} needs at least one signer")
        if len(signers) != len(set(signers)):
            raise InvalidAuthority(f"Group {group_id} lists a signer more than once")
        if any(e.weight < 1 for e in authority.entries):
            raise InvalidAuthority(f"Group {group_id} has a non-positive weight")
        if not 1 <= authority.threshold <= authority.total_weight:
            raise InvalidAuthority(
                f"Threshold {authority.threshold} of {group_id} must be between 1 "
                f"and total weight {authority.total_weight}"
            )
        for signer in signers:
            if signer == group_id:
                raise CyclicAuthority(group_id, [group_id, group_id])
            if signer not in principals:
                raise UnknownPrincipal(signer)

        # Would any nested group reach back to this one?
        candidate = AuthorityGraph(principals, {**groups, group_id: authority})
        for signer in signers:
            if signer in groups:
                path = candidate._path(signer, group_id)
                if path is not None:
                    raise CyclicAuthority(group_id, [group_id] + path)

    def _publish(self, principals: Dict[str, Principal], groups: Dict[str, GroupAuthority]) -> None:
        self._graph = AuthorityGraph(principals, groups, version=self._graph.version + 1)
