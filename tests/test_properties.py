"""Property tests over randomly generated authority DAGs."""

import pytest
from hypothesis import given, settings, strategies as st

from multisig_kernel.authority.graph import AuthorityRegistry
from multisig_kernel.errors import CyclicAuthority
from multisig_kernel.models.principal import AuthorityEntry


@st.composite
def authority_dags(draw):
    """
    A registry whose groups are stacked in up to 10 layers.

    Each group only draws signers from principals registered before it,
    so nesting depth is bounded by the layer count and there are no cycles.
    """
    registry = AuthorityRegistry()
    individuals = [f"ind{i}" for i in range(draw(st.integers(min_value=1, max_value=5)))]
    for name in individuals:
        registry.register_individual(name, "00")

    nodes = list(individuals)
    groups = []
    for layer in range(draw(st.integers(min_value=1, max_value=10))):
        layer_groups = []
        for n in range(draw(st.integers(min_value=1, max_value=2))):
            group_id = f"grp{layer}_{n}"
            signers = draw(st.lists(st.sampled_from(nodes), min_size=1, max_size=4, unique=True))
            weights = draw(st.lists(
                st.integers(min_value=1, max_value=3),
                min_size=len(signers), max_size=len(signers),
            ))
            threshold = draw(st.integers(min_value=1, max_value=sum(weights)))
            registry.register_group(
                group_id,
                [AuthorityEntry(signer=s, weight=w) for s, w in zip(signers, weights)],
                threshold,
            )
            layer_groups.append(group_id)
        groups.extend(layer_groups)
        nodes.extend(layer_groups)
    return registry, individuals, groups


@given(data=st.data())
@settings(max_examples=75, deadline=None)
def test_is_satisfied_is_monotonic(data):
    registry, individuals, groups = data.draw(authority_dags())
    graph = registry.graph
    everyone = individuals + groups

    smaller = set(data.draw(st.lists(st.sampled_from(everyone), unique=True)))
    extra = set(data.draw(st.lists(st.sampled_from(everyone), unique=True)))
    larger = smaller | extra

    for principal in everyone:
        if graph.is_satisfied(principal, smaller):
            assert graph.is_satisfied(principal, larger)
        assert graph.resolve_weight(principal, smaller) <= graph.resolve_weight(principal, larger)


@given(data=st.data())
@settings(max_examples=75, deadline=None)
def test_resolution_terminates_and_everyone_satisfies_everything(data):
    registry, individuals, groups = data.draw(authority_dags())
    graph = registry.graph

    for group in groups:
        assert graph.resolve_weight(group, set()) == 0
        assert graph.is_satisfied(group, set(individuals))


@given(data=st.data())
@settings(max_examples=50, deadline=None)
def test_cycle_rejected_and_prior_registrations_kept(data):
    registry, individuals, groups = data.draw(authority_dags())
    top = groups[-1]
    below_top = [g for g in groups if registry.graph.contains(top, g)]
    target = data.draw(st.sampled_from(below_top))
    before = registry.graph

    with pytest.raises(CyclicAuthority):
        registry.add_member(target, top)

    assert registry.graph is before
    assert top not in registry.graph.members(target)
