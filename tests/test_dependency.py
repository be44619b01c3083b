"""Dependency ordering."""

import pytest

from eth_deployer.dependency import DependencyConfig, DetailedDependencies, MissingDependencies, Phase, sort_dependencies


def test_dependencies_come_first():
    a = DependencyConfig("A")
    b = DependencyConfig("B", [a])
    c = DependencyConfig("C", [b])
    assert sort_dependencies([c, b, a]) == [a, b, c]


def test_registration_order_breaks_ties():
    """Independent nodes keep their registration order."""
    a = DependencyConfig("A")
    b = DependencyConfig("B")
    c = DependencyConfig("C", [a])
    d = DependencyConfig("D")
    assert sort_dependencies([b, c, a, d]) == [b, a, c, d]


def test_cycle():
    """Cycles are reported, the partial order is not returned."""
    a = DependencyConfig("A")
    b = DependencyConfig("B", [a])
    a.dependencies = [b]
    c = DependencyConfig("C")
    with pytest.raises(MissingDependencies) as exc_info:
        sort_dependencies([a, b, c])
    assert set(map(id, exc_info.value.unresolved)) == {id(a), id(b)}


def test_missing_dependency():
    """A dependency outside the node set never resolves."""
    outside = DependencyConfig("Outside")
    a = DependencyConfig("A", [outside])
    with pytest.raises(MissingDependencies):
        sort_dependencies([a])


def test_satisfied_dependency():
    """Nodes passed as satisfied do not block."""
    outside = DependencyConfig("Outside")
    a = DependencyConfig("A", [outside])
    assert sort_dependencies([a], satisfied=[outside]) == [a]


def test_per_phase_dependencies():
    """Each phase can have its own edges, falling back to the default list."""
    token = DependencyConfig("Token")
    vault = DependencyConfig("Vault", DetailedDependencies(default=[], configure=[token]))
    nodes = [vault, token]
    assert sort_dependencies(nodes, Phase.deploy) == [vault, token]
    assert sort_dependencies(nodes, Phase.configure) == [token, vault]

    both = DetailedDependencies(default=[token], address=[])
    assert both.for_phase(Phase.address) == []
    assert both.for_phase(Phase.finalize) == [token]
    assert both.for_phase(None) == [token]


def test_dependencies_must_be_nodes():
    """Dependencies are node references, not ids."""
    a = DependencyConfig("A", ["B"])
    with pytest.raises(AssertionError):
        sort_dependencies([a])


def test_nodes_compare_by_identity():
    assert DependencyConfig("A") != DependencyConfig("A")
