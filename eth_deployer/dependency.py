"""Topological ordering of contract configurations.

Dependencies are object references, not ids, so duplicate or
misspelled ids cannot silently alias.

Dependencies can differ per phase: a contract may need another
contract's *address* for its constructor arguments, but need it
*configured* only later.

.. code-block:: python

    token = DependencyConfig(token_config)
    vault = DependencyConfig(
        vault_config,
        DetailedDependencies(address=[token], configure=[token]),
    )
    ordered = sort_dependencies([vault, token], Phase.configure)
    assert ordered == [token, vault]

"""

import enum
import heapq
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence


class Phase(enum.Enum):
    """Lifecycle phases with their own dependency edges."""

    address = "address"
    deploy = "deploy"
    initialize = "initialize"
    configure = "configure"
    finalize = "finalize"


class MissingDependencies(Exception):
    """Dependencies cannot be satisfied: a dependency is missing or there is a cycle."""

    def __init__(self, msg, unresolved: list):
        super().__init__(msg)
        self.unresolved = unresolved


@dataclass(slots=True)
class DetailedDependencies:
    """Per-phase dependency lists.

    A phase without its own list uses ``default``.
    """

    default: list = field(default_factory=list)
    address: list | None = None
    deploy: list | None = None
    initialize: list | None = None
    configure: list | None = None
    finalize: list | None = None

    def for_phase(self, phase: Phase | None) -> list:
        if phase is None:
            return self.default
        specific = getattr(self, phase.value)
        if specific is None:
            return self.default
        return specific


@dataclass(eq=False)
class DependencyConfig:
    """A configuration node in the dependency graph.

    Nodes compare by identity.
    """

    #: Contract name, :py:class:`eth_deployer.configuration.ContractConfiguration` or a deferred configuration function
    config: Any

    #: A flat list for all phases, or per-phase lists
    dependencies: list | DetailedDependencies = field(default_factory=list)

    def get_dependencies(self, phase: Phase | None = None) -> list["DependencyConfig"]:
        if isinstance(self.dependencies, DetailedDependencies):
            deps = self.dependencies.for_phase(phase)
        else:
            deps = self.dependencies
        for d in deps:
            assert isinstance(d, DependencyConfig), f"Dependencies must be DependencyConfig instances, got {d}"
        return list(deps)

    def __repr__(self):
        label = getattr(self.config, "id", None) or getattr(self.config, "__name__", None) or self.config
        return f"<DependencyConfig {label}>"


def sort_dependencies(
    nodes: Sequence[DependencyConfig],
    phase: Phase | None = None,
    satisfied: Iterable[DependencyConfig] = (),
) -> list[DependencyConfig]:
    """Order nodes so that every node comes after its dependencies.

    Kahn's algorithm. Among nodes that become eligible at the same time
    the one registered first wins, so the order is reproducible.

    :param nodes:
        Nodes to order, in registration order

    :param phase:
        Whose dependency edges to use

    :param satisfied:
        Nodes outside ``nodes`` that count as already done,
        e.g. filtered out as irrelevant for this phase

    :raise MissingDependencies:
        A dependency is neither in ``nodes`` nor in ``satisfied``, or there is a cycle.
        The partial order is never returned.
    """
    index = {id(node): i for i, node in enumerate(nodes)}
    done = {id(node) for node in satisfied}

    remaining = [0] * len(nodes)
    dependers = [[] for _ in nodes]

    for i, node in enumerate(nodes):
        for dep in node.get_dependencies(phase):
            if id(dep) in done and id(dep) not in index:
                continue
            j = index.get(id(dep))
            if j is None:
                # Missing node never resolves
                remaining[i] += 1
                continue
            remaining[i] += 1
            dependers[j].append(i)

    queue = [i for i, count in enumerate(remaining) if count == 0]
    heapq.heapify(queue)

    ordered = []
    while queue:
        i = heapq.heappop(queue)
        ordered.append(nodes[i])
        for k in dependers[i]:
            remaining[k] -= 1
            if remaining[k] == 0:
                heapq.heappush(queue, k)

    if len(ordered) < len(nodes):
        unresolved = [nodes[i] for i, count in enumerate(remaining) if count > 0]
        raise MissingDependencies(f"Missing Dependencies for phase {phase.value if phase else 'default'}: {unresolved}", unresolved)

    return ordered
