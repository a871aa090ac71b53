import heapq
from collections import defaultdict
from enum import Enum
from typing import Any, Iterator

from attrs import define, field

from common.errors import ConfigurationError, ResourceReferenceError
from composition.future import AttributeRef, SecretReference, iter_attribute_refs, walk_references


class NodeKind(str, Enum):
    NETWORK = "network"
    SECURITY_BOUNDARY = "security-boundary"
    DATABASE = "database"
    SECRET = "secret"
    FILE_SYSTEM = "file-system"
    ACCESS_POINT = "access-point"
    CLUSTER = "cluster"
    LOG_GROUP = "log-group"
    HOST = "host"
    TASK = "task"
    SERVICE = "service"
    INGRESS = "ingress"
    GRANT = "grant"


@define(slots=True, frozen=True)
class ResourceNode:
    node_id: str
    spec: Any
    explicit_dependencies: frozenset = field(factory=frozenset, converter=frozenset)

    @property
    def kind(self) -> NodeKind:
        return type(self.spec).kind

    def ref(self, attribute: str) -> AttributeRef:
        if attribute not in type(self.spec).attributes:
            raise ResourceReferenceError(
                f"{self.node_id} ({self.kind.value}) has no attribute {attribute!r}"
            )
        return AttributeRef(self.node_id, attribute)


class ResourceGraph:
    """Resource declarations plus the edges derived from the references they hold.

    Edges come from two places: explicit ``depends_on`` sets given when a node
    is added, and every ``AttributeRef`` / ``SecretReference`` found anywhere in
    the node's spec. Edges are computed on demand so that specs which are
    still being filled in (security boundaries collect rules) are seen in
    their final form.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._nodes: dict[str, ResourceNode] = {}

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def add(self, node_id: str, spec: Any, depends_on=()) -> ResourceNode:
        if node_id in self._nodes:
            raise ConfigurationError(f"Node {node_id} is declared twice in {self.name}")
        node = ResourceNode(node_id=node_id, spec=spec, explicit_dependencies=depends_on)
        self._nodes[node_id] = node
        return node

    def node(self, node_id: str) -> ResourceNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise ResourceReferenceError(
                f"Node {node_id} is not declared in {self.name}"
            ) from None

    def nodes_of(self, kind: NodeKind) -> list[ResourceNode]:
        return [node for node in self._nodes.values() if node.kind == kind]

    def dependencies(self, node_id: str) -> frozenset:
        node = self.node(node_id)
        referenced = {ref.node_id for ref in iter_attribute_refs(node.spec)}
        return frozenset(referenced | node.explicit_dependencies)

    def validate_references(self) -> None:
        for node in self._nodes.values():
            for dependency in node.explicit_dependencies:
                self.node(dependency)
            for reference in walk_references(node.spec):
                self._check_reference(node, reference)

    def _check_reference(self, node: ResourceNode, reference) -> None:
        if isinstance(reference, SecretReference):
            target = self.node(reference.node_id)
            fields = getattr(target.spec, "fields", None)
            if fields is None:
                raise ResourceReferenceError(
                    f"{node.node_id} reads a secret from {target.node_id}, which is not a secret"
                )
            if reference.field not in fields:
                raise ResourceReferenceError(
                    f"{node.node_id} reads unknown field {reference.field!r} of {target.node_id}"
                )
            return
        target = self.node(reference.node_id)
        if reference.attribute not in type(target.spec).attributes:
            raise ResourceReferenceError(
                f"{node.node_id} references unknown attribute {reference}"
            )

    def realization_order(self) -> tuple[str, ...]:
        """Topological order of the graph, ties broken by declaration order."""
        self.validate_references()
        ids = list(self._nodes)
        position = {node_id: index for index, node_id in enumerate(ids)}
        dependents: dict[str, list[str]] = defaultdict(list)
        remaining: dict[str, int] = {}
        for node_id in ids:
            dependencies = self.dependencies(node_id)
            remaining[node_id] = len(dependencies)
            for dependency in dependencies:
                dependents[dependency].append(node_id)

        # A heap of declaration positions keeps ties in declaration order;
        # graphlib.TopologicalSorter makes no such guarantee.
        ready = [position[node_id] for node_id in ids if remaining[node_id] == 0]
        heapq.heapify(ready)
        order = []
        while ready:
            node_id = ids[heapq.heappop(ready)]
            order.append(node_id)
            for dependent in dependents[node_id]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, position[dependent])

        if len(order) != len(ids):
            stuck = ", ".join(node_id for node_id in ids if remaining[node_id] > 0)
            raise ConfigurationError(f"Dependency cycle in {self.name} between {stuck}")
        return tuple(order)
