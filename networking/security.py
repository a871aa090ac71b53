from enum import Enum
from typing import ClassVar, Optional, Union

from attrs import define, field

import common.constants as constants
from common.errors import ResourceReferenceError
from composition.future import AttributeRef
from composition.graph import NodeKind, ResourceGraph
from networking.topology import Network


class Direction(str, Enum):
    INGRESS = "ingress"
    EGRESS = "egress"


@define(slots=True, frozen=True)
class PortRange:
    protocol: str
    from_port: int
    to_port: int

    @classmethod
    def tcp(cls, port: int) -> "PortRange":
        return cls("tcp", port, port)

    @classmethod
    def all_traffic(cls) -> "PortRange":
        return cls("-1", 0, 65535)

    def __str__(self) -> str:
        if self.protocol == "-1":
            return "all traffic"
        if self.from_port == self.to_port:
            return f"{self.protocol}/{self.from_port}"
        return f"{self.protocol}/{self.from_port}-{self.to_port}"


@define(slots=True, frozen=True)
class Peer:
    cidr: Union[str, AttributeRef]

    @classmethod
    def any_ipv4(cls) -> "Peer":
        return cls(constants.ANY_IPV4_CIDR)

    @classmethod
    def ipv4(cls, cidr: str) -> "Peer":
        return cls(cidr)

    @classmethod
    def network(cls, network: Network) -> "Peer":
        """Every address inside ``network``."""
        return cls(network.cidr_block)


@define(slots=True, frozen=True)
class SecurityRule:
    direction: Direction
    port: PortRange
    peer: Peer
    # Not part of the rule's identity: re-declaring with other wording is the same rule.
    description: str = field(default="", eq=False)


@define(slots=True)
class SecurityBoundary:
    kind: ClassVar[NodeKind] = NodeKind.SECURITY_BOUNDARY
    attributes: ClassVar[tuple] = ("security_group_id",)

    name: str
    vpc_id: AttributeRef
    description: str = ""
    allow_all_outbound: bool = True
    existing_group_id: Optional[AttributeRef] = None
    rules: list = field(factory=list)

    @property
    def imported(self) -> bool:
        return self.existing_group_id is not None

    def add_rule(self, rule: SecurityRule) -> bool:
        """Add ``rule`` unless an identical one is already present."""
        if rule in self.rules:
            return False
        self.rules.append(rule)
        return True

    @property
    def ingress_rules(self) -> list[SecurityRule]:
        return [rule for rule in self.rules if rule.direction == Direction.INGRESS]

    @property
    def egress_rules(self) -> list[SecurityRule]:
        return [rule for rule in self.rules if rule.direction == Direction.EGRESS]


@define(slots=True, frozen=True)
class Boundary:
    node_id: str
    spec: SecurityBoundary

    @property
    def security_group_id(self) -> AttributeRef:
        return AttributeRef(self.node_id, "security_group_id")


class SecurityBoundaryManager:
    """Owns every security boundary of one network and the rules attached to them."""

    def __init__(self, graph: ResourceGraph, network: Network) -> None:
        self.graph = graph
        self.network = network
        self._boundaries: dict[str, Boundary] = {}

    def default_boundary(self) -> Boundary:
        """The network's own default security group, imported rather than created."""
        node_id = f"{self.network.node_id}DefaultSecurityGroup"
        if node_id not in self._boundaries:
            spec = SecurityBoundary(
                name=node_id,
                vpc_id=self.network.vpc_id,
                description=f"Default security group of {self.network.node_id}",
                existing_group_id=self.network.default_security_group_id,
            )
            self.graph.add(node_id, spec)
            self._boundaries[node_id] = Boundary(node_id, spec)
        return self._boundaries[node_id]

    def boundary(
        self, node_id: str, description: str = "", allow_all_outbound: bool = True
    ) -> Boundary:
        if node_id not in self._boundaries:
            spec = SecurityBoundary(
                name=node_id,
                vpc_id=self.network.vpc_id,
                description=description or f"{node_id} security group",
                allow_all_outbound=allow_all_outbound,
            )
            self.graph.add(node_id, spec)
            self._boundaries[node_id] = Boundary(node_id, spec)
        return self._boundaries[node_id]

    def require(self, node_id: str) -> Boundary:
        try:
            return self._boundaries[node_id]
        except KeyError:
            raise ResourceReferenceError(
                f"Security boundary {node_id} must be declared before it is referenced"
            ) from None

    def allow_ingress(
        self, boundary: Union[Boundary, str], peer: Peer, port: PortRange, description: str = ""
    ) -> SecurityRule:
        return self._apply(boundary, SecurityRule(Direction.INGRESS, port, peer, description))

    def allow_egress(
        self, boundary: Union[Boundary, str], peer: Peer, port: PortRange, description: str = ""
    ) -> SecurityRule:
        return self._apply(boundary, SecurityRule(Direction.EGRESS, port, peer, description))

    def _apply(self, boundary: Union[Boundary, str], rule: SecurityRule) -> SecurityRule:
        node_id = boundary if isinstance(boundary, str) else boundary.node_id
        self.require(node_id).spec.add_rule(rule)
        return rule

    def __iter__(self):
        return iter(self._boundaries.values())
