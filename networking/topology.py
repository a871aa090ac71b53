import ipaddress
from enum import Enum
from typing import ClassVar, Iterable, Optional

from attrs import define, field

import common.constants as constants
from common.errors import ConfigurationError
from composition.future import AttributeRef
from composition.graph import NodeKind, ResourceGraph


class ReachabilityClass(str, Enum):
    PUBLIC = "public"
    PRIVATE_ROUTABLE = "private-routable"
    PRIVATE_ISOLATED = "private-isolated"


PRIVATE_CLASSES = frozenset({ReachabilityClass.PRIVATE_ROUTABLE, ReachabilityClass.PRIVATE_ISOLATED})


@define(slots=True, frozen=True)
class SubnetGroupSpec:
    name: str
    reachability: ReachabilityClass = field(converter=ReachabilityClass)
    cidr_mask: int = constants.CIDR_MASK
    nat: Optional[bool] = None  # defaults to True for private-routable groups only


@define(slots=True, frozen=True)
class Subnet:
    cidr: str
    availability_zone: int


@define(slots=True, frozen=True)
class SubnetGroup:
    name: str
    reachability: ReachabilityClass
    cidr_mask: int
    subnets: tuple
    map_public_ip_on_launch: bool
    route: Optional[str]  # "internet-gateway", "nat-gateway" or None


@define(slots=True, frozen=True)
class NetworkTopology:
    kind: ClassVar[NodeKind] = NodeKind.NETWORK
    attributes: ClassVar[tuple] = ("vpc_id", "cidr_block", "default_security_group_id")

    name: str
    cidr: str
    max_azs: int
    nat_gateways: int
    groups: tuple

    def group(self, name: str) -> SubnetGroup:
        for group in self.groups:
            if group.name == name:
                return group
        raise ConfigurationError(f"Subnet group {name!r} is not declared in {self.name}")

    def groups_of(self, reachability: ReachabilityClass) -> list[SubnetGroup]:
        return [group for group in self.groups if group.reachability == reachability]

    def place(self, resource: str, group_name: str, allowed: Iterable[ReachabilityClass]) -> SubnetGroup:
        """Check that ``resource`` may live in ``group_name`` and return the group."""
        group = self.group(group_name)
        allowed = frozenset(allowed)
        if group.reachability not in allowed:
            classes = ", ".join(sorted(item.value for item in allowed))
            raise ConfigurationError(
                f"{resource} cannot be placed in {group.reachability.value} subnet group "
                f"{group_name!r}; expected one of: {classes}"
            )
        return group


@define(slots=True, frozen=True)
class Network:
    node_id: str
    topology: NetworkTopology

    @property
    def vpc_id(self) -> AttributeRef:
        return AttributeRef(self.node_id, "vpc_id")

    @property
    def cidr_block(self) -> AttributeRef:
        return AttributeRef(self.node_id, "cidr_block")

    @property
    def default_security_group_id(self) -> AttributeRef:
        return AttributeRef(self.node_id, "default_security_group_id")


class NetworkTopologyBuilder:
    """Partitions a CIDR block into per-AZ subnets for each requested group."""

    def __init__(self, graph: ResourceGraph) -> None:
        self.graph = graph

    def build(
        self,
        node_id: str,
        groups: Iterable[SubnetGroupSpec],
        cidr: str = constants.VPC_CIDR,
        max_azs: int = constants.MAX_AZS,
    ) -> Network:
        topology = self.allocate(node_id, groups, cidr=cidr, max_azs=max_azs)
        self.graph.add(node_id, topology)
        return Network(node_id=node_id, topology=topology)

    @staticmethod
    def allocate(
        name: str,
        groups: Iterable[SubnetGroupSpec],
        cidr: str = constants.VPC_CIDR,
        max_azs: int = constants.MAX_AZS,
    ) -> NetworkTopology:
        groups = list(groups)
        if not groups:
            raise ConfigurationError(f"{name} declares no subnet groups")
        if max_azs < 1:
            raise ConfigurationError(f"{name} needs at least one availability zone")
        names = [group.name for group in groups]
        duplicates = sorted({item for item in names if names.count(item) > 1})
        if duplicates:
            raise ConfigurationError(f"{name} declares subnet groups twice: {', '.join(duplicates)}")

        try:
            network = ipaddress.ip_network(cidr)
        except ValueError as exc:
            raise ConfigurationError(f"{name} has an invalid CIDR {cidr!r}: {exc}") from None

        has_public = any(group.reachability == ReachabilityClass.PUBLIC for group in groups)
        needs_nat = False
        allocated = []
        cursor = int(network.network_address)
        for spec in groups:
            nat = spec.nat if spec.nat is not None else spec.reachability == ReachabilityClass.PRIVATE_ROUTABLE
            if nat != (spec.reachability == ReachabilityClass.PRIVATE_ROUTABLE):
                raise ConfigurationError(
                    f"Subnet group {spec.name!r} is {spec.reachability.value}; only "
                    f"private-routable groups route through NAT"
                )
            if spec.reachability == ReachabilityClass.PRIVATE_ROUTABLE and not has_public:
                raise ConfigurationError(
                    f"Subnet group {spec.name!r} needs a public subnet group to host its NAT gateway"
                )
            if not network.prefixlen <= spec.cidr_mask <= 28:
                raise ConfigurationError(
                    f"Subnet group {spec.name!r} mask /{spec.cidr_mask} does not fit in {cidr}"
                )
            needs_nat = needs_nat or nat

            subnets = []
            size = 2 ** (network.max_prefixlen - spec.cidr_mask)
            for zone in range(max_azs):
                # Keep every subnet aligned to its own size.
                cursor = -(-cursor // size) * size
                if cursor + size - 1 > int(network.broadcast_address):
                    raise ConfigurationError(
                        f"{cidr} has no room left for subnet group {spec.name!r} (AZ {zone})"
                    )
                candidate = ipaddress.ip_network(f"{ipaddress.ip_address(cursor)}/{spec.cidr_mask}")
                subnets.append(Subnet(cidr=str(candidate), availability_zone=zone))
                cursor += size

            allocated.append(
                SubnetGroup(
                    name=spec.name,
                    reachability=spec.reachability,
                    cidr_mask=spec.cidr_mask,
                    subnets=tuple(subnets),
                    map_public_ip_on_launch=spec.reachability == ReachabilityClass.PUBLIC,
                    route={
                        ReachabilityClass.PUBLIC: "internet-gateway",
                        ReachabilityClass.PRIVATE_ROUTABLE: "nat-gateway",
                    }.get(spec.reachability),
                )
            )

        return NetworkTopology(
            name=name,
            cidr=str(network),
            max_azs=max_azs,
            nat_gateways=1 if needs_nat else 0,
            groups=tuple(allocated),
        )
