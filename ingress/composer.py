from enum import Enum
from typing import ClassVar, Optional

from attrs import define
from aws_lambda_powertools import Logger

import common.constants as constants
from common.errors import ConfigurationError
from composition.future import AttributeRef
from composition.graph import NodeKind, ResourceGraph
from compute.composer import Service
from compute.containers import ContainerSpec, NetworkMode
from networking.security import Boundary, Peer, PortRange, SecurityBoundaryManager
from networking.topology import Network, ReachabilityClass

logger = Logger(service=constants.SERVICE_NAME, level=constants.LOG_LEVEL)

LISTENER_PROTOCOLS = ("HTTP", "TCP")


class IngressForm(str, Enum):
    LOAD_BALANCER = "load-balancer"
    HOST = "host"


class HealthCheckMode(str, Enum):
    CONTAINER = "container"
    HTTP = "http"
    TCP = "tcp"


@define(slots=True, frozen=True)
class HealthCheckSpec:
    mode: HealthCheckMode
    port: int
    path: str = "/"
    healthy_codes: str = constants.HEALTHY_HTTP_CODES
    command: tuple = ()


@define(slots=True, frozen=True)
class IngressSpec:
    kind: ClassVar[NodeKind] = NodeKind.INGRESS
    attributes: ClassVar[tuple] = ("address", "dns_name")

    name: str
    form: IngressForm
    service_name: AttributeRef
    container_name: str
    container_port: int
    listener_port: int
    health_check: HealthCheckSpec
    protocol: str = "HTTP"
    internet_facing: bool = True
    open: bool = True
    subnet_group: Optional[str] = None
    vpc_id: Optional[AttributeRef] = None
    security_group_id: Optional[AttributeRef] = None
    host_dns_name: Optional[AttributeRef] = None


@define(slots=True, frozen=True)
class Ingress:
    node_id: str
    spec: IngressSpec
    service: Service
    boundary: Boundary

    @property
    def address(self) -> AttributeRef:
        return AttributeRef(self.node_id, "address")


def _exposing_container(service: Service, port: int, published: bool) -> ContainerSpec:
    for container in service.unit.containers:
        for mapping in container.port_mappings:
            exposed = mapping.published_port if published else mapping.container_port
            if exposed == port:
                return container
    raise ConfigurationError(f"{service.node_id} does not expose port {port}")


def default_health_check(
    container: ContainerSpec, port: int, protocol: str, prefer_container: bool = False
) -> HealthCheckSpec:
    """The container's own check when usable, otherwise a probe on ``port``."""
    if prefer_container and container.health_check is not None:
        return HealthCheckSpec(
            mode=HealthCheckMode.CONTAINER, port=port, command=container.health_check.command
        )
    if protocol.upper() == "HTTP":
        return HealthCheckSpec(mode=HealthCheckMode.HTTP, port=port)
    return HealthCheckSpec(mode=HealthCheckMode.TCP, port=port)


class TrafficIngressComposer:
    """Puts a service behind a public entry point."""

    def __init__(
        self, graph: ResourceGraph, network: Network, security: SecurityBoundaryManager
    ) -> None:
        self.graph = graph
        self.network = network
        self.security = security

    def load_balancer(
        self,
        node_id: str,
        service: Service,
        container_port: int,
        subnet_group: str,
        listener_port: int = constants.HTTP_PORT,
        protocol: str = "HTTP",
        internet_facing: bool = True,
        open: bool = True,
        health_check: Optional[HealthCheckSpec] = None,
    ) -> Ingress:
        if service.unit.network_mode != NetworkMode.AWS_VPC:
            raise ConfigurationError(
                f"{node_id}: load balancer targets must run in awsvpc mode"
            )
        if protocol.upper() not in LISTENER_PROTOCOLS:
            raise ConfigurationError(
                f"{node_id}: unsupported listener protocol {protocol!r}; use HTTP or TCP"
            )
        container = _exposing_container(service, container_port, published=False)
        allowed = (
            {ReachabilityClass.PUBLIC} if internet_facing else set(ReachabilityClass)
        )
        self.network.topology.place(node_id, subnet_group, allowed)

        boundary = self.security.boundary(
            f"{node_id}SecurityGroup", description=f"{node_id} load balancer"
        )
        if open:
            self.security.allow_ingress(
                boundary,
                Peer.any_ipv4(),
                PortRange.tcp(listener_port),
                f"Public traffic to {node_id}",
            )
        spec = IngressSpec(
            name=node_id,
            form=IngressForm.LOAD_BALANCER,
            service_name=AttributeRef(service.node_id, "service_name"),
            container_name=container.name,
            container_port=container_port,
            listener_port=listener_port,
            health_check=health_check
            or default_health_check(container, container_port, protocol, prefer_container=True),
            protocol=protocol.upper(),
            internet_facing=internet_facing,
            open=open,
            subnet_group=subnet_group,
            vpc_id=self.network.vpc_id,
            security_group_id=boundary.security_group_id,
        )
        self.graph.add(node_id, spec)
        logger.debug("Declared load balancer", node_id=node_id, service=service.node_id)
        return Ingress(node_id, spec, service, boundary)

    def host(
        self,
        node_id: str,
        service: Service,
        listener_port: int = constants.HTTP_PORT,
        open: bool = True,
    ) -> Ingress:
        """Publish the container host itself; its public DNS name is the address."""
        if service.host is None:
            raise ConfigurationError(f"{node_id}: {service.node_id} does not run on a host")
        host = service.host
        self.network.topology.place(node_id, host.spec.subnet_group, {ReachabilityClass.PUBLIC})
        container = _exposing_container(service, listener_port, published=True)
        container_port = next(
            mapping.container_port
            for mapping in container.port_mappings
            if mapping.published_port == listener_port
        )
        if open:
            self.security.allow_ingress(
                host.boundary,
                Peer.any_ipv4(),
                PortRange.tcp(listener_port),
                f"Public traffic to {node_id}",
            )
        spec = IngressSpec(
            name=node_id,
            form=IngressForm.HOST,
            service_name=AttributeRef(service.node_id, "service_name"),
            container_name=container.name,
            container_port=container_port,
            listener_port=listener_port,
            health_check=default_health_check(
                container, container_port, "HTTP", prefer_container=True
            ),
            open=open,
            subnet_group=host.spec.subnet_group,
            security_group_id=host.boundary.security_group_id,
            host_dns_name=host.public_dns_name,
        )
        self.graph.add(node_id, spec)
        return Ingress(node_id, spec, service, host.boundary)
