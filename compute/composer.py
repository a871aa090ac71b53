from typing import ClassVar, Optional

from attrs import define, field
from aws_lambda_powertools import Logger

import common.constants as constants
from common.errors import ConfigurationError
from composition.future import AttributeRef
from composition.graph import NodeKind, ResourceGraph
from compute.containers import ComputeUnit, LaunchType, NetworkMode
from compute.readiness import UnitReadiness
from data_tier.provisioner import TeardownPolicy
from networking.security import Boundary, SecurityBoundaryManager
from networking.topology import Network, ReachabilityClass

logger = Logger(service=constants.SERVICE_NAME, level=constants.LOG_LEVEL)

LOG_RETENTION_DAYS = (1, 3, 5, 7, 14, 30, 90, 180, 365)


@define(slots=True, frozen=True)
class ClusterSpec:
    kind: ClassVar[NodeKind] = NodeKind.CLUSTER
    attributes: ClassVar[tuple] = ("cluster_name", "cluster_arn")

    name: str
    vpc_id: AttributeRef


@define(slots=True, frozen=True)
class LogGroupSpec:
    kind: ClassVar[NodeKind] = NodeKind.LOG_GROUP
    attributes: ClassVar[tuple] = ("log_group_name", "log_group_arn")

    name: str
    log_group_name: Optional[str] = None
    retention_days: int = 1
    teardown: TeardownPolicy = TeardownPolicy.DESTROY


@define(slots=True, frozen=True)
class HostSpec:
    """A container host registered with a cluster (EC2 launch type only)."""

    kind: ClassVar[NodeKind] = NodeKind.HOST
    attributes: ClassVar[tuple] = ("instance_id", "private_ip", "public_dns_name")

    name: str
    subnet_group: str
    vpc_id: AttributeRef
    security_group_id: AttributeRef
    cluster_name: AttributeRef
    instance_type: str = constants.ECS_INSTANCE_TYPE
    managed_policies: tuple = (constants.ECS_INSTANCE_MANAGED_POLICY,)
    log_actions: tuple = constants.LOG_SHIPPING_ACTIONS


@define(slots=True, frozen=True)
class ServiceSpec:
    kind: ClassVar[NodeKind] = NodeKind.SERVICE
    attributes: ClassVar[tuple] = ("service_name", "service_arn")

    name: str
    cluster_arn: AttributeRef
    task_definition_arn: AttributeRef
    launch_type: LaunchType
    desired_count: int = 1
    subnet_group: Optional[str] = None
    security_group_id: Optional[AttributeRef] = None
    assign_public_ip: bool = False
    host_instance_id: Optional[AttributeRef] = None


@define(slots=True, frozen=True)
class Cluster:
    node_id: str
    spec: ClusterSpec

    @property
    def cluster_name(self) -> AttributeRef:
        return AttributeRef(self.node_id, "cluster_name")

    @property
    def cluster_arn(self) -> AttributeRef:
        return AttributeRef(self.node_id, "cluster_arn")


@define(slots=True, frozen=True)
class LogGroup:
    node_id: str
    spec: LogGroupSpec

    @property
    def log_group_name(self) -> AttributeRef:
        return AttributeRef(self.node_id, "log_group_name")


@define(slots=True, frozen=True)
class Host:
    node_id: str
    spec: HostSpec
    boundary: Boundary

    @property
    def instance_id(self) -> AttributeRef:
        return AttributeRef(self.node_id, "instance_id")

    @property
    def private_ip(self) -> AttributeRef:
        return AttributeRef(self.node_id, "private_ip")

    @property
    def public_dns_name(self) -> AttributeRef:
        return AttributeRef(self.node_id, "public_dns_name")


@define(slots=True, frozen=True)
class Task:
    node_id: str
    unit: ComputeUnit

    @property
    def task_definition_arn(self) -> AttributeRef:
        return AttributeRef(self.node_id, "task_definition_arn")


@define(slots=True, frozen=True)
class Service:
    node_id: str
    spec: ServiceSpec
    task: Task
    # Where the service's traffic comes from: its own boundary (awsvpc) or its host's.
    boundary: Boundary
    host: Optional[Host] = None

    @property
    def unit(self) -> ComputeUnit:
        return self.task.unit

    def readiness(self) -> UnitReadiness:
        return UnitReadiness(self.task.unit)


class ComputeTierComposer:
    """Declares clusters, task definitions, services and container hosts."""

    def __init__(
        self, graph: ResourceGraph, network: Network, security: SecurityBoundaryManager
    ) -> None:
        self.graph = graph
        self.network = network
        self.security = security

    def cluster(self, node_id: str = "Cluster") -> Cluster:
        spec = ClusterSpec(name=node_id, vpc_id=self.network.vpc_id)
        self.graph.add(node_id, spec)
        return Cluster(node_id, spec)

    def log_group(
        self,
        node_id: str,
        log_group_name: Optional[str] = None,
        retention_days: int = 1,
        teardown: TeardownPolicy = TeardownPolicy.DESTROY,
    ) -> LogGroup:
        if retention_days not in LOG_RETENTION_DAYS:
            raise ConfigurationError(
                f"{node_id}: log retention of {retention_days} days is not supported; "
                f"use one of {', '.join(str(days) for days in LOG_RETENTION_DAYS)}"
            )
        spec = LogGroupSpec(
            name=node_id,
            log_group_name=log_group_name,
            retention_days=retention_days,
            teardown=TeardownPolicy(teardown),
        )
        self.graph.add(node_id, spec)
        return LogGroup(node_id, spec)

    def host(
        self,
        node_id: str,
        cluster: Cluster,
        subnet_group: str,
        instance_type: str = constants.ECS_INSTANCE_TYPE,
        boundary: Optional[Boundary] = None,
    ) -> Host:
        self.network.topology.place(node_id, subnet_group, ReachabilityClass)
        boundary = boundary or self.security.boundary(
            f"{node_id}SecurityGroup", description=f"{node_id} container host"
        )
        spec = HostSpec(
            name=node_id,
            subnet_group=subnet_group,
            vpc_id=self.network.vpc_id,
            security_group_id=boundary.security_group_id,
            cluster_name=cluster.cluster_name,
            instance_type=instance_type,
        )
        self.graph.add(node_id, spec)
        return Host(node_id, spec, boundary)

    def task(self, unit: ComputeUnit, node_id: Optional[str] = None) -> Task:
        """Validate ``unit`` and declare its task definition."""
        unit.validate()
        node_id = node_id or unit.name
        self.graph.add(node_id, unit)
        logger.debug(
            "Declared task", node_id=node_id, containers=list(unit.start_order())
        )
        return Task(node_id, unit)

    def service(
        self,
        node_id: str,
        task: Task,
        cluster: Cluster,
        desired_count: int = 1,
        subnet_group: Optional[str] = None,
        host: Optional[Host] = None,
        boundary: Optional[Boundary] = None,
    ) -> Service:
        if desired_count < 0:
            raise ConfigurationError(f"{node_id}: desired count cannot be negative")
        unit = task.unit

        if unit.launch_type == LaunchType.EC2:
            if host is None:
                raise ConfigurationError(f"{node_id}: EC2 services need a container host")
            if unit.network_mode == NetworkMode.BRIDGE:
                spec = ServiceSpec(
                    name=node_id,
                    cluster_arn=cluster.cluster_arn,
                    task_definition_arn=task.task_definition_arn,
                    launch_type=unit.launch_type,
                    desired_count=desired_count,
                    host_instance_id=host.instance_id,
                )
                self.graph.add(node_id, spec)
                return Service(node_id, spec, task, host.boundary, host)

        if subnet_group is None:
            raise ConfigurationError(f"{node_id}: awsvpc services need a subnet group")
        group = self.network.topology.place(node_id, subnet_group, ReachabilityClass)
        boundary = boundary or self.security.boundary(
            f"{node_id}SecurityGroup", description=f"{node_id} tasks"
        )
        spec = ServiceSpec(
            name=node_id,
            cluster_arn=cluster.cluster_arn,
            task_definition_arn=task.task_definition_arn,
            launch_type=unit.launch_type,
            desired_count=desired_count,
            subnet_group=subnet_group,
            security_group_id=boundary.security_group_id,
            # Tasks in a public group have no NAT; they need their own address to pull images.
            assign_public_ip=group.reachability == ReachabilityClass.PUBLIC,
            host_instance_id=host.instance_id if host else None,
        )
        self.graph.add(node_id, spec)
        return Service(node_id, spec, task, boundary, host)
