from dataclasses import dataclass, field
from typing import Any, Optional

import pytest

from common.errors import ProvisioningError
from composition.blueprint import Blueprint
from composition.deployer import RealizationContext, RealizedResource
from composition.graph import ResourceNode
from compute.containers import (
    ComputeUnit,
    ContainerSpec,
    HealthCheck,
    LaunchType,
    NetworkMode,
    PortMapping,
)
from data_tier.provisioner import CapacityBounds
from networking.topology import ReachabilityClass, SubnetGroupSpec


# ------------------- Fakes -------------------
@dataclass
class RecordingControlPlane:
    """Control plane double that records every call and can fail on demand."""

    fail_on: frozenset = frozenset()
    fail_delete_on: frozenset = frozenset()
    created: list = field(default_factory=list)
    deleted: list = field(default_factory=list)
    resolved: dict = field(default_factory=dict)

    def create(self, node: ResourceNode, context: RealizationContext) -> RealizedResource:
        self.created.append(node.node_id)
        if node.node_id in self.fail_on:
            raise ProvisioningError(node.node_id, "simulated outage")
        self.resolved[node.node_id] = context.resolve(node.spec)
        return RealizedResource(
            node_id=node.node_id,
            kind=node.kind,
            physical_id=f"phys-{node.node_id}",
            attributes={name: f"{node.node_id}.{name}" for name in type(node.spec).attributes},
        )

    def delete(self, resource: RealizedResource) -> None:
        self.deleted.append(resource.node_id)
        if resource.node_id in self.fail_delete_on:
            raise ProvisioningError(resource.node_id, "simulated outage")


# ------------------- Builders -------------------
PUBLIC_AND_ISOLATED = (
    SubnetGroupSpec("public", ReachabilityClass.PUBLIC),
    SubnetGroupSpec("isolated", ReachabilityClass.PRIVATE_ISOLATED),
)

DB_SECRET_FIELDS = {
    "WORDPRESS_DB_USER": "username",
    "WORDPRESS_DB_PASSWORD": "password",
    "WORDPRESS_DB_NAME": "dbname",
}


def blueprint(name: str = "test", groups=PUBLIC_AND_ISOLATED) -> Blueprint:
    return Blueprint(name, groups)


def fargate_unit(name: str = "AppTask", containers=None, volumes=(), **kwargs) -> ComputeUnit:
    options = dict(
        network_mode=NetworkMode.AWS_VPC,
        launch_type=LaunchType.FARGATE,
        cpu=256,
        memory_limit_mib=512,
    )
    options.update(kwargs)
    return ComputeUnit(
        name=name,
        containers=containers or [ContainerSpec("app", "wordpress:latest", port_mappings=[PortMapping(80)])],
        volumes=volumes,
        **options,
    )


def db_and_app_unit(name: str = "StackTask") -> ComputeUnit:
    """Two containers where ``app`` waits for ``db`` to be healthy."""
    return ComputeUnit(
        name=name,
        containers=[
            ContainerSpec(
                "db",
                "mariadb:11",
                port_mappings=[PortMapping(3306, 3306)],
                memory_limit_mib=1024,
                health_check=HealthCheck(("CMD-SHELL", "mariadb-admin ping")),
            ),
            ContainerSpec(
                "app",
                "wordpress:latest",
                port_mappings=[PortMapping(8080, 80)],
                memory_limit_mib=512,
                depends_on=["db"],
            ),
        ],
        network_mode=NetworkMode.BRIDGE,
        launch_type=LaunchType.EC2,
    )


def service_blueprint(with_logs: bool, name: str = "app") -> Blueprint:
    """One Fargate service whose task optionally ships its logs to ``Logs``."""
    declared = blueprint(name)
    cluster = declared.compute.cluster()
    log_group = declared.compute.log_group("Logs") if with_logs else None
    unit = fargate_unit("Task", log_group=log_group.log_group_name if log_group else None)
    declared.compute.service("Svc", declared.compute.task(unit), cluster, subnet_group="public")
    return declared


@dataclass(frozen=True)
class WordpressDeclaration:
    blueprint: Blueprint
    database: Any
    task: Any
    service: Any
    ingress: Optional[Any] = None


def wordpress_declaration(
    capacity: CapacityBounds = CapacityBounds(min_capacity=1, max_capacity=2),
    with_ingress: bool = True,
) -> WordpressDeclaration:
    """A Fargate WordPress unit reading database credentials and hostname."""
    declared = blueprint("scenario")
    database = declared.data_tier.database("Database", "isolated", capacity=capacity)
    container = ContainerSpec(
        "wordpress",
        "wordpress:php8.1-apache",
        environment={
            "WORDPRESS_DB_HOST": database.hostname,
            **declared.secrets.references(database.secret, DB_SECRET_FIELDS),
        },
        port_mappings=[PortMapping(80)],
    )
    cluster = declared.compute.cluster()
    task = declared.compute.task(fargate_unit("WordPressTask", containers=[container]))
    service = declared.compute.service("WordPressService", task, cluster, subnet_group="public")
    ingress = None
    if with_ingress:
        ingress = declared.ingress.load_balancer("Alb", service, 80, subnet_group="public")
    return WordpressDeclaration(declared, database, task, service, ingress)


# ------------------- Pytest Fixtures -------------------
@pytest.fixture
def control_plane() -> RecordingControlPlane:
    return RecordingControlPlane()


@pytest.fixture
def declaration() -> WordpressDeclaration:
    return wordpress_declaration()
