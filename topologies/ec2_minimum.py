"""WordPress and MariaDB side by side on a single EC2 container host.

Public subnets only. The task runs in bridge mode, MariaDB is published on the
host and WordPress reaches it through the host's private address. The host's
public DNS name is the entry point.
"""
import common.constants as constants
from composition.blueprint import Blueprint
from compute.containers import (
    ComputeUnit,
    ContainerSpec,
    HealthCheck,
    LaunchType,
    NetworkMode,
    PortMapping,
)
from networking.security import Peer, PortRange
from networking.topology import ReachabilityClass, SubnetGroupSpec

NAME = "ec2-minimum"

MARIADB_USER = "bn_wordpress"
MARIADB_DATABASE = "bitnami_wordpress"


def build() -> Blueprint:
    blueprint = Blueprint(NAME, [SubnetGroupSpec("public", ReachabilityClass.PUBLIC)])
    security = blueprint.security
    compute = blueprint.compute

    security.allow_ingress(
        security.default_boundary(),
        Peer.any_ipv4(),
        PortRange.tcp(constants.HTTP_PORT),
        "HTTP from anywhere",
    )

    cluster = compute.cluster("EcsCluster")
    host = compute.host("Ec2Instance", cluster, "public")
    security.allow_ingress(
        host.boundary,
        Peer.network(blueprint.network),
        PortRange.tcp(constants.MYSQL_PORT),
        "MariaDB published on the host",
    )
    log_group = compute.log_group(
        "LogGroup", log_group_name="/aws/ecs/ex-ecs-wordpress", retention_days=1
    )

    mariadb = ContainerSpec(
        name="MariaDb",
        image=constants.BITNAMI_MARIADB_IMAGE,
        environment={
            "ALLOW_EMPTY_PASSWORD": "yes",
            "MARIADB_USER": MARIADB_USER,
            "MARIADB_DATABASE": MARIADB_DATABASE,
        },
        port_mappings=[PortMapping(constants.MYSQL_PORT, constants.MYSQL_PORT)],
        memory_limit_mib=1024,
        health_check=HealthCheck(("CMD-SHELL", "mariadb-admin ping")),
    )
    wordpress = ContainerSpec(
        name="Wordpress",
        image=constants.BITNAMI_WORDPRESS_IMAGE,
        environment={
            "ALLOW_EMPTY_PASSWORD": "yes",
            "WORDPRESS_DATABASE_HOST": host.private_ip,
            "WORDPRESS_DATABASE_PORT_NUMBER": str(constants.MYSQL_PORT),
            "WORDPRESS_DATABASE_USER": MARIADB_USER,
            "WORDPRESS_DATABASE_NAME": MARIADB_DATABASE,
        },
        port_mappings=[PortMapping(constants.WORDPRESS_BITNAMI_PORT, constants.HTTP_PORT)],
        memory_limit_mib=512,
        health_check=HealthCheck(("CMD-SHELL", "pgrep -c httpd")),
        depends_on=["MariaDb"],
    )
    task = compute.task(
        ComputeUnit(
            name="TaskDefinition",
            containers=[mariadb, wordpress],
            network_mode=NetworkMode.BRIDGE,
            launch_type=LaunchType.EC2,
            log_group=log_group.log_group_name,
        )
    )
    service = compute.service("EcsService", task, cluster, host=host)
    blueprint.ingress.host("PublicDomainName", service)
    return blueprint
