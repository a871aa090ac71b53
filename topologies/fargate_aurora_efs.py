"""WordPress on Fargate with Aurora Serverless v2 and wp-content on EFS."""
from datetime import timedelta

import common.constants as constants
from composition.blueprint import Blueprint
from compute.composer import Service
from compute.containers import (
    ComputeUnit,
    ContainerSpec,
    EfsVolume,
    LaunchType,
    MountPoint,
    NetworkMode,
    PortMapping,
)
from data_tier.provisioner import CapacityBounds
from ingress.composer import Ingress
from networking.topology import ReachabilityClass, SubnetGroupSpec

NAME = "fargate-aurora-efs"

# username/password/dbname come from the generated credential secret
SECRET_ENVIRONMENT = {
    "WORDPRESS_DB_USER": "username",
    "WORDPRESS_DB_PASSWORD": "password",
    "WORDPRESS_DB_NAME": "dbname",
}

CAPACITY = CapacityBounds(min_capacity=0, max_capacity=2, auto_pause=timedelta(minutes=5))


def compose_wordpress(
    blueprint: Blueprint,
    service_group: str,
    ingress_group: str,
    data_group: str,
) -> tuple[Service, Ingress]:
    """Aurora, EFS, the WordPress task and its load balancer."""
    data_tier = blueprint.data_tier
    compute = blueprint.compute

    database = data_tier.database("AuroraCluster", data_group, capacity=CAPACITY)
    file_system = data_tier.file_system("Efs", data_group)
    access_point = data_tier.access_point(file_system, "EfsAccessPoint")

    cluster = compute.cluster("EcsCluster")
    log_group = compute.log_group("LogGroup", retention_days=1)

    wordpress = ContainerSpec(
        name="WordPressContainer",
        image=constants.WORDPRESS_IMAGE,
        environment={
            "WORDPRESS_DB_HOST": database.hostname,
            **blueprint.secrets.references(database.secret, SECRET_ENVIRONMENT),
        },
        port_mappings=[PortMapping(constants.HTTP_PORT, constants.HTTP_PORT)],
        mount_points=[MountPoint(constants.WP_CONTENT_VOLUME, constants.WP_CONTENT_PATH)],
    )
    task = compute.task(
        ComputeUnit(
            name="WordPressTask",
            containers=[wordpress],
            volumes=[
                EfsVolume(
                    name=constants.WP_CONTENT_VOLUME,
                    file_system_id=file_system.file_system_id,
                    access_point_id=access_point.access_point_id,
                )
            ],
            network_mode=NetworkMode.AWS_VPC,
            launch_type=LaunchType.FARGATE,
            cpu=256,
            memory_limit_mib=512,
            log_group=log_group.log_group_name,
        )
    )
    service = compute.service("FargateService", task, cluster, subnet_group=service_group)
    ingress = blueprint.ingress.load_balancer(
        "Alb", service, container_port=constants.HTTP_PORT, subnet_group=ingress_group
    )
    return service, ingress


def build() -> Blueprint:
    blueprint = Blueprint(
        NAME,
        [
            SubnetGroupSpec("container", ReachabilityClass.PUBLIC),
            SubnetGroupSpec("aurora", ReachabilityClass.PRIVATE_ISOLATED),
        ],
    )
    compose_wordpress(
        blueprint, service_group="container", ingress_group="container", data_group="aurora"
    )
    return blueprint
