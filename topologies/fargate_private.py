"""The Fargate/Aurora/EFS stack with tasks behind NAT in private subnets."""
import common.constants as constants
from composition.blueprint import Blueprint
from networking.topology import ReachabilityClass, SubnetGroupSpec
from topologies.fargate_aurora_efs import compose_wordpress

NAME = "fargate-private"


def build() -> Blueprint:
    blueprint = Blueprint(
        NAME,
        [
            SubnetGroupSpec("ingress", ReachabilityClass.PUBLIC),
            SubnetGroupSpec("application", ReachabilityClass.PRIVATE_ROUTABLE),
            SubnetGroupSpec("data", ReachabilityClass.PRIVATE_ISOLATED),
        ],
        cidr=constants.PRIVATE_VPC_CIDR,
    )
    compose_wordpress(
        blueprint, service_group="application", ingress_group="ingress", data_group="data"
    )
    return blueprint
