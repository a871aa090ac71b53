from typing import Iterable

from aws_lambda_powertools import Logger

import common.constants as constants
from composition.graph import ResourceGraph
from compute.composer import ComputeTierComposer
from data_tier.provisioner import DataTierProvisioner
from data_tier.secrets import SecretReferenceResolver
from ingress.composer import TrafficIngressComposer
from networking.security import SecurityBoundaryManager
from networking.topology import NetworkTopologyBuilder, SubnetGroupSpec
from wiring.reachability import ReachabilityWiring

logger = Logger(service=constants.SERVICE_NAME, level=constants.LOG_LEVEL)


class Blueprint:
    """Declarative builder for one deployable topology.

    The network is laid out up front; every other component hangs off it and
    writes into the same resource graph. ``build`` runs reachability wiring as
    the last stage and checks the graph for dangling references and cycles,
    so a blueprint that builds is one the deployer can walk.

    Example::

        blueprint = Blueprint("demo", [SubnetGroupSpec("public", "public")])
        cluster = blueprint.compute.cluster()
        graph = blueprint.build()
    """

    def __init__(
        self,
        name: str,
        groups: Iterable[SubnetGroupSpec],
        cidr: str = constants.VPC_CIDR,
        max_azs: int = constants.MAX_AZS,
        network_id: str = "Vpc",
    ) -> None:
        self.graph = ResourceGraph(name)
        self.network = NetworkTopologyBuilder(self.graph).build(
            network_id, groups, cidr=cidr, max_azs=max_azs
        )
        self.security = SecurityBoundaryManager(self.graph, self.network)
        self.data_tier = DataTierProvisioner(self.graph, self.network, self.security)
        self.secrets = SecretReferenceResolver(self.graph)
        self.compute = ComputeTierComposer(self.graph, self.network, self.security)
        self.ingress = TrafficIngressComposer(self.graph, self.network, self.security)
        self.wiring = ReachabilityWiring(self.graph, self.security)
        self._built = False

    @property
    def name(self) -> str:
        return self.graph.name

    def build(self) -> ResourceGraph:
        if not self._built:
            self.wiring.apply()
            self._built = True
        order = self.graph.realization_order()
        logger.debug("Blueprint built", topology=self.name, nodes=len(order))
        return self.graph
