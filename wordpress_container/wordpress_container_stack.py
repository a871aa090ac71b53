from aws_cdk import Stack
from constructs import Construct

from common.stack_context import StackContext
from composition.deployer import Deployer, DeploymentReport
from control_plane.cdk import CdkControlPlane
from topologies import registry


class WordpressContainerStack(Stack):

    def __init__(self, scope: Construct, construct_id: str, topology: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.context = StackContext(scope=self, topology=topology)
        self.aws_region = self.context.aws_region

        # Declare the topology; configuration errors surface before any construct exists
        self.blueprint = registry.blueprint(topology)
        self.graph = self.blueprint.build()

        # Render every node in dependency order
        self.control_plane = CdkControlPlane(self, self.context)
        self.report: DeploymentReport = Deployer(self.control_plane).deploy(self.graph)
        self.report.raise_for_failure()
