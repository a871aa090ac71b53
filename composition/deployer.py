from enum import Enum
from typing import Any, Mapping, Optional, Protocol, Sequence

from attrs import define, field
from aws_lambda_powertools import Logger

import common.constants as constants
from common.errors import CompositionError, ProvisioningError, ResourceReferenceError
from composition.future import AttributeRef, resolve_references
from composition.graph import NodeKind, ResourceGraph, ResourceNode

logger = Logger(service=constants.SERVICE_NAME, level=constants.LOG_LEVEL)


class NodeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    REUSED = "reused"
    FAILED = "failed"
    NOT_ATTEMPTED = "not-attempted"


@define(slots=True, frozen=True)
class RealizedResource:
    node_id: str
    kind: NodeKind
    physical_id: str
    attributes: Mapping[str, Any] = field(factory=dict)


class RealizationContext:
    """Attribute values of the nodes realized so far in one deployment."""

    def __init__(self, graph: ResourceGraph) -> None:
        self.graph = graph
        self._realized: dict[str, RealizedResource] = {}

    def record(self, resource: RealizedResource) -> None:
        self._realized[resource.node_id] = resource

    def attribute(self, ref: AttributeRef) -> Any:
        resource = self._realized.get(ref.node_id)
        if resource is None:
            raise ResourceReferenceError(f"{ref} is not available: {ref.node_id} is not realized yet")
        if ref.attribute not in resource.attributes:
            raise ResourceReferenceError(f"{ref.node_id} did not produce attribute {ref.attribute!r}")
        return resource.attributes[ref.attribute]

    def resolve(self, value: Any) -> Any:
        return resolve_references(value, self.attribute)


class ControlPlane(Protocol):
    def create(self, node: ResourceNode, context: RealizationContext) -> RealizedResource:
        """Create or update the resource for ``node``; raise ProvisioningError on failure."""

    def delete(self, resource: RealizedResource) -> None:
        """Release ``resource``; deleting something already gone is not an error."""


@define(slots=True)
class DeploymentReport:
    topology: str
    order: tuple
    statuses: dict = field(factory=dict)
    realized: dict = field(factory=dict)
    failed_node: Optional[str] = None
    error: Optional[CompositionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def nodes_with(self, status: NodeStatus) -> list[str]:
        return [node_id for node_id in self.order if self.statuses.get(node_id) == status]

    @property
    def resources(self) -> list[RealizedResource]:
        """Realized resources in creation order."""
        return list(self.realized.values())

    @property
    def outputs(self) -> dict[str, Any]:
        return {
            resource.node_id: resource.attributes.get("address")
            for resource in self.realized.values()
            if resource.kind == NodeKind.INGRESS
        }

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error


@define(slots=True)
class DestroyReport:
    released: list = field(factory=list)
    remaining: list = field(factory=list)
    error: Optional[ProvisioningError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error


class Deployer:
    """Walks a resource graph in dependency order through a control plane."""

    def __init__(self, control_plane: ControlPlane) -> None:
        self.control_plane = control_plane

    def deploy(
        self, graph: ResourceGraph, resume_from: Optional[DeploymentReport] = None
    ) -> DeploymentReport:
        # Configuration and reference errors surface here, before any create call.
        order = graph.realization_order()
        report = DeploymentReport(topology=graph.name, order=order)
        context = RealizationContext(graph)
        previous = resume_from.realized if resume_from else {}

        logger.info("Deploying topology", topology=graph.name, nodes=len(order))
        for index, node_id in enumerate(order):
            if node_id in previous:
                resource = previous[node_id]
                context.record(resource)
                report.realized[node_id] = resource
                report.statuses[node_id] = NodeStatus.REUSED
                continue

            node = graph.node(node_id)
            try:
                resource = self.control_plane.create(node, context)
            except CompositionError as error:
                logger.exception("Provisioning failed", topology=graph.name, node_id=node_id)
                report.failed_node = node_id
                report.error = error
                report.statuses[node_id] = NodeStatus.FAILED
                for skipped in order[index + 1:]:
                    report.statuses[skipped] = NodeStatus.NOT_ATTEMPTED
                return report

            context.record(resource)
            report.realized[node_id] = resource
            report.statuses[node_id] = NodeStatus.SUCCEEDED
            logger.debug("Realized node", node_id=node_id, kind=node.kind.value)

        logger.info("Topology deployed", topology=graph.name, outputs=report.outputs)
        return report

    def destroy(self, resources: Sequence[RealizedResource]) -> DestroyReport:
        """Release ``resources`` (given in creation order) in reverse order."""
        report = DestroyReport()
        pending = list(reversed(resources))
        while pending:
            resource = pending[0]
            try:
                self.control_plane.delete(resource)
            except ProvisioningError as error:
                logger.exception("Release failed", node_id=resource.node_id)
                report.error = error
                report.remaining = [item.node_id for item in pending]
                return report
            report.released.append(resource.node_id)
            pending.pop(0)
        logger.info("Resources released", count=len(report.released))
        return report
