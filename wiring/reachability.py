"""Network grants derived from what each consumer references.

Nobody declares "the service may talk to the database". The grant follows
from the service's task reading the database hostname or one of its secret
fields, from a mounted file system volume, or from an ingress targeting the
service. Grants are graph nodes of their own so a producer's boundary never
has to reference its consumers, and each grant waits for every other node.
"""
from typing import ClassVar, Iterator, Optional

from attrs import define, field
from aws_lambda_powertools import Logger

import common.constants as constants
from composition.future import AttributeRef, SecretReference, walk_references
from composition.graph import NodeKind, ResourceGraph, ResourceNode
from networking.security import SecurityBoundaryManager

logger = Logger(service=constants.SERVICE_NAME, level=constants.LOG_LEVEL)


@define(slots=True, frozen=True)
class ReachabilityGrant:
    kind: ClassVar[NodeKind] = NodeKind.GRANT
    attributes: ClassVar[tuple] = ("rule_id",)

    consumer: str
    producer: str
    port: int
    consumer_group_id: AttributeRef = field(eq=False)
    producer_group_id: AttributeRef = field(eq=False)
    description: str = field(default="", eq=False)

    @property
    def node_id(self) -> str:
        return f"Grant{self.consumer}To{self.producer}Port{self.port}"


class ReachabilityWiring:
    def __init__(self, graph: ResourceGraph, security: SecurityBoundaryManager) -> None:
        self.graph = graph
        self.security = security

    def derive(self) -> list[ReachabilityGrant]:
        """Every distinct (consumer, producer, port) grant, in discovery order."""
        grants: list[ReachabilityGrant] = []
        for node in self.graph:
            if node.kind == NodeKind.SERVICE:
                found = self._service_grants(node)
            elif node.kind == NodeKind.INGRESS:
                found = self._ingress_grants(node)
            else:
                continue
            for grant in found:
                if grant.consumer != grant.producer and grant not in grants:
                    grants.append(grant)
        return grants

    def apply(self) -> list[ReachabilityGrant]:
        """Add the derived grants to the graph; grants already present are skipped."""
        grants = self.derive()
        others = [node.node_id for node in self.graph if node.kind != NodeKind.GRANT]
        added = 0
        for grant in grants:
            if grant.node_id in self.graph:
                continue
            self.security.require(grant.consumer)
            self.security.require(grant.producer)
            self.graph.add(grant.node_id, grant, depends_on=others)
            added += 1
        logger.info("Applied reachability grants", derived=len(grants), added=added)
        return grants

    def _grant(self, consumer: AttributeRef, producer: AttributeRef, port: int, reason: str):
        return ReachabilityGrant(
            consumer=consumer.node_id,
            producer=producer.node_id,
            port=port,
            consumer_group_id=consumer,
            producer_group_id=producer,
            description=reason,
        )

    def _service_boundary(self, service: ResourceNode) -> Optional[AttributeRef]:
        spec = service.spec
        if spec.security_group_id is not None:
            return spec.security_group_id
        if spec.host_instance_id is not None:
            return self.graph.node(spec.host_instance_id.node_id).spec.security_group_id
        return None

    def _service_grants(self, service: ResourceNode) -> Iterator[ReachabilityGrant]:
        consumer = self._service_boundary(service)
        if consumer is None:
            return
        unit = self.graph.node(service.spec.task_definition_arn.node_id).spec
        for reference in walk_references(unit):
            producer = self._producer_of(reference)
            if producer is None:
                continue
            yield self._grant(
                consumer,
                producer.spec.security_group_id,
                producer.spec.port,
                f"{service.node_id} to {producer.node_id}",
            )

    def _producer_of(self, reference) -> Optional[ResourceNode]:
        """The data tier resource a reference ultimately points at, if any."""
        if isinstance(reference, SecretReference):
            secret = self.graph.node(reference.node_id)
            return self._producer_of(secret.spec.owner)
        node = self.graph.node(reference.node_id)
        if node.kind == NodeKind.ACCESS_POINT:
            return self._producer_of(node.spec.file_system_id)
        if node.kind in (NodeKind.DATABASE, NodeKind.FILE_SYSTEM):
            return node
        if node.kind == NodeKind.SECRET:
            return self._producer_of(node.spec.owner)
        return None

    def _ingress_grants(self, ingress: ResourceNode) -> Iterator[ReachabilityGrant]:
        spec = ingress.spec
        service = self.graph.node(spec.service_name.node_id)
        target = self._service_boundary(service)
        if spec.security_group_id is None or target is None:
            return
        yield self._grant(
            spec.security_group_id,
            target,
            spec.container_port,
            f"{ingress.node_id} to {service.node_id}",
        )
