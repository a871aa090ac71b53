from dataclasses import dataclass

import pytest

from common.errors import ConfigurationError, ProvisioningError, ResourceReferenceError
from composition.deployer import Deployer, NodeStatus
from composition.future import AttributeRef, SecretReference
from compute.readiness import ContainerState
from data_tier.provisioner import CapacityBounds
from composition_test_helpers import (
    RecordingControlPlane,
    WordpressDeclaration,
    blueprint,
    control_plane,
    db_and_app_unit,
    declaration,
    wordpress_declaration,
)


# ------------------- Scenario A: data tier feeding a compute unit -------------------
def test_database_credentials_reach_the_container(
    declaration: WordpressDeclaration, control_plane: RecordingControlPlane
):
    report = Deployer(control_plane).deploy(declaration.blueprint.build())

    assert report.ok
    order = report.order
    assert (
        order.index("Vpc")
        < order.index("Database")
        < order.index("DatabaseSecret")
        < order.index("WordPressTask")
    )

    environment = control_plane.resolved["WordPressTask"].containers[0].environment
    secrets = {name: value for name, value in environment.items() if isinstance(value, SecretReference)}
    assert {name: reference.field for name, reference in secrets.items()} == {
        "WORDPRESS_DB_USER": "username",
        "WORDPRESS_DB_PASSWORD": "password",
        "WORDPRESS_DB_NAME": "dbname",
    }
    assert environment["WORDPRESS_DB_HOST"] == "Database.hostname"


def test_successful_deploy_reports_every_node(
    declaration: WordpressDeclaration, control_plane: RecordingControlPlane
):
    report = Deployer(control_plane).deploy(declaration.blueprint.build())

    assert report.nodes_with(NodeStatus.SUCCEEDED) == list(report.order)
    assert control_plane.created == list(report.order)
    assert report.outputs == {"Alb": "Alb.address"}
    report.raise_for_failure()


# ------------------- Scenario B: start ordering inside a unit -------------------
def test_realized_service_tracks_container_readiness(control_plane: RecordingControlPlane):
    declared = blueprint()
    cluster = declared.compute.cluster()
    host = declared.compute.host("Host", cluster, "public")
    service = declared.compute.service(
        "Service", declared.compute.task(db_and_app_unit()), cluster, host=host
    )
    assert Deployer(control_plane).deploy(declared.build()).ok

    readiness = service.readiness()
    readiness.report("app", ContainerState.HEALTHY)
    assert not readiness.is_ready("app")
    readiness.report("db", ContainerState.HEALTHY)
    assert readiness.is_ready("app")


# ------------------- Scenario C: inverted capacity -------------------
def test_inverted_capacity_fails_before_provisioning(control_plane: RecordingControlPlane):
    with pytest.raises(ConfigurationError, match="exceeds max capacity"):
        declared = wordpress_declaration(capacity=CapacityBounds(min_capacity=2, max_capacity=1))
        Deployer(control_plane).deploy(declared.blueprint.build())

    assert control_plane.created == []


# ------------------- Scenario D: destroy in reverse -------------------
def test_destroy_releases_in_reverse_creation_order(
    declaration: WordpressDeclaration, control_plane: RecordingControlPlane
):
    deployer = Deployer(control_plane)
    report = deployer.deploy(declaration.blueprint.build())
    released = deployer.destroy(report.resources)

    assert released.ok
    assert control_plane.deleted == list(reversed(control_plane.created))
    assert released.released == control_plane.deleted


def test_destroy_stops_at_the_first_failure(
    declaration: WordpressDeclaration,
):
    control_plane = RecordingControlPlane(fail_delete_on=frozenset({"WordPressService"}))
    deployer = Deployer(control_plane)
    report = deployer.deploy(declaration.blueprint.build())
    released = deployer.destroy(report.resources)

    assert not released.ok
    assert released.remaining[0] == "WordPressService"
    assert released.remaining[-1] == "Vpc"
    with pytest.raises(ProvisioningError):
        released.raise_for_failure()


# ------------------- Failure and resume -------------------
def test_failure_stops_the_walk_and_reports_the_rest(declaration: WordpressDeclaration):
    control_plane = RecordingControlPlane(fail_on=frozenset({"DatabaseSecret"}))
    report = Deployer(control_plane).deploy(declaration.blueprint.build())
    failed_at = report.order.index("DatabaseSecret")

    assert not report.ok
    assert report.failed_node == "DatabaseSecret"
    assert report.nodes_with(NodeStatus.SUCCEEDED) == list(report.order[:failed_at])
    assert report.nodes_with(NodeStatus.FAILED) == ["DatabaseSecret"]
    assert report.nodes_with(NodeStatus.NOT_ATTEMPTED) == list(report.order[failed_at + 1:])
    assert control_plane.created[-1] == "DatabaseSecret"
    with pytest.raises(ProvisioningError, match="DatabaseSecret: simulated outage"):
        report.raise_for_failure()


def test_resume_reuses_realized_nodes(declaration: WordpressDeclaration):
    graph = declaration.blueprint.build()
    failed = Deployer(RecordingControlPlane(fail_on=frozenset({"DatabaseSecret"}))).deploy(graph)

    retry = RecordingControlPlane()
    resumed = Deployer(retry).deploy(graph, resume_from=failed)
    failed_at = resumed.order.index("DatabaseSecret")

    assert resumed.ok
    assert resumed.nodes_with(NodeStatus.REUSED) == list(resumed.order[:failed_at])
    assert retry.created == list(resumed.order[failed_at:])
    assert [resource.node_id for resource in resumed.resources] == list(resumed.order)


@dataclass
class EarlyReadingControlPlane(RecordingControlPlane):
    """Reads the load balancer address while realizing ``reader``."""

    reader: str = "DatabaseSecret"

    def create(self, node, context):
        if node.node_id == self.reader:
            context.attribute(AttributeRef("Alb", "address"))
        return super().create(node, context)


def test_reference_errors_during_realization_are_reported(declaration: WordpressDeclaration):
    control_plane = EarlyReadingControlPlane()
    report = Deployer(control_plane).deploy(declaration.blueprint.build())
    failed_at = report.order.index("DatabaseSecret")

    assert report.failed_node == "DatabaseSecret"
    assert isinstance(report.error, ResourceReferenceError)
    assert report.nodes_with(NodeStatus.SUCCEEDED) == list(report.order[:failed_at])
    assert report.nodes_with(NodeStatus.NOT_ATTEMPTED) == list(report.order[failed_at + 1:])
    with pytest.raises(ResourceReferenceError, match="not realized yet"):
        report.raise_for_failure()
