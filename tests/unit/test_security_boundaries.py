import pytest

from common.errors import ResourceReferenceError
from composition.graph import NodeKind, ResourceGraph
from networking.security import (
    Direction,
    Peer,
    PortRange,
    SecurityBoundaryManager,
)
from networking.topology import NetworkTopologyBuilder, ReachabilityClass, SubnetGroupSpec


@pytest.fixture
def manager() -> SecurityBoundaryManager:
    graph = ResourceGraph("test")
    network = NetworkTopologyBuilder(graph).build(
        "Vpc", [SubnetGroupSpec("public", ReachabilityClass.PUBLIC)]
    )
    return SecurityBoundaryManager(graph, network)


def test_same_rule_twice_is_one_rule(manager: SecurityBoundaryManager):
    web = manager.boundary("WebSecurityGroup")
    manager.allow_ingress(web, Peer.any_ipv4(), PortRange.tcp(80), "HTTP")
    manager.allow_ingress(web, Peer.any_ipv4(), PortRange.tcp(80), "HTTP again, other wording")

    assert len(web.spec.ingress_rules) == 1
    assert web.spec.ingress_rules[0].description == "HTTP"


def test_rules_are_additive(manager: SecurityBoundaryManager):
    web = manager.boundary("WebSecurityGroup")
    manager.allow_ingress(web, Peer.any_ipv4(), PortRange.tcp(80))
    manager.allow_ingress(web, Peer.network(manager.network), PortRange.tcp(3306))
    manager.allow_egress(web, Peer.ipv4("10.0.0.0/16"), PortRange.all_traffic())

    assert [str(rule.port) for rule in web.spec.ingress_rules] == ["tcp/80", "tcp/3306"]
    assert [rule.direction for rule in web.spec.egress_rules] == [Direction.EGRESS]


def test_boundary_is_declared_once(manager: SecurityBoundaryManager):
    first = manager.boundary("WebSecurityGroup", description="web")
    second = manager.boundary("WebSecurityGroup", description="ignored")

    assert first is second
    assert len(manager.graph.nodes_of(NodeKind.SECURITY_BOUNDARY)) == 1


def test_default_boundary_is_imported_from_the_network(manager: SecurityBoundaryManager):
    default = manager.default_boundary()

    assert default.node_id == "VpcDefaultSecurityGroup"
    assert default.spec.imported
    assert default.spec.existing_group_id == manager.network.default_security_group_id
    assert manager.graph.dependencies(default.node_id) == frozenset({"Vpc"})


def test_network_peer_depends_on_the_network(manager: SecurityBoundaryManager):
    web = manager.boundary("WebSecurityGroup")
    manager.allow_ingress(web, Peer.network(manager.network), PortRange.tcp(3306))

    assert manager.graph.dependencies("WebSecurityGroup") == frozenset({"Vpc"})


def test_rules_need_an_existing_boundary(manager: SecurityBoundaryManager):
    with pytest.raises(ResourceReferenceError, match="must be declared"):
        manager.allow_ingress("MissingSecurityGroup", Peer.any_ipv4(), PortRange.tcp(80))


@pytest.mark.parametrize(
    "port,expected",
    [
        (PortRange.tcp(443), "tcp/443"),
        (PortRange("tcp", 1000, 2000), "tcp/1000-2000"),
        (PortRange.all_traffic(), "all traffic"),
    ],
)
def test_port_range_rendering(port, expected):
    assert str(port) == expected
