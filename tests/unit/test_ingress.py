import pytest

import common.constants as constants
from common.errors import ConfigurationError
from compute.containers import ContainerSpec, HealthCheck, PortMapping
from ingress.composer import HealthCheckMode, IngressForm, default_health_check
from networking.security import Peer, PortRange
from composition_test_helpers import (
    WordpressDeclaration,
    blueprint,
    db_and_app_unit,
    declaration,
    fargate_unit,
)


def test_load_balancer_waits_for_its_service(declaration: WordpressDeclaration):
    graph = declaration.blueprint.build()
    order = graph.realization_order()

    assert "WordPressService" in graph.dependencies("Alb")
    assert order.index("WordPressService") < order.index("Alb")
    assert declaration.ingress.spec.form == IngressForm.LOAD_BALANCER


def test_open_listener_allows_any_ipv4(declaration: WordpressDeclaration):
    rules = declaration.ingress.boundary.spec.ingress_rules

    assert [(rule.peer, rule.port) for rule in rules] == [(Peer.any_ipv4(), PortRange.tcp(80))]


def test_closed_listener_adds_no_public_rule():
    declared = blueprint()
    cluster = declared.compute.cluster()
    task = declared.compute.task(fargate_unit())
    service = declared.compute.service("AppService", task, cluster, subnet_group="public")
    ingress = declared.ingress.load_balancer("Alb", service, 80, subnet_group="public", open=False)

    assert ingress.boundary.spec.ingress_rules == []


def test_http_health_check_defaults():
    check = default_health_check(ContainerSpec("web", "nginx"), 80, "HTTP")

    assert check.mode == HealthCheckMode.HTTP
    assert check.path == "/"
    assert check.healthy_codes == constants.HEALTHY_HTTP_CODES


def test_tcp_health_check_for_tcp_listeners():
    assert default_health_check(ContainerSpec("web", "nginx"), 80, "tcp").mode == HealthCheckMode.TCP


def test_internet_facing_ingress_must_be_public():
    declared = blueprint()
    cluster = declared.compute.cluster()
    task = declared.compute.task(fargate_unit())
    service = declared.compute.service("AppService", task, cluster, subnet_group="isolated")

    with pytest.raises(ConfigurationError, match="cannot be placed"):
        declared.ingress.load_balancer("Alb", service, 80, subnet_group="isolated")


def test_internal_ingress_may_be_private():
    declared = blueprint()
    cluster = declared.compute.cluster()
    task = declared.compute.task(fargate_unit())
    service = declared.compute.service("AppService", task, cluster, subnet_group="isolated")
    ingress = declared.ingress.load_balancer(
        "Alb", service, 80, subnet_group="isolated", internet_facing=False
    )

    assert ingress.spec.internet_facing is False


def test_ingress_port_must_be_exposed(declaration: WordpressDeclaration):
    declared = declaration.blueprint
    with pytest.raises(ConfigurationError, match="does not expose port 8080"):
        declared.ingress.load_balancer("Other", declaration.service, 8080, subnet_group="public")


def test_unsupported_listener_protocol_is_rejected(declaration: WordpressDeclaration):
    declared = declaration.blueprint
    with pytest.raises(ConfigurationError, match="protocol"):
        declared.ingress.load_balancer(
            "Other", declaration.service, 80, subnet_group="public", protocol="UDP"
        )


# ------------------- Host exposure -------------------
def test_host_exposure_publishes_the_host_dns_name():
    declared = blueprint()
    cluster = declared.compute.cluster()
    host = declared.compute.host("Host", cluster, "public")
    unit = db_and_app_unit()
    task = declared.compute.task(unit)
    service = declared.compute.service("Service", task, cluster, host=host)
    ingress = declared.ingress.host("PublicDomainName", service)

    assert ingress.spec.form == IngressForm.HOST
    assert ingress.spec.host_dns_name == host.public_dns_name
    assert ingress.spec.container_name == "app"
    assert ingress.spec.container_port == 8080
    assert ingress.boundary is host.boundary
    assert PortRange.tcp(80) in [rule.port for rule in host.boundary.spec.ingress_rules]


def test_host_exposure_prefers_the_container_health_check():
    declared = blueprint()
    cluster = declared.compute.cluster()
    host = declared.compute.host("Host", cluster, "public")
    unit = fargate_unit(
        containers=[
            ContainerSpec(
                "app",
                "wordpress",
                port_mappings=[PortMapping(8080, 80)],
                memory_limit_mib=512,
                health_check=HealthCheck(("CMD-SHELL", "pgrep -c httpd")),
            )
        ],
        network_mode="bridge",
        launch_type="EC2",
        cpu=None,
        memory_limit_mib=None,
    )
    service = declared.compute.service(
        "Service", declared.compute.task(unit), cluster, host=host
    )
    ingress = declared.ingress.host("PublicDomainName", service)

    assert ingress.spec.health_check.mode == HealthCheckMode.CONTAINER
    assert ingress.spec.health_check.command == ("CMD-SHELL", "pgrep -c httpd")


def test_host_exposure_needs_a_host(declaration: WordpressDeclaration):
    with pytest.raises(ConfigurationError, match="does not run on a host"):
        declaration.blueprint.ingress.host("Public", declaration.service)


def test_load_balancer_prefers_the_container_health_check():
    declared = blueprint()
    cluster = declared.compute.cluster()
    unit = fargate_unit(
        containers=[
            ContainerSpec(
                "app",
                "wordpress",
                port_mappings=[PortMapping(80)],
                health_check=HealthCheck(("CMD-SHELL", "curl -f localhost")),
            )
        ]
    )
    service = declared.compute.service(
        "AppService", declared.compute.task(unit), cluster, subnet_group="public"
    )
    ingress = declared.ingress.load_balancer("Alb", service, 80, subnet_group="public")

    assert ingress.spec.health_check.mode == HealthCheckMode.CONTAINER
    assert ingress.spec.health_check.command == ("CMD-SHELL", "curl -f localhost")
    assert ingress.spec.health_check.port == 80
