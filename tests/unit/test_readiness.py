import pytest

from compute.containers import ContainerDependency, ContainerSpec, DependencyCondition
from compute.readiness import ContainerState, UnitReadiness
from composition_test_helpers import blueprint, db_and_app_unit, fargate_unit


@pytest.fixture
def readiness() -> UnitReadiness:
    return UnitReadiness(db_and_app_unit())


def test_app_is_not_ready_until_db_is_healthy():
    declared = blueprint()
    cluster = declared.compute.cluster()
    host = declared.compute.host("Host", cluster, "public")
    task = declared.compute.task(db_and_app_unit())
    service = declared.compute.service("Service", task, cluster, host=host)
    readiness = service.readiness()

    readiness.report("app", ContainerState.HEALTHY)
    assert readiness.is_ready("app") is False

    readiness.report("db", ContainerState.HEALTHY)
    assert readiness.is_ready("app") is True
    assert readiness.ready is True


def test_app_starts_only_after_db_is_healthy(readiness: UnitReadiness):
    assert readiness.can_start("db") is True
    assert readiness.can_start("app") is False

    readiness.report("db", "healthy")
    assert readiness.can_start("app") is True


def test_failed_dependency_blocks_its_dependents(readiness: UnitReadiness):
    readiness.report("db", ContainerState.FAILED)

    assert readiness.is_blocked("app") is True
    assert readiness.can_start("app") is False
    assert readiness.snapshot() == {"db": "failed", "app": "pending"}


def test_healthy_container_can_still_fail(readiness: UnitReadiness):
    readiness.report("db", ContainerState.HEALTHY)
    readiness.report("db", ContainerState.FAILED)

    assert readiness.state("db") == ContainerState.FAILED


@pytest.mark.parametrize(
    "first,second",
    [
        (ContainerState.FAILED, ContainerState.HEALTHY),
        (ContainerState.FAILED, ContainerState.PENDING),
        (ContainerState.HEALTHY, ContainerState.PENDING),
    ],
)
def test_invalid_transitions_are_rejected(readiness: UnitReadiness, first, second):
    readiness.report("db", first)
    with pytest.raises(ValueError, match="cannot go from"):
        readiness.report("db", second)


def test_repeated_report_is_a_no_op(readiness: UnitReadiness):
    readiness.report("db", ContainerState.HEALTHY)
    readiness.report("db", ContainerState.HEALTHY)

    assert readiness.snapshot() == {"db": "ready", "app": "pending"}


def test_start_condition_only_waits_for_the_dependency_to_start():
    unit = fargate_unit(
        containers=[
            ContainerSpec("init", "busybox"),
            ContainerSpec(
                "app",
                "wordpress",
                depends_on=[ContainerDependency("init", DependencyCondition.START)],
            ),
        ]
    )
    readiness = UnitReadiness(unit)

    assert readiness.can_start("app") is True
    readiness.report("init", ContainerState.FAILED)
    assert readiness.can_start("app") is False
