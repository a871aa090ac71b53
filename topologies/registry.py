from typing import Callable

from common.errors import ConfigurationError
from composition.blueprint import Blueprint
from topologies import ec2_minimum, fargate_aurora_efs, fargate_private

TOPOLOGIES: dict[str, Callable[[], Blueprint]] = {
    ec2_minimum.NAME: ec2_minimum.build,
    fargate_aurora_efs.NAME: fargate_aurora_efs.build,
    fargate_private.NAME: fargate_private.build,
}


def names() -> list[str]:
    return sorted(TOPOLOGIES)


def blueprint(name: str) -> Blueprint:
    try:
        build = TOPOLOGIES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown topology {name!r}; choose one of: {', '.join(names())}"
        ) from None
    return build()


def stage_id(name: str) -> str:
    """CDK stage id for a topology, e.g. ``Ec2MinimumStage``."""
    return "".join(part.capitalize() for part in name.split("-")) + "Stage"
