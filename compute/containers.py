from enum import Enum
from graphlib import CycleError, TopologicalSorter
from typing import Any, ClassVar, Mapping, Optional

from attrs import define, field

from common.errors import ConfigurationError
from composition.future import AttributeRef, SecretReference
from composition.graph import NodeKind

# Fargate CPU units mapped to the memory sizes (MiB) they accept.
FARGATE_SIZES = {
    256: (512, 1024, 2048),
    512: tuple(range(1024, 4097, 1024)),
    1024: tuple(range(2048, 8193, 1024)),
    2048: tuple(range(4096, 16385, 1024)),
    4096: tuple(range(8192, 30721, 1024)),
}


class NetworkMode(str, Enum):
    BRIDGE = "bridge"
    AWS_VPC = "awsvpc"


class LaunchType(str, Enum):
    EC2 = "EC2"
    FARGATE = "FARGATE"


class DependencyCondition(str, Enum):
    START = "START"
    HEALTHY = "HEALTHY"


@define(slots=True, frozen=True)
class PortMapping:
    container_port: int
    host_port: Optional[int] = None
    protocol: str = "tcp"

    @property
    def published_port(self) -> int:
        return self.host_port if self.host_port is not None else self.container_port


@define(slots=True, frozen=True)
class MountPoint:
    source_volume: str
    container_path: str
    read_only: bool = False


@define(slots=True, frozen=True)
class HealthCheck:
    command: tuple = field(converter=tuple)
    interval_seconds: int = 30
    timeout_seconds: int = 5
    retries: int = 3


def _to_dependency(value: Any) -> "ContainerDependency":
    if isinstance(value, ContainerDependency):
        return value
    return ContainerDependency(container=value)


def _to_dependencies(values) -> tuple:
    return tuple(_to_dependency(value) for value in values)


@define(slots=True, frozen=True)
class ContainerDependency:
    container: str
    condition: DependencyCondition = DependencyCondition.HEALTHY


@define(slots=True, frozen=True)
class ContainerSpec:
    name: str
    image: str
    environment: Mapping[str, Any] = field(factory=dict)
    port_mappings: tuple = field(default=(), converter=tuple)
    mount_points: tuple = field(default=(), converter=tuple)
    health_check: Optional[HealthCheck] = None
    depends_on: tuple = field(default=(), converter=_to_dependencies)
    memory_limit_mib: Optional[int] = None
    essential: bool = True
    log_stream_prefix: str = "Container"

    @property
    def plain_environment(self) -> dict[str, Any]:
        return {
            name: value
            for name, value in self.environment.items()
            if not isinstance(value, SecretReference)
        }

    @property
    def secret_environment(self) -> dict[str, SecretReference]:
        return {
            name: value
            for name, value in self.environment.items()
            if isinstance(value, SecretReference)
        }


@define(slots=True, frozen=True)
class EfsVolume:
    name: str
    file_system_id: AttributeRef
    access_point_id: Optional[AttributeRef] = None
    transit_encryption: bool = True
    iam_authorization: bool = True


@define(slots=True, frozen=True)
class ComputeUnit:
    """Everything a task definition needs: containers, volumes and sizing."""

    kind: ClassVar[NodeKind] = NodeKind.TASK
    attributes: ClassVar[tuple] = ("task_definition_arn", "family")

    name: str
    containers: tuple = field(converter=tuple)
    volumes: tuple = field(default=(), converter=tuple)
    network_mode: NetworkMode = field(default=NetworkMode.AWS_VPC, converter=NetworkMode)
    launch_type: LaunchType = field(default=LaunchType.FARGATE, converter=LaunchType)
    cpu: Optional[int] = None
    memory_limit_mib: Optional[int] = None
    log_group: Optional[AttributeRef] = None

    def container(self, name: str) -> ContainerSpec:
        for container in self.containers:
            if container.name == name:
                return container
        raise ConfigurationError(f"{self.name} has no container named {name!r}")

    def start_order(self) -> tuple:
        """Container names in an order that honours every start-after dependency."""
        names = {container.name for container in self.containers}
        sorter = TopologicalSorter()
        for container in self.containers:
            for dependency in container.depends_on:
                if dependency.container not in names:
                    raise ConfigurationError(
                        f"{self.name}: {container.name} waits for unknown container {dependency.container!r}"
                    )
            sorter.add(container.name, *(dependency.container for dependency in container.depends_on))
        try:
            return tuple(sorter.static_order())
        except CycleError as exc:
            cycle = " -> ".join(exc.args[1])
            raise ConfigurationError(f"{self.name}: start order has a cycle: {cycle}") from None

    def validate(self) -> None:
        if not self.containers:
            raise ConfigurationError(f"{self.name} declares no containers")
        self._check_unique("container", [container.name for container in self.containers])
        self._check_unique("volume", [volume.name for volume in self.volumes])
        self._check_launch_type()
        self._check_mounts()
        self._check_ports()
        self.start_order()

    def _check_unique(self, label: str, names: list) -> None:
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(f"{self.name} declares {label}s twice: {', '.join(duplicates)}")

    def _check_launch_type(self) -> None:
        if self.launch_type == LaunchType.FARGATE:
            if self.network_mode != NetworkMode.AWS_VPC:
                raise ConfigurationError(f"{self.name}: Fargate tasks must use awsvpc networking")
            allowed = FARGATE_SIZES.get(self.cpu)
            if allowed is None or self.memory_limit_mib not in allowed:
                raise ConfigurationError(
                    f"{self.name}: {self.cpu} CPU units with {self.memory_limit_mib} MiB is not a Fargate size"
                )
        elif self.memory_limit_mib is None:
            missing = [c.name for c in self.containers if c.memory_limit_mib is None]
            if missing:
                raise ConfigurationError(
                    f"{self.name}: containers {', '.join(missing)} need a memory limit on EC2"
                )

    def _check_mounts(self) -> None:
        declared = {volume.name for volume in self.volumes}
        for container in self.containers:
            for mount in container.mount_points:
                if mount.source_volume not in declared:
                    raise ConfigurationError(
                        f"{self.name}: {container.name} mounts undeclared volume {mount.source_volume!r}"
                    )

    def _check_ports(self) -> None:
        claimed: dict = {}
        for container in self.containers:
            for mapping in container.port_mappings:
                if self.network_mode == NetworkMode.AWS_VPC:
                    if mapping.host_port not in (None, mapping.container_port):
                        raise ConfigurationError(
                            f"{self.name}: {container.name} maps {mapping.container_port} to "
                            f"{mapping.host_port}, awsvpc tasks publish the container port"
                        )
                elif mapping.host_port in (None, 0):
                    # Dynamic host port, picked by the agent.
                    continue
                key = (mapping.protocol, mapping.published_port)
                if key in claimed:
                    raise ConfigurationError(
                        f"{self.name}: {container.name} and {claimed[key]} both claim "
                        f"host port {mapping.protocol}/{mapping.published_port}"
                    )
                claimed[key] = container.name
