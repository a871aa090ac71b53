from datetime import timedelta
from enum import Enum
from typing import ClassVar, Mapping, Optional

from attrs import define, field
from aws_lambda_powertools import Logger

import common.constants as constants
from common.errors import ConfigurationError
from composition.future import AttributeRef
from composition.graph import NodeKind, ResourceGraph
from data_tier.secrets import CredentialSecret, Secret
from networking.security import SecurityBoundaryManager
from networking.topology import PRIVATE_CLASSES, Network

logger = Logger(service=constants.SERVICE_NAME, level=constants.LOG_LEVEL)

MIN_AUTO_PAUSE = timedelta(minutes=5)
MAX_AUTO_PAUSE = timedelta(days=1)
MAX_CAPACITY_UNITS = 256


class TierKind(str, Enum):
    RELATIONAL = "relational"
    SHARED_FILESYSTEM = "shared-filesystem"


class TeardownPolicy(str, Enum):
    RETAIN = "retain"
    DESTROY = "destroy"


@define(slots=True, frozen=True)
class CapacityBounds:
    """Serverless capacity range in Aurora capacity units."""

    min_capacity: float = 1
    max_capacity: float = 2
    auto_pause: Optional[timedelta] = None

    def validate(self, owner: str) -> None:
        for label, value in (("min", self.min_capacity), ("max", self.max_capacity)):
            if not 0 <= value <= MAX_CAPACITY_UNITS or (value * 2) % 1:
                raise ConfigurationError(
                    f"{owner}: {label} capacity {value} must be a multiple of 0.5 "
                    f"between 0 and {MAX_CAPACITY_UNITS}"
                )
        if self.min_capacity > self.max_capacity:
            raise ConfigurationError(
                f"{owner}: min capacity {self.min_capacity} exceeds max capacity {self.max_capacity}"
            )
        if self.max_capacity == 0:
            raise ConfigurationError(f"{owner}: max capacity must be above zero")
        if self.auto_pause is not None and not MIN_AUTO_PAUSE <= self.auto_pause <= MAX_AUTO_PAUSE:
            raise ConfigurationError(
                f"{owner}: auto-pause after {self.auto_pause} is outside {MIN_AUTO_PAUSE}..{MAX_AUTO_PAUSE}"
            )


@define(slots=True, frozen=True)
class DatabaseSpec:
    kind: ClassVar[NodeKind] = NodeKind.DATABASE
    attributes: ClassVar[tuple] = ("hostname", "port", "secret_arn", "cluster_identifier")

    name: str
    subnet_group: str
    vpc_id: AttributeRef
    security_group_id: AttributeRef
    capacity: CapacityBounds = CapacityBounds()
    engine_version: str = constants.AURORA_MYSQL_VERSION
    default_database_name: str = constants.DEFAULT_DATABASE_NAME
    master_username: str = constants.MASTER_USERNAME
    parameters: Mapping[str, str] = field(factory=lambda: dict(constants.MYSQL_PARAMETERS))
    backup_retention_days: int = 1
    enable_data_api: bool = True
    teardown: TeardownPolicy = TeardownPolicy.DESTROY
    port: int = constants.MYSQL_PORT


@define(slots=True, frozen=True)
class FileSystemSpec:
    kind: ClassVar[NodeKind] = NodeKind.FILE_SYSTEM
    attributes: ClassVar[tuple] = ("file_system_id", "dns_name")

    name: str
    subnet_group: str
    vpc_id: AttributeRef
    security_group_id: AttributeRef
    performance_mode: str = "generalPurpose"
    throughput_mode: str = "bursting"
    encrypted: bool = True
    teardown: TeardownPolicy = TeardownPolicy.DESTROY
    port: int = constants.NFS_PORT


@define(slots=True, frozen=True)
class PosixUser:
    uid: str
    gid: str


@define(slots=True, frozen=True)
class AccessPointSpec:
    kind: ClassVar[NodeKind] = NodeKind.ACCESS_POINT
    attributes: ClassVar[tuple] = ("access_point_id",)

    name: str
    file_system_id: AttributeRef
    path: str = "/"
    posix_user: Optional[PosixUser] = None


@define(slots=True, frozen=True)
class Database:
    node_id: str
    spec: DatabaseSpec
    secret: Secret

    @property
    def hostname(self) -> AttributeRef:
        return AttributeRef(self.node_id, "hostname")

    @property
    def boundary_id(self) -> str:
        return self.spec.security_group_id.node_id


@define(slots=True, frozen=True)
class FileSystem:
    node_id: str
    spec: FileSystemSpec

    @property
    def file_system_id(self) -> AttributeRef:
        return AttributeRef(self.node_id, "file_system_id")

    @property
    def boundary_id(self) -> str:
        return self.spec.security_group_id.node_id


@define(slots=True, frozen=True)
class AccessPoint:
    node_id: str
    spec: AccessPointSpec
    file_system: FileSystem

    @property
    def access_point_id(self) -> AttributeRef:
        return AttributeRef(self.node_id, "access_point_id")


class DataTierProvisioner:
    """Declares databases and shared file systems inside private subnet groups."""

    def __init__(
        self, graph: ResourceGraph, network: Network, security: SecurityBoundaryManager
    ) -> None:
        self.graph = graph
        self.network = network
        self.security = security

    def provision(self, kind: TierKind, node_id: str, subnet_group: str, **options):
        if TierKind(kind) == TierKind.RELATIONAL:
            return self.database(node_id, subnet_group, **options)
        return self.file_system(node_id, subnet_group, **options)

    def database(
        self,
        node_id: str,
        subnet_group: str,
        capacity: CapacityBounds = CapacityBounds(),
        teardown: TeardownPolicy = TeardownPolicy.DESTROY,
        **options,
    ) -> Database:
        capacity.validate(node_id)
        if options.get("backup_retention_days", 1) < 1:
            raise ConfigurationError(f"{node_id}: backups must be kept for at least one day")
        self.network.topology.place(node_id, subnet_group, PRIVATE_CLASSES)
        boundary = self.security.boundary(
            f"{node_id}SecurityGroup", description=f"{node_id} database cluster"
        )
        spec = DatabaseSpec(
            name=node_id,
            subnet_group=subnet_group,
            vpc_id=self.network.vpc_id,
            security_group_id=boundary.security_group_id,
            capacity=capacity,
            teardown=TeardownPolicy(teardown),
            **options,
        )
        self.graph.add(node_id, spec)

        secret_id = f"{node_id}Secret"
        secret_spec = CredentialSecret(owner=AttributeRef(node_id, "secret_arn"))
        self.graph.add(secret_id, secret_spec)
        logger.debug("Declared database", node_id=node_id, subnet_group=subnet_group)
        return Database(node_id=node_id, spec=spec, secret=Secret(secret_id, secret_spec))

    def file_system(
        self,
        node_id: str,
        subnet_group: str,
        teardown: TeardownPolicy = TeardownPolicy.DESTROY,
        **options,
    ) -> FileSystem:
        self.network.topology.place(node_id, subnet_group, PRIVATE_CLASSES)
        boundary = self.security.boundary(
            f"{node_id}SecurityGroup", description=f"{node_id} file system mount targets"
        )
        spec = FileSystemSpec(
            name=node_id,
            subnet_group=subnet_group,
            vpc_id=self.network.vpc_id,
            security_group_id=boundary.security_group_id,
            teardown=TeardownPolicy(teardown),
            **options,
        )
        self.graph.add(node_id, spec)
        return FileSystem(node_id=node_id, spec=spec)

    def access_point(
        self,
        file_system: FileSystem,
        node_id: Optional[str] = None,
        path: str = "/",
        posix_user: Optional[PosixUser] = None,
    ) -> AccessPoint:
        """Narrow ``file_system`` to ``path`` for one consumer."""
        if not path.startswith("/"):
            raise ConfigurationError(f"Access point path {path!r} must be absolute")
        node_id = node_id or f"{file_system.node_id}AccessPoint"
        spec = AccessPointSpec(
            name=node_id,
            file_system_id=file_system.file_system_id,
            path=path,
            posix_user=posix_user,
        )
        self.graph.add(node_id, spec)
        return AccessPoint(node_id=node_id, spec=spec, file_system=file_system)
