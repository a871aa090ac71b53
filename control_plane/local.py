import hashlib
import ipaddress
import json
import os
from pathlib import Path
from typing import Any, Optional, Sequence

import attrs
from aws_lambda_powertools import Logger

import common.constants as constants
from common.errors import ConfigurationError, ProvisioningError
from composition.deployer import RealizationContext, RealizedResource
from composition.graph import NodeKind, ResourceNode

logger = Logger(service=constants.SERVICE_NAME, level=constants.LOG_LEVEL)

LOCAL_ACCOUNT = "000000000000"

ID_PREFIXES = {
    NodeKind.NETWORK: "vpc",
    NodeKind.SECURITY_BOUNDARY: "sg",
    NodeKind.DATABASE: "cluster",
    NodeKind.SECRET: "secret",
    NodeKind.FILE_SYSTEM: "fs",
    NodeKind.ACCESS_POINT: "fsap",
    NodeKind.CLUSTER: "ecs",
    NodeKind.LOG_GROUP: "log",
    NodeKind.HOST: "i",
    NodeKind.TASK: "td",
    NodeKind.SERVICE: "svc",
    NodeKind.INGRESS: "lb",
    NodeKind.GRANT: "sgr",
}


def state_file(topology: str, state_dir: Optional[str] = None) -> Path:
    directory = state_dir or os.getenv(constants.STATE_DIR_ENV, constants.DEFAULT_STATE_DIR)
    return Path(directory) / f"{topology}.json"


def fingerprint(spec: Any) -> str:
    """Stable digest of a resolved spec; unchanged specs are not re-created."""
    plain = attrs.asdict(spec, recurse=True) if attrs.has(type(spec)) else spec
    payload = json.dumps(plain, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode()).hexdigest()


class LocalControlPlane:
    """Realizes nodes into a JSON state file instead of a cloud account.

    Identifiers are derived from the topology and node id, so deploying the
    same graph twice yields the same resources, and a create call for a node
    whose resolved spec did not change hands back the recorded resource.
    """

    def __init__(
        self,
        path: Path,
        region: str = constants.DEFAULT_REGION,
        account: str = LOCAL_ACCOUNT,
    ) -> None:
        self.path = Path(path)
        self.region = region
        self.account = account
        self._entries = self._load()

    # ---------- state ----------
    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text())
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"State file {self.path} is not valid JSON: {exc}") from None
        return {entry["node_id"]: entry for entry in document.get("resources", [])}

    def _save(self, node_id: str) -> None:
        document = {"resources": list(self._entries.values())}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            scratch = self.path.with_suffix(".tmp")
            scratch.write_text(json.dumps(document, indent=2, sort_keys=True))
            scratch.replace(self.path)
        except OSError as exc:
            raise ProvisioningError(node_id, f"could not write {self.path}", exc) from exc

    @staticmethod
    def _resource(entry: dict) -> RealizedResource:
        return RealizedResource(
            node_id=entry["node_id"],
            kind=NodeKind(entry["kind"]),
            physical_id=entry["physical_id"],
            attributes=entry["attributes"],
        )

    def inventory(self) -> list[RealizedResource]:
        """Recorded resources, dependencies before the resources using them."""
        return [self._resource(entry) for entry in self._entries.values()]

    def settle(self, order: Sequence[str]) -> list[RealizedResource]:
        """Rewrite the state in ``order`` after a successful deploy.

        Entries for nodes missing from ``order`` are no longer declared. They
        are kept after the declared ones, so a reverse walk of the inventory
        still releases them first, and returned for release.
        """
        declared = set(order)
        stale = [entry for node_id, entry in self._entries.items() if node_id not in declared]
        entries = [self._entries[node_id] for node_id in order if node_id in self._entries]
        settled = {entry["node_id"]: entry for entry in entries + stale}
        if list(settled) != list(self._entries):
            self._entries = settled
            self._save(self.path.stem)
        if stale:
            logger.info("Found undeclared resources", nodes=[entry["node_id"] for entry in stale])
        return [self._resource(entry) for entry in stale]

    # ---------- control plane ----------
    def create(self, node: ResourceNode, context: RealizationContext) -> RealizedResource:
        resolved = context.resolve(node.spec)
        digest = fingerprint(resolved)
        entry = self._entries.get(node.node_id)
        if entry is not None and entry["fingerprint"] == digest:
            logger.debug("Resource unchanged", node_id=node.node_id)
        else:
            physical_id = self._physical_id(context.graph.name, node)
            entry = {
                "node_id": node.node_id,
                "kind": node.kind.value,
                "physical_id": physical_id,
                "attributes": self._attributes(node, resolved, physical_id, context),
                "fingerprint": digest,
            }
            self._entries[node.node_id] = entry
            self._save(node.node_id)
            logger.info("Created resource", node_id=node.node_id, physical_id=physical_id)
        return RealizedResource(
            node_id=node.node_id,
            kind=node.kind,
            physical_id=entry["physical_id"],
            attributes=entry["attributes"],
        )

    def delete(self, resource: RealizedResource) -> None:
        if self._entries.pop(resource.node_id, None) is None:
            logger.debug("Resource already gone", node_id=resource.node_id)
            return
        self._save(resource.node_id)
        logger.info("Deleted resource", node_id=resource.node_id, physical_id=resource.physical_id)

    # ---------- identifiers ----------
    def _digest(self, *parts: str, length: int = 17) -> str:
        return hashlib.sha1("/".join(parts).encode()).hexdigest()[:length]

    def _physical_id(self, topology: str, node: ResourceNode) -> str:
        return f"{ID_PREFIXES[node.kind]}-{self._digest(topology, node.node_id)}"

    def _arn(self, service: str, resource: str) -> str:
        return f"arn:aws:{service}:{self.region}:{self.account}:{resource}"

    def _attributes(
        self, node: ResourceNode, spec: Any, physical_id: str, context: RealizationContext
    ) -> dict:
        topology = context.graph.name
        kind = node.kind
        if kind == NodeKind.NETWORK:
            return {
                "vpc_id": physical_id,
                "cidr_block": spec.cidr,
                "default_security_group_id": f"sg-{self._digest(physical_id, 'default')}",
            }
        if kind == NodeKind.SECURITY_BOUNDARY:
            return {"security_group_id": spec.existing_group_id or physical_id}
        if kind == NodeKind.DATABASE:
            return {
                "hostname": f"{node.node_id.lower()}.cluster-{self._digest(physical_id, length=12)}"
                f".{self.region}.rds.amazonaws.com",
                "port": spec.port,
                "secret_arn": self._arn("secretsmanager", f"secret:{node.node_id}Secret-{physical_id[-6:]}"),
                "cluster_identifier": physical_id,
            }
        if kind == NodeKind.SECRET:
            return {"secret_arn": spec.owner}
        if kind == NodeKind.FILE_SYSTEM:
            return {
                "file_system_id": physical_id,
                "dns_name": f"{physical_id}.efs.{self.region}.amazonaws.com",
            }
        if kind == NodeKind.ACCESS_POINT:
            return {"access_point_id": physical_id}
        if kind == NodeKind.CLUSTER:
            name = f"{topology}-{node.node_id}".lower()
            return {"cluster_name": name, "cluster_arn": self._arn("ecs", f"cluster/{name}")}
        if kind == NodeKind.LOG_GROUP:
            name = spec.log_group_name or f"/aws/ecs/{topology}-{node.node_id}".lower()
            return {"log_group_name": name, "log_group_arn": self._arn("logs", f"log-group:{name}")}
        if kind == NodeKind.HOST:
            return {
                "instance_id": physical_id,
                "private_ip": self._host_address(node, context),
                "public_dns_name": f"{physical_id}.{self.region}.compute.amazonaws.com",
            }
        if kind == NodeKind.TASK:
            family = f"{topology}-{node.node_id}".lower()
            return {
                "task_definition_arn": self._arn("ecs", f"task-definition/{family}:1"),
                "family": family,
            }
        if kind == NodeKind.SERVICE:
            return {
                "service_name": spec.name,
                "service_arn": self._arn("ecs", f"service/{topology}/{spec.name}"),
            }
        if kind == NodeKind.INGRESS:
            dns_name = spec.host_dns_name or (
                f"{node.node_id.lower()}-{self._digest(physical_id, length=10)}"
                f".{self.region}.elb.amazonaws.com"
            )
            return {"address": dns_name, "dns_name": dns_name}
        return {"rule_id": physical_id}

    def _host_address(self, node: ResourceNode, context: RealizationContext) -> str:
        """A stable address inside the first subnet of the host's group."""
        networks = context.graph.nodes_of(NodeKind.NETWORK)
        subnet = networks[0].spec.group(node.spec.subnet_group).subnets[0]
        hosts = list(ipaddress.ip_network(subnet.cidr).hosts())
        # AWS reserves the first four addresses of every subnet.
        offset = 4 + int(self._digest(node.node_id, length=4), 16) % (len(hosts) - 4)
        return str(hosts[offset])
