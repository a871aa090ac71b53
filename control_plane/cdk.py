from typing import Any, Callable

from aws_cdk import (
    CfnOutput,
    Duration,
    RemovalPolicy,
    Stack,
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_efs as efs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_rds as rds,
)
from aws_lambda_powertools import Logger

import common.constants as constants
from common.errors import ProvisioningError
from common.stack_context import StackContext
from composition.deployer import RealizationContext, RealizedResource
from composition.future import AttributeRef
from composition.graph import NodeKind, ResourceNode
from compute.containers import DependencyCondition, LaunchType, NetworkMode
from data_tier.provisioner import TeardownPolicy
from ingress.composer import HealthCheckMode, IngressForm
from networking.security import Peer, PortRange
from networking.topology import ReachabilityClass

logger = Logger(service=constants.SERVICE_NAME, level=constants.LOG_LEVEL)

SUBNET_TYPES = {
    ReachabilityClass.PUBLIC: ec2.SubnetType.PUBLIC,
    ReachabilityClass.PRIVATE_ROUTABLE: ec2.SubnetType.PRIVATE_WITH_EGRESS,
    ReachabilityClass.PRIVATE_ISOLATED: ec2.SubnetType.PRIVATE_ISOLATED,
}

REMOVAL_POLICIES = {
    TeardownPolicy.RETAIN: RemovalPolicy.RETAIN,
    TeardownPolicy.DESTROY: RemovalPolicy.DESTROY,
}

PERFORMANCE_MODES = {
    "generalPurpose": efs.PerformanceMode.GENERAL_PURPOSE,
    "maxIO": efs.PerformanceMode.MAX_IO,
}

THROUGHPUT_MODES = {
    "bursting": efs.ThroughputMode.BURSTING,
    "elastic": efs.ThroughputMode.ELASTIC,
}

DEPENDENCY_CONDITIONS = {
    DependencyCondition.START: ecs.ContainerDependencyCondition.START,
    DependencyCondition.HEALTHY: ecs.ContainerDependencyCondition.HEALTHY,
}

EFS_CLIENT_ACTIONS = ("elasticfilesystem:ClientMount", "elasticfilesystem:ClientWrite")


class CdkControlPlane:
    """Renders graph nodes into CDK constructs inside one stack.

    Attributes handed back to the deployer are CDK tokens; CloudFormation
    resolves them at deploy time. Structural references (a VPC, a security
    group, a task definition) are looked up in the construct registry, but
    only after the realization context confirms the producer was realized.
    """

    def __init__(self, stack: Stack, context: StackContext) -> None:
        self.stack = stack
        self.context = context
        self._constructs: dict[str, Any] = {}
        self._renderers: dict[NodeKind, Callable] = {
            NodeKind.NETWORK: self._network,
            NodeKind.SECURITY_BOUNDARY: self._security_boundary,
            NodeKind.DATABASE: self._database,
            NodeKind.SECRET: self._secret,
            NodeKind.FILE_SYSTEM: self._file_system,
            NodeKind.ACCESS_POINT: self._access_point,
            NodeKind.CLUSTER: self._cluster,
            NodeKind.LOG_GROUP: self._log_group,
            NodeKind.HOST: self._host,
            NodeKind.TASK: self._task,
            NodeKind.SERVICE: self._service,
            NodeKind.INGRESS: self._ingress,
            NodeKind.GRANT: self._grant,
        }

    def create(self, node: ResourceNode, context: RealizationContext) -> RealizedResource:
        render = self._renderers[node.kind]
        # Reference errors are not provisioning failures; let them through.
        context.resolve(node.spec)
        try:
            construct, attributes = render(node.node_id, node.spec, context)
        except Exception as exc:
            raise ProvisioningError(node.node_id, f"could not render {node.kind.value}: {exc}", exc) from exc
        self._constructs[node.node_id] = construct
        return RealizedResource(
            node_id=node.node_id,
            kind=node.kind,
            physical_id=node.node_id if construct is None else construct.node.path,
            attributes=attributes,
        )

    def delete(self, resource: RealizedResource) -> None:
        self._constructs.pop(resource.node_id, None)
        if not self.stack.node.try_remove_child(resource.node_id):
            logger.debug("No construct to remove", node_id=resource.node_id)

    # ---------- helpers ----------
    def _lookup(self, context: RealizationContext, ref: AttributeRef) -> Any:
        context.attribute(ref)
        return self._constructs[ref.node_id]

    def _subnets(self, group: str) -> ec2.SubnetSelection:
        return ec2.SubnetSelection(subnet_group_name=group)

    @staticmethod
    def _port(port: PortRange) -> ec2.Port:
        if port.protocol == "-1":
            return ec2.Port.all_traffic()
        if port.from_port == port.to_port:
            return ec2.Port.tcp(port.from_port)
        return ec2.Port.tcp_range(port.from_port, port.to_port)

    @staticmethod
    def _peer(peer: Peer, context: RealizationContext) -> ec2.IPeer:
        cidr = context.resolve(peer.cidr)
        if cidr == constants.ANY_IPV4_CIDR:
            return ec2.Peer.any_ipv4()
        return ec2.Peer.ipv4(cidr)

    # ---------- networking ----------
    def _network(self, node_id, spec, context):
        subnets = []
        for group in spec.groups:
            options = {}
            if group.reachability == ReachabilityClass.PUBLIC:
                options["map_public_ip_on_launch"] = group.map_public_ip_on_launch
            subnets.append(
                ec2.SubnetConfiguration(
                    name=group.name,
                    subnet_type=SUBNET_TYPES[group.reachability],
                    cidr_mask=group.cidr_mask,
                    **options,
                )
            )
        vpc = ec2.Vpc(
            self.stack,
            node_id,
            ip_addresses=ec2.IpAddresses.cidr(spec.cidr),
            max_azs=spec.max_azs,
            nat_gateways=spec.nat_gateways,
            subnet_configuration=subnets,
        )
        return vpc, {
            "vpc_id": vpc.vpc_id,
            "cidr_block": vpc.vpc_cidr_block,
            "default_security_group_id": vpc.vpc_default_security_group,
        }

    def _security_boundary(self, node_id, spec, context):
        vpc = self._lookup(context, spec.vpc_id)
        if spec.imported:
            group = ec2.SecurityGroup.from_security_group_id(
                self.stack, node_id, context.attribute(spec.existing_group_id)
            )
        else:
            group = ec2.SecurityGroup(
                self.stack,
                node_id,
                vpc=vpc,
                description=spec.description,
                allow_all_outbound=spec.allow_all_outbound,
            )
        for rule in spec.ingress_rules:
            group.add_ingress_rule(
                peer=self._peer(rule.peer, context),
                connection=self._port(rule.port),
                description=rule.description or None,
            )
        for rule in spec.egress_rules:
            group.add_egress_rule(
                peer=self._peer(rule.peer, context),
                connection=self._port(rule.port),
                description=rule.description or None,
            )
        return group, {"security_group_id": group.security_group_id}

    # ---------- data tier ----------
    def _database(self, node_id, spec, context):
        vpc = self._lookup(context, spec.vpc_id)
        security_group = self._lookup(context, spec.security_group_id)
        engine = rds.DatabaseClusterEngine.aurora_mysql(
            version=rds.AuroraMysqlEngineVersion.of(
                spec.engine_version, constants.AURORA_MYSQL_MAJOR_VERSION
            )
        )
        parameter_group = rds.ParameterGroup(
            self.stack,
            f"{node_id}ParameterGroup",
            engine=engine,
            parameters=dict(spec.parameters),
        )
        options = {}
        # Aurora only pauses clusters allowed to scale to zero.
        if spec.capacity.auto_pause is not None and spec.capacity.min_capacity == 0:
            options["serverless_v2_auto_pause_duration"] = Duration.seconds(
                int(spec.capacity.auto_pause.total_seconds())
            )
        cluster = rds.DatabaseCluster(
            self.stack,
            node_id,
            engine=engine,
            writer=rds.ClusterInstance.serverless_v2("Writer"),
            serverless_v2_min_capacity=spec.capacity.min_capacity,
            serverless_v2_max_capacity=spec.capacity.max_capacity,
            vpc=vpc,
            vpc_subnets=self._subnets(spec.subnet_group),
            security_groups=[security_group],
            parameter_group=parameter_group,
            default_database_name=spec.default_database_name,
            credentials=rds.Credentials.from_generated_secret(spec.master_username),
            backup=rds.BackupProps(retention=Duration.days(spec.backup_retention_days)),
            enable_data_api=spec.enable_data_api,
            port=spec.port,
            removal_policy=REMOVAL_POLICIES[spec.teardown],
            **options,
        )
        return cluster, {
            "hostname": cluster.cluster_endpoint.hostname,
            "port": cluster.cluster_endpoint.port,
            "secret_arn": cluster.secret.secret_arn,
            "cluster_identifier": cluster.cluster_identifier,
        }

    def _secret(self, node_id, spec, context):
        secret = self._lookup(context, spec.owner).secret
        return secret, {"secret_arn": secret.secret_arn}

    def _file_system(self, node_id, spec, context):
        file_system = efs.FileSystem(
            self.stack,
            node_id,
            vpc=self._lookup(context, spec.vpc_id),
            vpc_subnets=self._subnets(spec.subnet_group),
            security_group=self._lookup(context, spec.security_group_id),
            performance_mode=PERFORMANCE_MODES[spec.performance_mode],
            throughput_mode=THROUGHPUT_MODES[spec.throughput_mode],
            encrypted=spec.encrypted,
            removal_policy=REMOVAL_POLICIES[spec.teardown],
        )
        return file_system, {
            "file_system_id": file_system.file_system_id,
            "dns_name": f"{file_system.file_system_id}.efs.{self.stack.region}.{self.stack.url_suffix}",
        }

    def _access_point(self, node_id, spec, context):
        posix_user = None
        if spec.posix_user is not None:
            posix_user = efs.PosixUser(uid=spec.posix_user.uid, gid=spec.posix_user.gid)
        access_point = efs.AccessPoint(
            self.stack,
            node_id,
            file_system=self._lookup(context, spec.file_system_id),
            path=spec.path,
            posix_user=posix_user,
        )
        return access_point, {"access_point_id": access_point.access_point_id}

    # ---------- compute ----------
    def _cluster(self, node_id, spec, context):
        cluster = ecs.Cluster(self.stack, node_id, vpc=self._lookup(context, spec.vpc_id))
        return cluster, {"cluster_name": cluster.cluster_name, "cluster_arn": cluster.cluster_arn}

    def _log_group(self, node_id, spec, context):
        log_group = self.context.build_log_group(
            node_id,
            log_group_name=spec.log_group_name,
            retention_days=spec.retention_days,
            removal_policy=REMOVAL_POLICIES[spec.teardown],
        )
        return log_group, {
            "log_group_name": log_group.log_group_name,
            "log_group_arn": log_group.log_group_arn,
        }

    def _host(self, node_id, spec, context):
        role = iam.Role(
            self.stack,
            f"{node_id}Role",
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(name)
                for name in spec.managed_policies
            ],
            inline_policies={
                "EcsCloudWatchLogs": iam.PolicyDocument(
                    statements=[
                        iam.PolicyStatement(
                            actions=list(spec.log_actions),
                            resources=["arn:aws:logs:*:*:*"],
                        )
                    ]
                )
            },
        )
        user_data = ec2.UserData.for_linux()
        user_data.add_commands(
            f"echo ECS_CLUSTER={context.attribute(spec.cluster_name)} >> /etc/ecs/ecs.config"
        )
        instance = ec2.Instance(
            self.stack,
            node_id,
            vpc=self._lookup(context, spec.vpc_id),
            vpc_subnets=self._subnets(spec.subnet_group),
            instance_type=ec2.InstanceType(spec.instance_type),
            machine_image=ecs.EcsOptimizedImage.amazon_linux2023(ecs.AmiHardwareType.STANDARD),
            role=role,
            user_data=user_data,
            security_group=self._lookup(context, spec.security_group_id),
        )
        return instance, {
            "instance_id": instance.instance_id,
            "private_ip": instance.instance_private_ip,
            "public_dns_name": instance.instance_public_dns_name,
        }

    def _task(self, node_id, unit, context):
        if unit.launch_type == LaunchType.FARGATE:
            task_definition = ecs.FargateTaskDefinition(
                self.stack, node_id, cpu=unit.cpu, memory_limit_mib=unit.memory_limit_mib
            )
        else:
            task_definition = ecs.Ec2TaskDefinition(
                self.stack,
                node_id,
                network_mode=(
                    ecs.NetworkMode.BRIDGE
                    if unit.network_mode == NetworkMode.BRIDGE
                    else ecs.NetworkMode.AWS_VPC
                ),
            )

        for volume in unit.volumes:
            file_system = self._lookup(context, volume.file_system_id)
            authorization = None
            if volume.access_point_id is not None:
                access_point = self._lookup(context, volume.access_point_id)
                authorization = ecs.AuthorizationConfig(
                    access_point_id=access_point.access_point_id,
                    iam="ENABLED" if volume.iam_authorization else "DISABLED",
                )
            task_definition.add_volume(
                name=volume.name,
                efs_volume_configuration=ecs.EfsVolumeConfiguration(
                    file_system_id=file_system.file_system_id,
                    transit_encryption="ENABLED" if volume.transit_encryption else "DISABLED",
                    authorization_config=authorization,
                ),
            )
            if volume.iam_authorization:
                file_system.grant(task_definition.task_role, *EFS_CLIENT_ACTIONS)

        log_group = None
        if unit.log_group is not None:
            log_group = self._lookup(context, unit.log_group)

        resolved = context.resolve(unit)
        definitions = {}
        for container in resolved.containers:
            logging = None
            if log_group is not None:
                logging = ecs.LogDriver.aws_logs(
                    stream_prefix=container.log_stream_prefix, log_group=log_group
                )
            health_check = None
            if container.health_check is not None:
                health_check = ecs.HealthCheck(
                    command=list(container.health_check.command),
                    interval=Duration.seconds(container.health_check.interval_seconds),
                    timeout=Duration.seconds(container.health_check.timeout_seconds),
                    retries=container.health_check.retries,
                )
            definition = task_definition.add_container(
                container.name,
                image=ecs.ContainerImage.from_registry(container.image),
                environment={
                    name: str(value) for name, value in container.plain_environment.items()
                },
                secrets={
                    name: ecs.Secret.from_secrets_manager(self._constructs[ref.node_id], ref.field)
                    for name, ref in container.secret_environment.items()
                },
                port_mappings=[
                    ecs.PortMapping(
                        container_port=mapping.container_port,
                        host_port=mapping.host_port,
                        protocol=ecs.Protocol.UDP if mapping.protocol == "udp" else ecs.Protocol.TCP,
                    )
                    for mapping in container.port_mappings
                ],
                memory_limit_mib=container.memory_limit_mib,
                essential=container.essential,
                health_check=health_check,
                logging=logging,
            )
            for mount in container.mount_points:
                definition.add_mount_points(
                    ecs.MountPoint(
                        container_path=mount.container_path,
                        source_volume=mount.source_volume,
                        read_only=mount.read_only,
                    )
                )
            definitions[container.name] = definition

        for container in unit.containers:
            for dependency in container.depends_on:
                definitions[container.name].add_container_dependencies(
                    ecs.ContainerDependency(
                        container=definitions[dependency.container],
                        condition=DEPENDENCY_CONDITIONS[dependency.condition],
                    )
                )
        return task_definition, {
            "task_definition_arn": task_definition.task_definition_arn,
            "family": task_definition.family,
        }

    def _service(self, node_id, spec, context):
        cluster = self._lookup(context, spec.cluster_arn)
        task_definition = self._lookup(context, spec.task_definition_arn)
        host = None
        if spec.host_instance_id is not None:
            host = self._lookup(context, spec.host_instance_id)

        if spec.launch_type == LaunchType.FARGATE:
            service = ecs.FargateService(
                self.stack,
                node_id,
                cluster=cluster,
                task_definition=task_definition,
                desired_count=spec.desired_count,
                vpc_subnets=self._subnets(spec.subnet_group),
                security_groups=[self._lookup(context, spec.security_group_id)],
                assign_public_ip=spec.assign_public_ip,
            )
            return service, {"service_name": service.service_name, "service_arn": service.service_arn}

        # Ec2Service wants a capacity provider; a plain CfnService runs on the registered host.
        network_configuration = None
        if spec.security_group_id is not None:
            network_configuration = ecs.CfnService.NetworkConfigurationProperty(
                awsvpc_configuration=ecs.CfnService.AwsVpcConfigurationProperty(
                    subnets=cluster.vpc.select_subnets(subnet_group_name=spec.subnet_group).subnet_ids,
                    security_groups=[context.attribute(spec.security_group_id)],
                )
            )
        service = ecs.CfnService(
            self.stack,
            node_id,
            cluster=cluster.cluster_arn,
            launch_type="EC2",
            task_definition=task_definition.task_definition_arn,
            desired_count=spec.desired_count,
            network_configuration=network_configuration,
        )
        if host is not None:
            service.node.add_dependency(host)
        return service, {"service_name": service.attr_name, "service_arn": service.attr_service_arn}

    # ---------- ingress ----------
    def _ingress(self, node_id, spec, context):
        service = self._lookup(context, spec.service_name)
        if spec.form == IngressForm.HOST:
            address = context.attribute(spec.host_dns_name)
            self._output(node_id, address)
            return None, {"address": address, "dns_name": address}

        vpc = self._lookup(context, spec.vpc_id)
        security_group = self._lookup(context, spec.security_group_id)
        target = service.load_balancer_target(
            container_name=spec.container_name, container_port=spec.container_port
        )
        if spec.protocol == "TCP":
            load_balancer = elbv2.NetworkLoadBalancer(
                self.stack,
                node_id,
                vpc=vpc,
                internet_facing=spec.internet_facing,
                vpc_subnets=self._subnets(spec.subnet_group),
                security_groups=[security_group],
            )
            listener = load_balancer.add_listener(
                f"{node_id}Listener", port=spec.listener_port, protocol=elbv2.Protocol.TCP
            )
            listener.add_targets(
                f"{node_id}Targets",
                port=spec.container_port,
                targets=[target],
                health_check=self._health_check(spec.health_check, spec.protocol),
            )
        else:
            load_balancer = elbv2.ApplicationLoadBalancer(
                self.stack,
                node_id,
                vpc=vpc,
                internet_facing=spec.internet_facing,
                vpc_subnets=self._subnets(spec.subnet_group),
                security_group=security_group,
            )
            # Listener rules live on the ingress boundary already.
            listener = load_balancer.add_listener(
                f"{node_id}Listener",
                port=spec.listener_port,
                protocol=elbv2.ApplicationProtocol.HTTP,
                open=False,
            )
            listener.add_targets(
                f"{node_id}Targets",
                port=spec.container_port,
                protocol=elbv2.ApplicationProtocol.HTTP,
                targets=[target],
                health_check=self._health_check(spec.health_check, spec.protocol),
            )
        address = load_balancer.load_balancer_dns_name
        self._output(node_id, address)
        return load_balancer, {"address": address, "dns_name": address}

    @staticmethod
    def _health_check(check, protocol: str) -> elbv2.HealthCheck:
        # A container check runs inside the task; the target group still probes reachability.
        tcp = check.mode == HealthCheckMode.TCP or (
            check.mode == HealthCheckMode.CONTAINER and protocol == "TCP"
        )
        if tcp:
            return elbv2.HealthCheck(protocol=elbv2.Protocol.TCP, port=str(check.port))
        return elbv2.HealthCheck(
            path=check.path, healthy_http_codes=check.healthy_codes, port=str(check.port)
        )

    def _output(self, node_id: str, address: str) -> CfnOutput:
        return CfnOutput(
            self.stack,
            f"{node_id}Address",
            value=address,
            description=f"Public address of {self.context.build_resource_name('site')}",
        )

    # ---------- wiring ----------
    def _grant(self, node_id, spec, context):
        consumer = self._lookup(context, spec.consumer_group_id)
        producer = self._lookup(context, spec.producer_group_id)
        producer.add_ingress_rule(
            peer=consumer,
            connection=ec2.Port.tcp(spec.port),
            description=spec.description or None,
        )
        return None, {"rule_id": node_id}

