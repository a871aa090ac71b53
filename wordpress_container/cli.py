"""Command line entry point: plan, deploy, destroy or synthesize a topology.

``deploy`` and ``destroy`` run against the local control plane, which keeps
its state in ``$WORDPRESS_CONTAINER_STATE_DIR/<topology>.json``. ``synth``
renders the same graph with CDK and writes a cloud assembly that ``cdk deploy``
can pick up.
"""
import argparse
import os
import sys
from typing import Optional, Sequence

import aws_cdk as cdk
from aws_cdk import Environment
from aws_lambda_powertools import Logger

import common.constants as constants
from common.errors import CompositionError
from composition.deployer import Deployer, DeploymentReport, NodeStatus
from control_plane.local import LocalControlPlane, state_file
from topologies import registry
from wordpress_container.wordpress_stage import WordpressStage

logger = Logger(service=constants.SERVICE_NAME, level=constants.LOG_LEVEL)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=constants.SERVICE_NAME,
        description="Compose and provision WordPress container topologies on AWS.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    plan = commands.add_parser("plan", help="print the realization order")
    plan.add_argument("topology", choices=registry.names())

    deploy = commands.add_parser("deploy", help="realize a topology with the local control plane")
    deploy.add_argument("topology", choices=registry.names())
    deploy.add_argument("--state-dir", default=None, help="directory holding deployment state")
    deploy.add_argument(
        "--resume",
        action="store_true",
        help="reuse resources recorded by an earlier, partial deployment without touching them",
    )

    destroy = commands.add_parser("destroy", help="release a topology in reverse creation order")
    destroy.add_argument("topology", choices=registry.names())
    destroy.add_argument("--state-dir", default=None, help="directory holding deployment state")

    synth = commands.add_parser("synth", help="write the CDK cloud assembly for a topology")
    synth.add_argument("topology", choices=registry.names())
    synth.add_argument("--output", default="cdk.out", help="cloud assembly directory")
    return parser


def plan(args) -> int:
    graph = registry.blueprint(args.topology).build()
    for position, node_id in enumerate(graph.realization_order(), start=1):
        node = graph.node(node_id)
        print(f"{position:>3}. {node_id} ({node.kind.value})")
    return 0


def deploy(args) -> int:
    graph = registry.blueprint(args.topology).build()
    control_plane = LocalControlPlane(state_file(args.topology, args.state_dir))
    previous = None
    if args.resume:
        recorded = control_plane.inventory()
        previous = DeploymentReport(
            topology=args.topology,
            order=tuple(resource.node_id for resource in recorded),
            realized={resource.node_id: resource for resource in recorded},
        )
    deployer = Deployer(control_plane)
    report = deployer.deploy(graph, resume_from=previous)

    for node_id in report.order:
        print(f"{report.statuses[node_id].value:>14}  {node_id}")
    if not report.ok:
        print(f"Deployment failed at {report.failed_node}: {report.error}", file=sys.stderr)
        return 1

    # Release resources the declaration no longer names, newest first.
    pruned = deployer.destroy(control_plane.settle(report.order))
    for node_id in pruned.released:
        print(f"released  {node_id}")
    if not pruned.ok:
        print(f"Pruning stopped at {pruned.remaining[0]}: {pruned.error}", file=sys.stderr)
        return 1
    for node_id, address in report.outputs.items():
        print(f"{node_id}: {address}")
    logger.info(
        "Deploy finished",
        topology=args.topology,
        reused=len(report.nodes_with(NodeStatus.REUSED)),
    )
    return 0


def destroy(args) -> int:
    control_plane = LocalControlPlane(state_file(args.topology, args.state_dir))
    report = Deployer(control_plane).destroy(control_plane.inventory())
    for node_id in report.released:
        print(f"released  {node_id}")
    if not report.ok:
        print(f"Destroy stopped at {report.remaining[0]}: {report.error}", file=sys.stderr)
        return 1
    return 0


def synth(args) -> int:
    app = cdk.App(outdir=args.output)
    env = Environment(
        account=os.getenv("CDK_DEFAULT_ACCOUNT"),
        region=os.getenv("CDK_DEFAULT_REGION"),
    )
    WordpressStage(app, registry.stage_id(args.topology), topology=args.topology, env=env)
    assembly = app.synth()
    print(assembly.directory)
    return 0


COMMANDS = {"plan": plan, "deploy": deploy, "destroy": destroy, "synth": synth}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return COMMANDS[args.command](args)
    except CompositionError as exc:
        logger.exception("Command failed", command=args.command, topology=args.topology)
        print(f"{args.command} {args.topology}: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
