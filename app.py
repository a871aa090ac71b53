#!/usr/bin/env python3
"""AWS CDK entrypoint for the WordPress container topologies.

Each registered topology becomes its own Stage (``Ec2MinimumStage``,
``FargateAuroraEfsStage``, ``FargatePrivateStage``) holding a single stack.
All stages share one environment taken from the CDK CLI defaults; deploy one
with e.g. ``cdk deploy "FargateAuroraEfsStage/*"``.
"""
import os

import aws_cdk as cdk
from aws_cdk import Environment

from topologies import registry
from wordpress_container.wordpress_stage import WordpressStage

app = cdk.App()

env = Environment(
    account=os.getenv("CDK_DEFAULT_ACCOUNT"),
    region=os.getenv("CDK_DEFAULT_REGION"),
)

for topology in registry.names():
    WordpressStage(app, registry.stage_id(topology), topology=topology, env=env)

app.synth()
