#!/usr/bin/env python3
"""
AWS CDK App Entry Point for Routing API Infrastructure.

Usage:
    # Synthesize CloudFormation templates
    ENV_NAME=dev cdk synth

    # Deploy to AWS
    cdk deploy --context envName=prod --context stage=prod \
        --context chatbotSNSArn=arn:aws:sns:us-east-2:123456789012:alerts

    # Check SSM parameters and secrets before deploying
    routing-api-preflight --env prod
"""

import logging
import os

import aws_cdk as cdk

from routing_config import DeploymentParameters, require_base_environment_config
from stacks.routing_api_stack import RoutingAPIStack


logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("routing_api.app")

app = cdk.App()

# Environment configuration
env_name = app.node.try_get_context("envName") or os.environ.get("ENV_NAME", "dev")
base_config = require_base_environment_config(env_name)
parameters = DeploymentParameters.from_context(app.node)

logger.info(
    "Synthesizing routing API for environment %s (stage %s) in %s",
    env_name,
    parameters.stage.value,
    base_config.aws_region,
)

RoutingAPIStack(
    app,
    "RoutingAPIStack",
    env_name=env_name,
    parameters=parameters,
    env=cdk.Environment(
        account=base_config.aws_account_id,
        region=base_config.aws_region,
    ),
    synthesizer=cdk.DefaultStackSynthesizer(
        deploy_role_arn=base_config.deploy_role_arn,
    ),
    description=f"Routing API - API Gateway, Lambda, caches and alarms ({env_name})",
)

# Add tags to all resources
cdk.Tags.of(app).add("Project", "routing-api")
cdk.Tags.of(app).add("Environment", env_name)
cdk.Tags.of(app).add("ManagedBy", "CDK")

app.synth()
