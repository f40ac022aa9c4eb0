"""
Preflight check for the routing API deploy.

CloudFormation only notices a missing SSM parameter or secret field when it
applies the stack. This check asks SSM and Secrets Manager up front for every
reference the configuration for an environment will make.

Usage:
    routing-api-preflight --env dev
    python -m routing_config.preflight --env prod --region us-east-2
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import boto3
from botocore.exceptions import ClientError

from .environments import (
    SUPPORTED_ENVIRONMENTS,
    environment_secret_arn,
    environment_variable_sources,
    require_base_environment_config,
)
from .sources import parameter_paths, secret_keys

logger = logging.getLogger(__name__)

# GetParameters accepts at most 10 names per call
SSM_BATCH_SIZE = 10


@dataclass
class PreflightReport:
    env_name: str
    missing_parameters: list[str] = field(default_factory=list)
    missing_secret_keys: list[str] = field(default_factory=list)
    secret_found: bool = True

    @property
    def ok(self) -> bool:
        return (
            self.secret_found
            and not self.missing_parameters
            and not self.missing_secret_keys
        )


def find_missing_parameters(ssm_client: Any, paths: list[str]) -> list[str]:
    """Return the SSM paths in ``paths`` that do not exist."""
    missing: list[str] = []
    for start in range(0, len(paths), SSM_BATCH_SIZE):
        batch = paths[start : start + SSM_BATCH_SIZE]
        response = ssm_client.get_parameters(Names=batch)
        missing.extend(response.get("InvalidParameters", []))
    return missing


def find_missing_secret_keys(
    secrets_client: Any, secret_arn: str, keys: list[str]
) -> Optional[list[str]]:
    """Return the JSON fields in ``keys`` absent from the secret.

    Returns None when the secret itself does not exist.
    """
    try:
        response = secrets_client.get_secret_value(SecretId=secret_arn)
    except ClientError as e:
        if e.response["Error"]["Code"] == "ResourceNotFoundException":
            return None
        raise

    try:
        payload = json.loads(response.get("SecretString") or "{}")
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    return [key for key in keys if key not in payload]


def run_preflight(
    env_name: str,
    ssm_client: Any,
    secrets_client: Any,
    environ: Optional[Mapping[str, str]] = None,
) -> PreflightReport:
    """Check every deferred reference of ``env_name``.

    Raises:
        UnknownEnvironmentError: If ``env_name`` is not supported.
    """
    require_base_environment_config(env_name)
    environ = os.environ if environ is None else environ
    sources = environment_variable_sources(env_name)
    secret_arn = environment_secret_arn(env_name)

    report = PreflightReport(env_name=env_name)
    report.missing_parameters = find_missing_parameters(
        ssm_client, parameter_paths(sources, environ)
    )
    missing_keys = find_missing_secret_keys(
        secrets_client, secret_arn, secret_keys(sources, environ)
    )
    if missing_keys is None:
        report.secret_found = False
    else:
        report.missing_secret_keys = missing_keys

    for path in report.missing_parameters:
        logger.warning("Missing SSM parameter: %s", path)
    if not report.secret_found:
        logger.warning("Secret not found: %s", secret_arn)
    for key in report.missing_secret_keys:
        logger.warning("Secret %s has no field %s", secret_arn, key)
    return report


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Verify SSM parameters and secrets referenced by the routing API stack"
    )
    parser.add_argument(
        "--env",
        default=os.environ.get("ENV_NAME", "dev"),
        choices=SUPPORTED_ENVIRONMENTS,
        help="Environment to check (default: $ENV_NAME or dev)",
    )
    parser.add_argument("--region", help="AWS region (default: the environment's region)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    region = args.region or require_base_environment_config(args.env).aws_region
    secret_region = environment_secret_arn(args.env).split(":")[3]
    report = run_preflight(
        args.env,
        ssm_client=boto3.client("ssm", region_name=region),
        secrets_client=boto3.client("secretsmanager", region_name=secret_region),
    )

    if report.ok:
        logger.info("All references for environment %s are present", args.env)
        return 0
    logger.error("Preflight failed for environment %s", args.env)
    return 1


if __name__ == "__main__":
    sys.exit(main())
