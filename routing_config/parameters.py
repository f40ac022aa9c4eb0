"""Deployment-time parameters supplied by the invoking deploy process."""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from constructs import Node

from .errors import ConfigurationError

DEFAULT_LAMBDA_BUNDLE_PATH = Path(__file__).parent.parent / "dist"


class Stage(str, Enum):
    BETA = "beta"
    PROD = "prod"
    LOCAL = "local"


@dataclass(frozen=True)
class DeploymentParameters:
    stage: Stage = Stage.BETA
    provisioned_concurrency: int = 0
    throttling_override: Optional[str] = None
    eth_gas_station_info_url: str = ""
    chatbot_sns_arn: Optional[str] = None
    internal_api_key: Optional[str] = None
    route53_arn: Optional[str] = None
    pinata_key: Optional[str] = None
    pinata_secret: Optional[str] = None
    hosted_zone: Optional[str] = None
    tenderly_user: Optional[str] = None
    tenderly_project: Optional[str] = None
    tenderly_access_key: Optional[str] = None
    lambda_bundle_path: Path = DEFAULT_LAMBDA_BUNDLE_PATH

    def __post_init__(self) -> None:
        if self.throttling_override is not None:
            parse_int("throttlingOverride", self.throttling_override)
        if self.provisioned_concurrency < 0:
            raise ConfigurationError(
                "provisionedConcurrency must not be negative, "
                f"got {self.provisioned_concurrency}"
            )

    @property
    def throttling_limit(self) -> Optional[int]:
        if self.throttling_override is None:
            return None
        return parse_int("throttlingOverride", self.throttling_override)

    @classmethod
    def from_context(
        cls,
        node: Node,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "DeploymentParameters":
        """Build parameters from CDK context, falling back to environment variables.

        Args:
            node: Construct node whose context is consulted (usually ``app.node``)
            environ: Environment variables; defaults to ``os.environ``

        Raises:
            ConfigurationError: If a value cannot be parsed.
        """
        environ = os.environ if environ is None else environ

        def lookup(context_key: str, env_var: str) -> Optional[str]:
            value = node.try_get_context(context_key)
            if value is None or value == "":
                value = environ.get(env_var)
            if value is None or value == "":
                return None
            return str(value)

        stage_value = lookup("stage", "STAGE") or Stage.BETA.value
        try:
            stage = Stage(stage_value)
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown stage '{stage_value}'. "
                f"Choose from: {[s.value for s in Stage]}"
            ) from e

        concurrency = lookup("provisionedConcurrency", "PROVISION_CONCURRENCY")
        bundle_path = lookup("lambdaBundlePath", "LAMBDA_BUNDLE_PATH")

        return cls(
            stage=stage,
            provisioned_concurrency=(
                parse_int("provisionedConcurrency", concurrency) if concurrency else 0
            ),
            throttling_override=lookup("throttlingOverride", "THROTTLE_PER_FIVE_MINS"),
            eth_gas_station_info_url=lookup(
                "ethGasStationInfoUrl", "ETH_GAS_STATION_INFO_URL"
            )
            or "",
            chatbot_sns_arn=lookup("chatbotSNSArn", "CHATBOT_SNS_ARN"),
            internal_api_key=lookup("internalApiKey", "INTERNAL_API_KEY"),
            route53_arn=lookup("route53Arn", "ROUTE53_ARN"),
            pinata_key=lookup("pinataKey", "PINATA_API_KEY"),
            pinata_secret=lookup("pinataSecret", "PINATA_API_SECRET"),
            hosted_zone=lookup("hostedZone", "HOSTED_ZONE"),
            tenderly_user=lookup("tenderlyUser", "TENDERLY_USER"),
            tenderly_project=lookup("tenderlyProject", "TENDERLY_PROJECT"),
            tenderly_access_key=lookup("tenderlyAccessKey", "TENDERLY_ACCESS_KEY"),
            lambda_bundle_path=(
                Path(bundle_path) if bundle_path else DEFAULT_LAMBDA_BUNDLE_PATH
            ),
        )


def parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got '{value}'") from e
