"""Per-environment configuration for the routing API stacks."""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from aws_cdk import aws_secretsmanager as sm
from constructs import Construct

from .chains import SUPPORTED_CHAINS, rpc_variable_name
from .errors import UnknownEnvironmentError
from .sources import EnvOverride, Parameter, SecretField, SourceResolver, ValueSource

logger = logging.getLogger(__name__)

REGION = "us-east-2"

SUPPORTED_ENVIRONMENTS: tuple[str, ...] = ("dev", "prod")

# Construct id of the imported secret; one import per stack
SECRET_CONSTRUCT_ID = "RoutingApiSecret"


@dataclass(frozen=True)
class BaseConfig:
    aws_region: str
    aws_account_id: str
    deploy_role_arn: str


@dataclass(frozen=True)
class EnvironmentVariables:
    """Values handed to the routing service, mostly deferred CDK tokens."""

    json_rpc_providers: Mapping[str, str]
    throttle_per_five_mins: str
    tenderly_user: str
    tenderly_project: str
    tenderly_access_key: str
    api_key: str
    caching_lambda_schedule_mins: str
    extra: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def as_dict(self) -> dict[str, str]:
        return {
            **self.json_rpc_providers,
            "THROTTLE_PER_FIVE_MINS": self.throttle_per_five_mins,
            "TENDERLY_USER": self.tenderly_user,
            "TENDERLY_PROJECT": self.tenderly_project,
            "TENDERLY_ACCESS_KEY": self.tenderly_access_key,
            "API_KEY": self.api_key,
            "CACHING_LAMBDA_SCHEDULE_MINS": self.caching_lambda_schedule_mins,
            **self.extra,
        }


@dataclass(frozen=True)
class RoutingConfig:
    aws_region: str
    env_name: str
    secret_arn: str
    vpc_id: str
    default_sg_id: str
    api_gateway_sg_id: str
    vpc_private_subnets: tuple[str, ...]
    vpc_availability_zones: tuple[str, ...]
    environment: EnvironmentVariables


# Static per-environment values. Both environments currently deploy into the
# same account and network.
_BASE_ENVIRONMENTS: dict[str, BaseConfig] = {
    "dev": BaseConfig(
        aws_region=REGION,
        aws_account_id="683031685817",
        deploy_role_arn="arn:aws:iam::683031685817:role/dev-CodebuildGlobal-role",
    ),
    "prod": BaseConfig(
        aws_region=REGION,
        aws_account_id="683031685817",
        deploy_role_arn="arn:aws:iam::683031685817:role/dev-CodebuildGlobal-role",
    ),
}

_NETWORK_ENVIRONMENTS: dict[str, dict[str, object]] = {
    "dev": {
        "secret_arn": "arn:aws:secretsmanager:ap-southeast-3:683031685817:secret:dev-secret-wallet-api-I0DajC",
        "vpc_id": "vpc-0bc90b7c6b50eeefe",
        "default_sg_id": "sg-0703e567213625a09",
        "api_gateway_sg_id": "sg-08a0f283054f417fe",
        "vpc_private_subnets": ("subnet-098bba581a811be27", "subnet-02c391bd516da0e17"),
        "vpc_availability_zones": ("us-east-2a", "us-east-2b"),
    },
    "prod": {
        "secret_arn": "arn:aws:secretsmanager:ap-southeast-3:683031685817:secret:dev-secret-wallet-api-I0DajC",
        "vpc_id": "vpc-0bc90b7c6b50eeefe",
        "default_sg_id": "sg-0703e567213625a09",
        "api_gateway_sg_id": "sg-08a0f283054f417fe",
        "vpc_private_subnets": ("subnet-098bba581a811be27", "subnet-02c391bd516da0e17"),
        "vpc_availability_zones": ("us-east-2a", "us-east-2b"),
    },
}


def environment_variable_sources(env_name: str) -> dict[str, ValueSource]:
    """Where each routing service variable comes from in ``env_name``.

    New variables are added here; anything not mapped to a typed field of
    EnvironmentVariables ends up in its ``extra`` mapping.
    """
    prefix = f"/{env_name}/general/wallet-api"
    sources: dict[str, ValueSource] = {
        rpc_variable_name(chain): Parameter(
            f"{prefix}/JSON_RPC_PROVIDER_{int(chain)}"
        )
        for chain in SUPPORTED_CHAINS
    }
    sources.update(
        {
            "THROTTLE_PER_FIVE_MINS": Parameter(f"{prefix}/THROTTLE_PER_FIVE_MINS"),
            "TENDERLY_USER": SecretField("TENDERLY_USER"),
            "TENDERLY_PROJECT": SecretField("TENDERLY_PROJECT"),
            "TENDERLY_ACCESS_KEY": SecretField("TENDERLY_ACCESS_KEY"),
            "API_KEY": SecretField("API_KEY"),
            "CACHING_LAMBDA_SCHEDULE_MINS": EnvOverride(
                "CACHING_LAMBDA_SCHEDULE_MINS",
                Parameter(f"{prefix}/CACHING_LAMBDA_SCHEDULE_MINS"),
            ),
        }
    )
    return sources


def _environment_variables(values: dict[str, str]) -> EnvironmentVariables:
    values = dict(values)
    rpc_names = [name for name in values if name.startswith("WEB3_RPC_")]
    json_rpc_providers = {name: values.pop(name) for name in rpc_names}
    return EnvironmentVariables(
        json_rpc_providers=MappingProxyType(json_rpc_providers),
        throttle_per_five_mins=values.pop("THROTTLE_PER_FIVE_MINS"),
        tenderly_user=values.pop("TENDERLY_USER"),
        tenderly_project=values.pop("TENDERLY_PROJECT"),
        tenderly_access_key=values.pop("TENDERLY_ACCESS_KEY"),
        api_key=values.pop("API_KEY"),
        caching_lambda_schedule_mins=values.pop("CACHING_LAMBDA_SCHEDULE_MINS"),
        extra=MappingProxyType(values),
    )


def base_environment_config(env_name: str) -> Optional[BaseConfig]:
    """Return the static account settings for ``env_name``, or None."""
    return _BASE_ENVIRONMENTS.get(env_name)


def require_base_environment_config(env_name: str) -> BaseConfig:
    config = base_environment_config(env_name)
    if config is None:
        raise UnknownEnvironmentError(env_name, SUPPORTED_ENVIRONMENTS)
    return config


def environment_config(
    scope: Construct,
    env_name: str,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[RoutingConfig]:
    """Resolve the full configuration for ``env_name`` within ``scope``.

    SSM parameters and secret fields are declared on ``scope`` and come back
    as deferred tokens. ``environ`` supplies process overrides and defaults
    to ``os.environ``.

    Returns:
        The resolved configuration, or None when ``env_name`` is unknown.
    """
    network = _NETWORK_ENVIRONMENTS.get(env_name)
    if network is None:
        return None

    logger.info("Resolving routing API configuration for environment %s", env_name)

    secret_arn = network["secret_arn"]
    secret = sm.Secret.from_secret_complete_arn(scope, SECRET_CONSTRUCT_ID, secret_arn)
    resolver = SourceResolver(scope, secret, environ)
    values = resolver.resolve_all(environment_variable_sources(env_name))

    return RoutingConfig(
        aws_region=REGION,
        env_name=env_name,
        secret_arn=secret_arn,
        vpc_id=network["vpc_id"],
        default_sg_id=network["default_sg_id"],
        api_gateway_sg_id=network["api_gateway_sg_id"],
        vpc_private_subnets=tuple(network["vpc_private_subnets"]),
        vpc_availability_zones=tuple(network["vpc_availability_zones"]),
        environment=_environment_variables(values),
    )


def require_environment_config(
    scope: Construct,
    env_name: str,
    environ: Optional[Mapping[str, str]] = None,
) -> RoutingConfig:
    config = environment_config(scope, env_name, environ)
    if config is None:
        raise UnknownEnvironmentError(env_name, SUPPORTED_ENVIRONMENTS)
    return config


def environment_secret_arn(env_name: str) -> str:
    """ARN of the routing API secret used by ``env_name``."""
    require_base_environment_config(env_name)
    return _NETWORK_ENVIRONMENTS[env_name]["secret_arn"]
