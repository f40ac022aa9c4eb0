from .chains import CHAINS_NOT_MONITORED, SUPPORTED_CHAINS, ChainId, monitored_chains
from .environments import (
    SUPPORTED_ENVIRONMENTS,
    BaseConfig,
    EnvironmentVariables,
    RoutingConfig,
    base_environment_config,
    environment_config,
    require_base_environment_config,
    require_environment_config,
)
from .errors import ConfigurationError, UnknownEnvironmentError
from .parameters import DeploymentParameters, Stage

__all__ = [
    "CHAINS_NOT_MONITORED",
    "SUPPORTED_CHAINS",
    "SUPPORTED_ENVIRONMENTS",
    "BaseConfig",
    "ChainId",
    "ConfigurationError",
    "DeploymentParameters",
    "EnvironmentVariables",
    "RoutingConfig",
    "Stage",
    "UnknownEnvironmentError",
    "base_environment_config",
    "environment_config",
    "monitored_chains",
    "require_base_environment_config",
    "require_environment_config",
]
