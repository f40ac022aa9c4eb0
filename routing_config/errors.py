"""Errors raised while building the routing API configuration."""


class ConfigurationError(Exception):
    """Raised when deployment configuration is missing or malformed."""


class UnknownEnvironmentError(ConfigurationError):
    """Raised when an environment name has no configuration entry."""

    def __init__(self, env_name: str, supported: tuple[str, ...]) -> None:
        self.env_name = env_name
        self.supported = supported
        super().__init__(
            f"Unknown environment '{env_name}'. Choose from: {list(supported)}"
        )
