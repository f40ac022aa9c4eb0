"""
Value sources for environment configuration.

Every configuration value comes from exactly one source:

    Literal       a constant known at synth time
    Parameter     an SSM Parameter Store path, resolved by CloudFormation at deploy time
    SecretField   a JSON field of the routing API secret in Secrets Manager
    EnvOverride   a process environment variable, else a fallback source

Parameter and SecretField values come back as CDK tokens. Nothing is fetched
while the app is synthesized; a missing parameter or secret field fails the
deploy, not the synth.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Union

from aws_cdk import aws_secretsmanager as sm
from aws_cdk import aws_ssm as ssm
from constructs import Construct

from .errors import ConfigurationError


@dataclass(frozen=True)
class Literal:
    value: str


@dataclass(frozen=True)
class Parameter:
    path: str


@dataclass(frozen=True)
class SecretField:
    key: str


@dataclass(frozen=True)
class EnvOverride:
    variable: str
    fallback: "ValueSource"


ValueSource = Union[Literal, Parameter, SecretField, EnvOverride]


class SourceResolver:
    """Resolves value sources against one construct scope and one secret."""

    def __init__(
        self,
        scope: Construct,
        secret: sm.ISecret,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.scope = scope
        self.secret = secret
        self.environ = os.environ if environ is None else environ

    def resolve(self, source: ValueSource) -> str:
        if isinstance(source, Literal):
            return source.value
        if isinstance(source, Parameter):
            return ssm.StringParameter.value_for_string_parameter(
                self.scope, source.path
            )
        if isinstance(source, SecretField):
            return self.secret.secret_value_from_json(source.key).unsafe_unwrap()
        if isinstance(source, EnvOverride):
            override = self.environ.get(source.variable)
            if override:
                return override
            return self.resolve(source.fallback)
        raise ConfigurationError(f"Unsupported value source: {source!r}")

    def resolve_all(self, sources: Mapping[str, ValueSource]) -> dict[str, str]:
        return {name: self.resolve(source) for name, source in sources.items()}


def _effective_source(
    source: ValueSource, environ: Optional[Mapping[str, str]]
) -> Optional[ValueSource]:
    """Follow EnvOverride chains; None when an override is set in ``environ``."""
    while isinstance(source, EnvOverride):
        if environ is not None and environ.get(source.variable):
            return None
        source = source.fallback
    return source


def parameter_paths(
    sources: Mapping[str, ValueSource],
    environ: Optional[Mapping[str, str]] = None,
) -> list[str]:
    """SSM paths referenced by ``sources``.

    EnvOverride fallbacks count unless ``environ`` sets the override.
    """
    paths = []
    for source in sources.values():
        source = _effective_source(source, environ)
        if isinstance(source, Parameter):
            paths.append(source.path)
    return paths


def secret_keys(
    sources: Mapping[str, ValueSource],
    environ: Optional[Mapping[str, str]] = None,
) -> list[str]:
    """Secret JSON fields referenced by ``sources``."""
    keys = []
    for source in sources.values():
        source = _effective_source(source, environ)
        if isinstance(source, SecretField):
            keys.append(source.key)
    return keys
