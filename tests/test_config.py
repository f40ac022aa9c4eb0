"""Tests for environment resolution and deployment parameters."""

import dataclasses
from pathlib import Path

import aws_cdk as cdk
from aws_cdk import aws_secretsmanager as sm
import pytest

from routing_config.chains import (
    CHAINS_NOT_MONITORED,
    SUPPORTED_CHAINS,
    ChainId,
    monitored_chains,
)
from routing_config.environments import (
    SUPPORTED_ENVIRONMENTS,
    base_environment_config,
    environment_config,
    environment_variable_sources,
    require_base_environment_config,
    require_environment_config,
)
from routing_config.errors import ConfigurationError, UnknownEnvironmentError
from routing_config.parameters import DeploymentParameters, Stage
from routing_config.sources import (
    EnvOverride,
    Literal,
    Parameter,
    SecretField,
    SourceResolver,
    parameter_paths,
    secret_keys,
)


@pytest.fixture
def stack(app, env):
    """Bare stack to resolve configuration into."""
    return cdk.Stack(app, "ConfigTest", env=env)


class TestBaseEnvironmentConfig:
    """Tests for the static per-environment account settings."""

    @pytest.mark.parametrize("env_name", SUPPORTED_ENVIRONMENTS)
    def test_supported_environments_resolve(self, env_name):
        config = base_environment_config(env_name)

        assert config is not None
        assert config.aws_region == "us-east-2"
        assert config.aws_account_id.isdigit()
        assert config.deploy_role_arn.startswith("arn:aws:iam::")

    def test_unknown_environment_returns_none(self):
        assert base_environment_config("staging") is None

    def test_require_rejects_unknown_environment(self):
        with pytest.raises(UnknownEnvironmentError) as exc_info:
            require_base_environment_config("staging")

        assert exc_info.value.env_name == "staging"
        assert "dev" in str(exc_info.value)


class TestEnvironmentConfig:
    """Tests for resolving the full routing configuration."""

    @pytest.mark.parametrize("env_name", SUPPORTED_ENVIRONMENTS)
    def test_every_field_populated(self, app, env, env_name):
        stack = cdk.Stack(app, f"ConfigTest-{env_name}", env=env)
        config = environment_config(stack, env_name, environ={})

        assert config is not None
        for field in dataclasses.fields(config):
            assert getattr(config, field.name), f"{field.name} is empty"
        for name, value in config.environment.as_dict().items():
            assert value, f"{name} is empty"

    def test_unknown_environment_returns_none(self, stack):
        assert environment_config(stack, "staging", environ={}) is None

    def test_require_rejects_unknown_environment(self, stack):
        with pytest.raises(UnknownEnvironmentError):
            require_environment_config(stack, "staging", environ={})

    def test_rpc_provider_for_every_supported_chain(self, stack):
        config = environment_config(stack, "dev", environ={})

        assert set(config.environment.json_rpc_providers) == {
            f"WEB3_RPC_{int(chain)}" for chain in SUPPORTED_CHAINS
        }

    def test_parameter_values_are_deferred(self, stack):
        config = environment_config(stack, "dev", environ={})

        assert cdk.Token.is_unresolved(config.environment.json_rpc_providers["WEB3_RPC_1"])
        assert cdk.Token.is_unresolved(config.environment.caching_lambda_schedule_mins)

    def test_api_key_comes_from_secret(self, stack):
        config = environment_config(stack, "dev", environ={})

        resolved = stack.resolve(config.environment.api_key)
        assert "resolve:secretsmanager" in str(resolved)
        assert "API_KEY" in str(resolved)

    def test_schedule_override_from_environ(self, stack):
        config = environment_config(
            stack, "dev", environ={"CACHING_LAMBDA_SCHEDULE_MINS": "10"}
        )

        assert config.environment.caching_lambda_schedule_mins == "10"

    def test_network_identifiers(self, stack):
        config = environment_config(stack, "dev", environ={})

        assert config.vpc_id.startswith("vpc-")
        assert config.default_sg_id.startswith("sg-")
        assert config.api_gateway_sg_id.startswith("sg-")
        assert all(s.startswith("subnet-") for s in config.vpc_private_subnets)
        assert len(config.vpc_private_subnets) == len(config.vpc_availability_zones)

    def test_config_is_immutable(self, stack):
        config = environment_config(stack, "dev", environ={})

        with pytest.raises(dataclasses.FrozenInstanceError):
            config.vpc_id = "vpc-other"
        with pytest.raises(TypeError):
            config.environment.json_rpc_providers["WEB3_RPC_1"] = "http://localhost"

    def test_single_resolution_per_scope(self, stack):
        environment_config(stack, "dev", environ={})

        with pytest.raises(Exception, match="RoutingApiSecret"):
            environment_config(stack, "dev", environ={})


class TestValueSources:
    """Tests for value source resolution and inspection."""

    def test_literal_resolves_to_itself(self, stack):
        secret = sm.Secret.from_secret_name_v2(stack, "S", "s")
        resolver = SourceResolver(stack, secret, environ={})

        assert resolver.resolve(Literal("15")) == "15"

    def test_env_override_falls_back(self, stack):
        secret = sm.Secret.from_secret_name_v2(stack, "S", "s")
        source = EnvOverride("SCHEDULE", Literal("15"))

        assert SourceResolver(stack, secret, environ={}).resolve(source) == "15"
        assert (
            SourceResolver(stack, secret, environ={"SCHEDULE": "5"}).resolve(source)
            == "5"
        )

    def test_unsupported_source_raises(self, stack):
        secret = sm.Secret.from_secret_name_v2(stack, "S", "s")

        with pytest.raises(ConfigurationError):
            SourceResolver(stack, secret, environ={}).resolve("not-a-source")

    def test_parameter_paths_skip_overridden(self):
        sources = {
            "A": Parameter("/a"),
            "B": EnvOverride("B", Parameter("/b")),
            "C": SecretField("C"),
        }

        assert parameter_paths(sources) == ["/a", "/b"]
        assert parameter_paths(sources, environ={"B": "1"}) == ["/a"]
        assert secret_keys(sources) == ["C"]

    def test_dev_sources_reference_env_prefix(self):
        paths = parameter_paths(environment_variable_sources("dev"))

        assert "/dev/general/wallet-api/JSON_RPC_PROVIDER_1" in paths
        assert all(p.startswith("/dev/general/wallet-api/") for p in paths)


class TestChains:
    """Tests for the monitored chain list."""

    def test_excluded_chains_not_monitored(self):
        chains = monitored_chains()

        for chain in CHAINS_NOT_MONITORED:
            assert chain not in chains

    def test_other_chains_monitored_once(self):
        chains = monitored_chains()

        expected = [c for c in SUPPORTED_CHAINS if c not in CHAINS_NOT_MONITORED]
        assert chains == expected
        assert len(chains) == len(set(chains))

    def test_duplicates_collapsed(self):
        chains = monitored_chains(
            (ChainId.MAINNET, ChainId.MAINNET, ChainId.GOERLI), (ChainId.GOERLI,)
        )

        assert chains == [ChainId.MAINNET]


class TestDeploymentParameters:
    """Tests for reading deployment parameters."""

    def test_defaults(self):
        params = DeploymentParameters.from_context(cdk.App().node, environ={})

        assert params.stage == Stage.BETA
        assert params.provisioned_concurrency == 0
        assert params.throttling_override is None
        assert params.throttling_limit is None
        assert params.chatbot_sns_arn is None

    def test_context_wins_over_environ(self):
        app = cdk.App(context={"stage": "prod", "throttlingOverride": "300"})
        params = DeploymentParameters.from_context(
            app.node,
            environ={"STAGE": "beta", "THROTTLE_PER_FIVE_MINS": "50"},
        )

        assert params.stage == Stage.PROD
        assert params.throttling_limit == 300

    def test_environ_fallback(self):
        params = DeploymentParameters.from_context(
            cdk.App().node,
            environ={
                "PROVISION_CONCURRENCY": "5",
                "CHATBOT_SNS_ARN": "arn:aws:sns:us-east-2:123456789012:alerts",
                "LAMBDA_BUNDLE_PATH": "/tmp/bundle",
            },
        )

        assert params.provisioned_concurrency == 5
        assert params.chatbot_sns_arn == "arn:aws:sns:us-east-2:123456789012:alerts"
        assert params.lambda_bundle_path == Path("/tmp/bundle")

    def test_invalid_throttling_override(self):
        with pytest.raises(ConfigurationError, match="throttlingOverride"):
            DeploymentParameters(throttling_override="lots")

    def test_invalid_provisioned_concurrency(self):
        with pytest.raises(ConfigurationError, match="provisionedConcurrency"):
            DeploymentParameters.from_context(
                cdk.App().node, environ={"PROVISION_CONCURRENCY": "many"}
            )

    def test_unknown_stage(self):
        with pytest.raises(ConfigurationError, match="stage"):
            DeploymentParameters.from_context(cdk.App().node, environ={"STAGE": "qa"})
