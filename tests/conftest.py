"""Pytest fixtures for routing API infrastructure tests."""

import os
import sys
import warnings

import aws_cdk as cdk
import boto3
import pytest
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from routing_config.parameters import DeploymentParameters  # noqa: E402
from stacks.routing_api_stack import RoutingAPIStack  # noqa: E402

# Suppress SSL warnings for LocalStack
warnings.filterwarnings("ignore", message="Unverified HTTPS request")


@pytest.fixture
def app():
    """Create CDK app for testing."""
    return cdk.App()


@pytest.fixture
def env():
    """Create CDK environment for testing."""
    return cdk.Environment(account="123456789012", region="us-east-2")


@pytest.fixture
def lambda_bundle(tmp_path):
    """Directory standing in for the built routing service bundle."""
    bundle = tmp_path / "dist"
    bundle.mkdir()
    (bundle / "index.js").write_text("exports.quoteHandler = async () => ({});\n")
    return bundle


@pytest.fixture
def make_parameters(lambda_bundle):
    """Build DeploymentParameters pointing at the test bundle."""

    def _make(**overrides):
        overrides.setdefault("lambda_bundle_path", lambda_bundle)
        return DeploymentParameters(**overrides)

    return _make


@pytest.fixture
def make_stack(app, env, make_parameters):
    """Build a RoutingAPIStack for the dev environment."""

    def _make(env_name="dev", environ=None, **parameter_overrides):
        return RoutingAPIStack(
            app,
            "TestRoutingAPI",
            env_name=env_name,
            parameters=make_parameters(**parameter_overrides),
            environ={} if environ is None else environ,
            env=env,
        )

    return _make


@pytest.fixture(scope="session")
def localstack_endpoint():
    """Return LocalStack endpoint URL (port 443 as configured)."""
    return os.environ.get("LOCALSTACK_ENDPOINT", "https://localhost:443")


@pytest.fixture(scope="session")
def aws_credentials():
    """Set mock AWS credentials for LocalStack."""
    os.environ["AWS_ACCESS_KEY_ID"] = "test"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "test"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-2"
    yield


def _localstack_client(service, endpoint):
    return boto3.client(
        service,
        endpoint_url=endpoint,
        region_name="us-east-2",
        aws_access_key_id="test",
        aws_secret_access_key="test",
        verify=False,
        config=Config(connect_timeout=2, retries={"max_attempts": 1}),
    )


@pytest.fixture(scope="session")
def ssm_client(localstack_endpoint, aws_credentials):
    """Create SSM client pointing to LocalStack, skipping when it is down."""
    client = _localstack_client("ssm", localstack_endpoint)
    try:
        client.describe_parameters(MaxResults=1)
    except (BotoCoreError, ClientError) as e:
        pytest.skip(f"LocalStack not available: {e}")
    return client


@pytest.fixture(scope="session")
def secretsmanager_client(localstack_endpoint, aws_credentials):
    """Create Secrets Manager client pointing to LocalStack."""
    client = _localstack_client("secretsmanager", localstack_endpoint)
    try:
        client.list_secrets(MaxResults=1)
    except (BotoCoreError, ClientError) as e:
        pytest.skip(f"LocalStack not available: {e}")
    return client
