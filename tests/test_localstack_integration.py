"""
Integration tests for the preflight check against LocalStack.

These tests require LocalStack to be running on port 443 and skip otherwise.
Run with: pytest tests/test_localstack_integration.py -v

Prerequisites:
1. LocalStack running: docker run -d -p 443:443 localstack/localstack
"""

import json

import pytest
from botocore.exceptions import ClientError

from routing_config import preflight


class TestLocalStackSSM:
    """Test SSM Parameter Store lookups against LocalStack."""

    @pytest.mark.integration
    def test_missing_parameters_detected(self, ssm_client):
        """Only the parameter that was never written is reported."""
        present = "/test/routing-api/JSON_RPC_PROVIDER_1"
        absent = "/test/routing-api/JSON_RPC_PROVIDER_56"

        try:
            ssm_client.put_parameter(
                Name=present,
                Value="https://rpc.example.com",
                Type="String",
                Overwrite=True,
            )

            missing = preflight.find_missing_parameters(ssm_client, [present, absent])
            assert missing == [absent]

            # Cleanup
            ssm_client.delete_parameter(Name=present)

        except ClientError as e:
            pytest.skip(f"LocalStack not available: {e}")


class TestLocalStackSecretsManager:
    """Test Secrets Manager lookups against LocalStack."""

    @pytest.mark.integration
    def test_missing_secret_fields_detected(self, secretsmanager_client):
        """Fields absent from the secret JSON are reported."""
        secret_name = "test-routing-api-secret"

        try:
            response = secretsmanager_client.create_secret(
                Name=secret_name,
                SecretString=json.dumps({"API_KEY": "a" * 20}),
            )

            missing = preflight.find_missing_secret_keys(
                secretsmanager_client, response["ARN"], ["API_KEY", "TENDERLY_USER"]
            )
            assert missing == ["TENDERLY_USER"]

            # Cleanup
            secretsmanager_client.delete_secret(
                SecretId=secret_name, ForceDeleteWithoutRecovery=True
            )

        except ClientError as e:
            pytest.skip(f"LocalStack not available: {e}")

    @pytest.mark.integration
    def test_unknown_secret(self, secretsmanager_client):
        """A secret that does not exist is reported as None."""
        try:
            missing = preflight.find_missing_secret_keys(
                secretsmanager_client,
                "arn:aws:secretsmanager:us-east-2:000000000000:secret:does-not-exist-AbCdEf",
                ["API_KEY"],
            )
            assert missing is None

        except ClientError as e:
            pytest.skip(f"LocalStack not available: {e}")
