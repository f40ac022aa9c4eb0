"""Lambda Stack - the routing Lambda behind the quote endpoint."""

from pathlib import Path
from typing import Mapping, Optional, Sequence

from aws_cdk import (
    NestedStack,
    Duration,
    aws_cloudwatch as cloudwatch,
    aws_cloudwatch_actions as cloudwatch_actions,
    aws_dynamodb as dynamodb,
    aws_ec2 as ec2,
    aws_lambda as lambda_,
    aws_s3 as s3,
    aws_sns as sns,
)
from constructs import Construct

QUOTE_HANDLER = "index.quoteHandler"
LIVE_ALIAS_NAME = "live"


class RoutingLambdaStack(NestedStack):
    """Nested stack containing the routing Lambda and its live alias."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        pool_cache_bucket: s3.IBucket,
        pool_cache_bucket2: s3.IBucket,
        pool_cache_key: str,
        token_list_cache_bucket: s3.IBucket,
        json_rpc_providers: Mapping[str, str],
        cached_routes_dynamo_db: dynamodb.ITable,
        cached_v3_pools_dynamo_db: dynamodb.ITable,
        vpc: ec2.IVpc,
        subnet_filters: Sequence[ec2.SubnetFilter],
        security_group: ec2.ISecurityGroup,
        lambda_bundle_path: Path,
        provisioned_concurrency: int = 0,
        eth_gas_station_info_url: str = "",
        chatbot_sns_arn: Optional[str] = None,
        tenderly_user: str = "",
        tenderly_project: str = "",
        tenderly_access_key: str = "",
        throttle_per_five_mins: str = "",
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        environment = {
            "VERSION": "1",
            "NODE_OPTIONS": "--enable-source-maps",
            "POOL_CACHE_BUCKET": pool_cache_bucket.bucket_name,
            "POOL_CACHE_BUCKET_2": pool_cache_bucket2.bucket_name,
            "POOL_CACHE_KEY": pool_cache_key,
            "TOKEN_LIST_CACHE_BUCKET": token_list_cache_bucket.bucket_name,
            "ETH_GAS_STATION_INFO_URL": eth_gas_station_info_url,
            "TENDERLY_USER": tenderly_user,
            "TENDERLY_PROJECT": tenderly_project,
            "TENDERLY_ACCESS_KEY": tenderly_access_key,
            "THROTTLE_PER_FIVE_MINS": throttle_per_five_mins,
            "CACHED_ROUTES_TABLE_NAME": cached_routes_dynamo_db.table_name,
            "CACHED_V3_POOLS_TABLE_NAME": cached_v3_pools_dynamo_db.table_name,
            **json_rpc_providers,
        }

        # Lambda: quote handler
        self.routing_lambda = lambda_.Function(
            self,
            "RoutingLambda",
            runtime=lambda_.Runtime.NODEJS_18_X,
            handler=QUOTE_HANDLER,
            code=lambda_.Code.from_asset(str(lambda_bundle_path)),
            memory_size=1792,
            timeout=Duration.seconds(29),
            vpc=vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_filters=list(subnet_filters)),
            security_groups=[security_group],
            tracing=lambda_.Tracing.ACTIVE,
            environment={k: v for k, v in environment.items() if v},
            description="Routing Lambda",
        )

        # Grant permissions

        # S3 permissions - caches are filled by the caching stack
        pool_cache_bucket.grant_read(self.routing_lambda)
        pool_cache_bucket2.grant_read(self.routing_lambda)
        token_list_cache_bucket.grant_read(self.routing_lambda)

        # DynamoDB permissions
        cached_routes_dynamo_db.grant_read_write_data(self.routing_lambda)
        cached_v3_pools_dynamo_db.grant_read_write_data(self.routing_lambda)

        # Alias: the API integrates with the alias, never $LATEST
        self.routing_lambda_alias = lambda_.Alias(
            self,
            "RoutingLiveAlias",
            alias_name=LIVE_ALIAS_NAME,
            version=self.routing_lambda.current_version,
            provisioned_concurrent_executions=(
                provisioned_concurrency if provisioned_concurrency > 0 else None
            ),
        )

        self.alarms = [
            cloudwatch.Alarm(
                self,
                "RoutingAPI-LambdaErrorRate",
                alarm_name="RoutingAPI-LambdaErrorRate",
                metric=cloudwatch.MathExpression(
                    expression="100*(errors/invocations)",
                    period=Duration.minutes(5),
                    using_metrics={
                        "errors": self.routing_lambda_alias.metric_errors(
                            period=Duration.minutes(5), statistic="sum"
                        ),
                        "invocations": self.routing_lambda_alias.metric_invocations(
                            period=Duration.minutes(5), statistic="sum"
                        ),
                    },
                ),
                threshold=10,
                evaluation_periods=3,
                treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
            ),
            cloudwatch.Alarm(
                self,
                "RoutingAPI-LambdaThrottles",
                alarm_name="RoutingAPI-LambdaThrottles",
                metric=self.routing_lambda_alias.metric_throttles(
                    period=Duration.minutes(5), statistic="sum"
                ),
                threshold=50,
                evaluation_periods=3,
                treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
            ),
        ]

        if chatbot_sns_arn:
            chatbot_topic = sns.Topic.from_topic_arn(
                self, "ChatbotTopic", chatbot_sns_arn
            )
            for alarm in self.alarms:
                alarm.add_alarm_action(cloudwatch_actions.SnsAction(chatbot_topic))
